from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Optional

from openai import APIConnectionError, APIStatusError, OpenAI

from ..config import settings


class CompletionError(RuntimeError):
    """Transport failure or non-success status from the completion service."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class OpenAIChatPipeline:
    def __init__(self, model: str, api_key: str, base_url: str | None, max_new_tokens: int):
        self.client = OpenAI(api_key=api_key, base_url=base_url)
        self.model = model
        self.max_new_tokens = max_new_tokens

    def __call__(self, prompt, max_new_tokens: int | None = None, temperature: float | None = None, **_):
        max_tokens = max_new_tokens or self.max_new_tokens
        kwargs: dict[str, Any] = {}
        if temperature is not None:
            kwargs["temperature"] = temperature
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_completion_tokens=max_tokens,
                **kwargs,
            )
        except APIStatusError as exc:
            raise CompletionError(f"API request failed: {exc.status_code} - {exc.message}", exc.status_code) from exc
        except APIConnectionError as exc:
            raise CompletionError(f"API request failed: {exc}") from exc
        return [{"generated_text": resp.choices[0].message.content or ""}]


def _extract_json_array(text: str) -> tuple[Optional[list], Optional[str]]:
    """Extract the last JSON array from the provided text without raising.

    Tolerates code fences and commentary around the array. Returns the parsed
    list, or ``None`` with a short reason.
    """

    if text is None or not str(text).strip():
        return None, "empty_output"

    cleaned = str(text).strip()
    fenced = re.findall(r"```(?:json)?\s*(.*?)```", cleaned, re.DOTALL | re.IGNORECASE)
    if fenced:
        cleaned = fenced[-1].strip()

    try:
        obj = json.loads(cleaned)
        if isinstance(obj, list):
            return obj, None
        if isinstance(obj, dict) and isinstance(obj.get("actions"), list):
            return obj["actions"], None
        return None, "json_not_array"
    except json.JSONDecodeError:
        pass

    spans: list[str] = []
    depth = 0
    start_idx: int | None = None
    in_string = False
    escaped = False
    for idx, ch in enumerate(cleaned):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "[":
            if depth == 0:
                start_idx = idx
            depth += 1
        elif ch == "]":
            if depth > 0:
                depth -= 1
                if depth == 0 and start_idx is not None:
                    spans.append(cleaned[start_idx : idx + 1])

    if not spans:
        return None, "no_array_found"

    last_error = ""
    for candidate in reversed(spans):
        try:
            obj = json.loads(candidate)
        except json.JSONDecodeError as exc:
            last_error = exc.msg
            continue
        if isinstance(obj, list):
            return obj, None
    return None, f"json_decode_error:{last_error}"


class CompletionClient:
    """Async wrapper around a blocking chat pipeline."""

    def __init__(self, pipeline: Any) -> None:
        self.pipeline = pipeline

    def _generate(self, prompt: str, max_tokens: int, temperature: float | None) -> str:
        out = self.pipeline(prompt, max_new_tokens=max_tokens, temperature=temperature)
        if isinstance(out, list) and out:
            item = out[0]
            if isinstance(item, dict) and "generated_text" in item:
                return str(item["generated_text"]).strip()
            if isinstance(item, str):
                return item.strip()
        return str(out).strip()

    async def complete(self, prompt: str, *, max_tokens: int, temperature: float | None = None) -> str:
        return await asyncio.to_thread(self._generate, prompt, max_tokens, temperature)


def create_text_generation_pipeline(api_key: str, model_name: str | None = None, *, max_new_tokens: int = 512):
    if settings.llm_provider == "openai":
        if not api_key:
            raise ValueError("an API key is required when llm_provider=openai")
        return OpenAIChatPipeline(
            model=model_name or settings.openai_model,
            api_key=api_key,
            base_url=settings.openai_base_url,
            max_new_tokens=max_new_tokens,
        )
    raise ValueError(f"Unsupported llm_provider: {settings.llm_provider}")


def create_completion_client(api_key: str, model_name: str | None = None) -> CompletionClient:
    return CompletionClient(
        create_text_generation_pipeline(api_key, model_name=model_name, max_new_tokens=settings.execution_max_tokens)
    )
