from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy import select

from ..agent.orchestrator import ActionOrchestrator
from ..agent.preferences import API_KEY, PreferenceStore, mask_credential, validate_credential
from ..agent.usage_store import UsageStore
from ..bridge.messaging import MessageType
from ..models import EngineLog, SessionLocal, init_db


class MessageRequest(BaseModel):
    type: str
    payload: dict[str, Any] = {}


class CredentialStatus(BaseModel):
    configured: bool
    masked: str


class CredentialUpdate(BaseModel):
    api_key: str


class ConnectionTestRequest(BaseModel):
    api_key: Optional[str] = None


class ConnectionTestResponse(BaseModel):
    ok: bool
    message: str


class ActionStatEntry(BaseModel):
    action_id: str
    clicks: int
    last_used: datetime | None


class StatsResponse(BaseModel):
    rows: List[ActionStatEntry]
    total_clicks: int


class EngineLogEntry(BaseModel):
    timestamp: datetime
    level: str
    message: str


def build_default_orchestrator() -> ActionOrchestrator:
    return ActionOrchestrator(
        UsageStore(SessionLocal),
        PreferenceStore(SessionLocal),
        log_session_factory=SessionLocal,
    )


def create_app(orchestrator: ActionOrchestrator | None = None) -> FastAPI:
    """Settings surface plus the HTTP transport for bridge messages.

    With no orchestrator supplied the app wires one to the configured database
    and creates the tables at startup.
    """

    owns_database = orchestrator is None
    engine_orchestrator = orchestrator or build_default_orchestrator()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if owns_database:
            init_db()
        engine_orchestrator.start()
        yield
        engine_orchestrator.stop()

    app = FastAPI(title="Sidekick", lifespan=lifespan)
    app.state.orchestrator = engine_orchestrator

    @app.post("/messages")
    async def post_message(body: MessageRequest, orch: ActionOrchestrator = Depends(get_orchestrator)):
        try:
            kind = MessageType(body.type)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Unknown message type: {body.type}") from exc
        try:
            return await orch.handle_message(kind, body.payload)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.get("/api/credential", response_model=CredentialStatus)
    def get_credential(orch: ActionOrchestrator = Depends(get_orchestrator)):
        stored = orch.preferences.get(API_KEY)
        return CredentialStatus(configured=bool(stored), masked=mask_credential(stored))

    @app.put("/api/credential", response_model=CredentialStatus)
    def put_credential(body: CredentialUpdate, orch: ActionOrchestrator = Depends(get_orchestrator)):
        try:
            key = validate_credential(body.api_key)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        orch.preferences.set(API_KEY, key)
        return CredentialStatus(configured=True, masked=mask_credential(key))

    @app.post("/api/credential/test", response_model=ConnectionTestResponse)
    async def test_credential(
        body: ConnectionTestRequest | None = None, orch: ActionOrchestrator = Depends(get_orchestrator)
    ):
        check = await orch.test_connection(body.api_key if body else None)
        return ConnectionTestResponse(ok=check.ok, message=check.message)

    @app.get("/api/stats", response_model=StatsResponse)
    def get_stats(orch: ActionOrchestrator = Depends(get_orchestrator)):
        summary = orch.usage_summary()
        return StatsResponse(
            rows=[
                ActionStatEntry(action_id=action_id, clicks=usage.clicks, last_used=usage.last_used)
                for action_id, usage in summary.rows
            ],
            total_clicks=summary.total_clicks,
        )

    @app.delete("/api/stats")
    def delete_stats(orch: ActionOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
        orch.reset_stats()
        return {"success": True}

    @app.get("/api/logs", response_model=List[EngineLogEntry])
    def list_logs(limit: int = 100, orch: ActionOrchestrator = Depends(get_orchestrator)):
        if orch.log_session_factory is None:
            return []
        session = orch.log_session_factory()
        try:
            logs = (
                session.execute(select(EngineLog).order_by(EngineLog.id.desc()).limit(limit)).scalars().all()
            )
            return [
                EngineLogEntry(timestamp=log.created_at, level=log.level, message=log.message)
                for log in reversed(logs)
            ]
        finally:
            session.close()

    return app


def get_orchestrator(request: Request) -> ActionOrchestrator:
    return request.app.state.orchestrator


app = create_app()
