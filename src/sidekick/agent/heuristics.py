"""Deterministic fallback suggestions, one hardcoded quadruple per content type."""

from __future__ import annotations

from typing import Optional

from .actions import Action
from .classifier import ContentType, classify
from .page_context import Context, Selection

Quadruple = tuple[Action, Action, Action, Action]

_QUADRUPLES: dict[ContentType, Quadruple] = {
    ContentType.CODE: (
        Action("explain_code", "Explain Code", "📖", "Explain what this code does in simple terms"),
        Action("find_issues", "Find Issues", "🔍", "Identify bugs or potential problems"),
        Action("add_comments", "Add Comments", "💬", "Add helpful inline comments"),
        Action("refactor", "Refactor", "♻️", "Improve code structure and readability"),
    ),
    ContentType.EMAIL: (
        Action("draft_reply", "Draft Reply", "📧", "Generate a professional reply"),
        Action("summarize", "Summarize", "📝", "Get the key points quickly"),
        Action("change_tone", "Change Tone", "🎭", "Make more formal or casual"),
        Action("action_items", "Action Items", "✅", "Extract tasks and next steps"),
    ),
    ContentType.NUMERIC_DATA: (
        Action("analyze_data", "Analyze Data", "📊", "Find patterns and insights"),
        Action("create_table", "Format Table", "📋", "Organize data into a clean table"),
        Action("calculate", "Calculate", "🧮", "Perform calculations on the numbers"),
        Action("visualize", "Visualize", "📈", "Suggest chart types for this data"),
    ),
    ContentType.LIST: (
        Action("organize", "Organize", "📂", "Group and categorize items"),
        Action("prioritize", "Prioritize", "🎯", "Rank items by importance"),
        Action("expand", "Expand Items", "🔍", "Add details to each item"),
        Action("convert_tasks", "Make Tasks", "☑️", "Convert to actionable tasks"),
    ),
    ContentType.QUESTION: (
        Action("answer_question", "Answer", "💡", "Answer this question directly"),
        Action("explain", "Explain", "📖", "Explain the background needed to understand the question"),
        Action("rephrase_question", "Rephrase", "🔁", "Rewrite the question more clearly"),
        Action("related_questions", "Related Questions", "❓", "List follow-up questions worth asking"),
    ),
    ContentType.LONG_TEXT: (
        Action("summarize", "Summarize", "📄", "Get the main points quickly"),
        Action("key_points", "Key Points", "🎯", "Extract important information"),
        Action("simplify", "Simplify", "✂️", "Make it easier to understand"),
        Action("questions", "Questions", "❓", "Generate questions about this content"),
    ),
    ContentType.IMAGE: (
        Action("describe_image", "Describe Image", "🖼️", "Describe what this image likely shows from its attributes"),
        Action("alt_text", "Alt Text", "♿", "Write accessible alt text for this image"),
        Action("image_context", "Image Context", "🔎", "Explain how this image relates to the page"),
        Action("caption", "Write Caption", "✍️", "Write a short caption for this image"),
    ),
    ContentType.CHART: (
        Action("explain_chart", "Explain Chart", "📊", "Explain what this chart is showing"),
        Action("identify_trends", "Find Trends", "📈", "Identify the main trends in this chart"),
        Action("extract_data_points", "Extract Data", "📋", "List the data points visible in this chart"),
        Action("chart_insights", "Insights", "💡", "Summarize the key insight behind this chart"),
    ),
    ContentType.TABLE: (
        Action("summarize_table", "Summarize Table", "📋", "Summarize what this table contains"),
        Action("analyze_data", "Analyze Data", "📊", "Find patterns and insights"),
        Action("convert_csv", "Convert to CSV", "🗂️", "Convert this table to CSV"),
        Action("find_outliers", "Find Outliers", "🔍", "Point out unusual values in this table"),
    ),
    ContentType.INTERACTIVE: (
        Action("explain_element", "Explain Element", "💡", "Explain what this control does"),
        Action("predict_action", "What Happens", "🔮", "Predict what happens when this is used"),
        Action("accessibility_check", "Accessibility", "♿", "Check this control for accessibility problems"),
        Action("element_context", "Page Context", "🧭", "Explain where this control leads within the site"),
    ),
    ContentType.FORM: (
        Action("explain_form", "Explain Form", "📝", "Explain what this form is asking for"),
        Action("fill_suggestions", "Fill Suggestions", "✏️", "Suggest sensible values for these fields"),
        Action("validate_fields", "Check Fields", "✅", "Point out fields that are easy to get wrong"),
        Action("privacy_check", "Privacy Check", "🔒", "Flag fields that collect sensitive data"),
    ),
    ContentType.GENERIC: (
        Action("summarize", "Summarize", "📝", "Create a brief summary"),
        Action("improve", "Improve", "✨", "Enhance clarity and impact"),
        Action("translate", "Translate", "🌐", "Translate to another language"),
        Action("explain", "Explain", "💡", "Explain in simple terms"),
    ),
}

_missing = set(ContentType) - set(_QUADRUPLES)
if _missing:
    raise RuntimeError(f"heuristic actions missing for content types: {sorted(t.value for t in _missing)}")

_DEFAULT_ACTIONS: Quadruple = (
    Action("summarize", "Summarize", "📝", "Create a brief summary"),
    Action("explain", "Explain", "💡", "Explain this content"),
    Action("improve", "Improve", "✨", "Enhance this text"),
    Action("key_points", "Key Points", "🎯", "Extract main points"),
)


class HeuristicActionSuggester:
    """Guaranteed fallback suggester. Never performs I/O and never fails."""

    def suggest(self, content_type: ContentType, selection: Optional[Selection] = None) -> Quadruple:  # noqa: ARG002
        return _QUADRUPLES[content_type]

    def suggest_for(self, context: Context) -> Quadruple:
        return self.suggest(classify(context.selection, context), context.selection)

    def default_actions(self) -> Quadruple:
        return _DEFAULT_ACTIONS
