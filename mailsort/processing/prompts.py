"""Classification prompt, Anthropic tool definition, and OpenAI JSON prompt."""

from html.parser import HTMLParser
from typing import Any

from mailsort.processing.types import Category

# Maximum characters of email body sent to a provider; applied after HTML
# stripping, so this represents actual text content rather than raw markup.
BODY_CHAR_LIMIT = 4_000

TOOL_NAME = "record_email_classification"

CATEGORY_VALUES: list[str] = [c.value for c in Category]


# ── HTML stripper ───────────────────────────────────────────────────────────────


class _HTMLStripper(HTMLParser):
    """Minimal HTMLParser subclass that collects visible text nodes."""

    def __init__(self) -> None:
        super().__init__()
        self._parts: list[str] = []

    def handle_data(self, data: str) -> None:
        text = data.strip()
        if text:
            self._parts.append(text)

    def get_text(self) -> str:
        return " ".join(self._parts)


def strip_html(text: str) -> str:
    """Return plain text from an HTML string.

    If the input doesn't look like HTML, or stripping produces nothing useful,
    the original string is returned unchanged.
    """
    if "<" not in text:
        return text
    stripper = _HTMLStripper()
    try:
        stripper.feed(text)
        result = stripper.get_text()
        # Stripping away >90% of the content means the input was not really HTML.
        return result if len(result) > len(text) * 0.1 else text
    except Exception:  # noqa: BLE001
        return text


# ── Category guide ─────────────────────────────────────────────────────────────

CATEGORY_GUIDE = """\
1. Personal - Personal communications from friends and family
2. Work - Business emails related to work projects and professional matters
3. Spam/Promotions - Marketing emails, advertisements, and promotional content
4. Social - Social media notifications and community communications
5. Notifications/Updates - System notifications and service updates
6. Finance - Banking, payment, and financial communications
7. Job Opportunities - Career and employment related emails
8. Important/Follow Up - High priority items requiring immediate attention
9. Other - Emails that don't fit into other categories"""

PRIORITY_GUIDE = """\
- high: Important/Follow Up, urgent Finance or Work
- medium: Job Opportunities, normal Work, urgent Personal
- low: Social, Notifications/Updates, Spam/Promotions"""


# ── Tool definition ────────────────────────────────────────────────────────────

#: Anthropic tool schema for structured classification.
#: Descriptions are terse to minimise input tokens per call.
CLASSIFICATION_TOOL: dict[str, Any] = {
    "name": TOOL_NAME,
    "description": "Record the classification of an email.",
    "input_schema": {
        "type": "object",
        "properties": {
            "category": {
                "type": "string",
                "enum": CATEGORY_VALUES,
                "description": "Exactly one of the nine categories.",
            },
            "confidence": {
                "type": "number",
                "description": "0.0 to 1.0.",
            },
            "sentiment": {
                "type": "number",
                "description": "-1.0 (very negative) to 1.0 (very positive).",
            },
            "priority": {
                "type": "string",
                "enum": ["low", "medium", "high"],
            },
            "needs_follow_up": {
                "type": "boolean",
                "description": "True if the recipient should act or reply.",
            },
            "reasoning": {
                "type": "string",
                "description": "One sentence explaining the choice.",
            },
        },
        "required": [
            "category",
            "confidence",
            "sentiment",
            "priority",
            "needs_follow_up",
            "reasoning",
        ],
    },
}

SYSTEM_PROMPT = (
    "You are an expert business email analyst. "
    "Classify each email into exactly one of the given categories."
)

JSON_SYSTEM_PROMPT = "You are an expert business email analyst. Always respond with valid JSON only."


# ── Prompt builders ────────────────────────────────────────────────────────────


def format_email(subject: str, body: str, sender: str) -> str:
    """Render the email block shared by both providers.

    HTML is stripped before truncation so the character limit applies to
    actual text content, not markup.
    """
    plain_body = strip_html(body or "")
    body_preview = plain_body[:BODY_CHAR_LIMIT]
    truncated = len(plain_body) > BODY_CHAR_LIMIT

    lines = [
        f"From: {sender or '(unknown sender)'}",
        f"Subject: {subject or '(no subject)'}",
        "",
        body_preview,
    ]
    if truncated:
        lines.append("\n[… email truncated …]")
    return "\n".join(lines)


def build_messages(subject: str, body: str, sender: str) -> list[dict[str, str]]:
    """Anthropic messages list: the recipient is asked to call the tool."""
    return [
        {
            "role": "user",
            "content": (
                "Classify the following email into exactly one of these categories:\n\n"
                f"{CATEGORY_GUIDE}\n\nPriority guide:\n{PRIORITY_GUIDE}\n\n"
                f"Call {TOOL_NAME} with your classification.\n\n"
                + format_email(subject, body, sender)
            ),
        }
    ]


def build_json_prompt(subject: str, body: str, sender: str) -> str:
    """OpenAI user prompt: same instructions, answered as a bare JSON object."""
    return (
        "Classify the following email into exactly one of these categories:\n\n"
        f"{CATEGORY_GUIDE}\n\nPriority guide:\n{PRIORITY_GUIDE}\n\n"
        "Respond with a JSON object with exactly these keys:\n"
        '{"category": "<one of the nine categories>", "confidence": 0.85, '
        '"sentiment": 0.0, "priority": "low|medium|high", '
        '"needs_follow_up": false, "reasoning": "<one sentence>"}\n\n'
        + format_email(subject, body, sender)
        + "\n\nReturn ONLY valid JSON, no other text."
    )
