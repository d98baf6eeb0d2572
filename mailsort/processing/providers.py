"""AI classifiers — Claude (primary) and OpenAI (secondary).

Both produce a ClassificationResult through the same normalizer, so the
orchestrator never has to care which SDK answered.  Every SDK, transport, or
parse failure surfaces as ProviderError.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol, runtime_checkable

import anthropic
import openai
from anthropic import AsyncAnthropic
from anthropic.types import ToolUseBlock
from openai import AsyncOpenAI

from mailsort.config import DEFAULT_PRIMARY_MODEL, DEFAULT_SECONDARY_MODEL
from mailsort.errors import ProviderError
from mailsort.processing.prompts import (
    CLASSIFICATION_TOOL,
    JSON_SYSTEM_PROMPT,
    SYSTEM_PROMPT,
    TOOL_NAME,
    build_json_prompt,
    build_messages,
)
from mailsort.processing.types import (
    Category,
    ClassificationResult,
    Priority,
    Provider,
    derive_priority,
    normalize_category,
)

logger = logging.getLogger(__name__)

_MAX_TOKENS = 500
_TEMPERATURE = 0.3

#: Confidence ceiling for a result whose category had to be remapped to Other.
OUT_OF_CONTRACT_CONFIDENCE = 0.3


@runtime_checkable
class Classifier(Protocol):
    """One link in the classifier chain."""

    async def classify(self, subject: str, body: str, sender: str) -> ClassificationResult:
        ...


# ── Normalizer ─────────────────────────────────────────────────────────────────


def _as_float(value: object, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return default
    return default


def _as_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def parse_classification(data: object, provider: Provider) -> ClassificationResult:
    """Convert a provider's raw structured output into a ClassificationResult.

    A category outside the nine canonical values is a contract violation: the
    result is remapped to Other with confidence capped at 0.3.  A priority
    outside low/medium/high is derived from the category instead.

    Raises:
        ProviderError: if ``data`` is not a JSON object.
    """
    if not isinstance(data, dict):
        raise ProviderError(
            f"Expected a JSON object from {provider.value} classifier, got {type(data).__name__}",
            provider=provider.value,
        )

    confidence = _as_float(data.get("confidence"), 0.5)
    reasoning = str(data.get("reasoning") or "")
    raw_category = data.get("category")
    category = normalize_category(raw_category)
    if category is None:
        logger.warning(
            "%s classifier returned non-canonical category %r; remapping to Other",
            provider.value,
            raw_category,
        )
        category = Category.OTHER
        confidence = min(confidence, OUT_OF_CONTRACT_CONFIDENCE)
        reasoning = f"Non-canonical category {raw_category!r} remapped to Other. {reasoning}".strip()

    needs_follow_up = _as_bool(data.get("needs_follow_up", data.get("needsFollowUp", False)))
    try:
        priority = Priority(str(data.get("priority", "")).strip().lower())
    except ValueError:
        priority = derive_priority(category, urgent=needs_follow_up)

    return ClassificationResult(
        category=category,
        confidence=confidence,
        sentiment=_as_float(data.get("sentiment"), 0.0),
        priority=priority,
        needs_follow_up=needs_follow_up,
        reasoning=reasoning,
        provider_used=provider,
    )


# ── Primary: Claude ────────────────────────────────────────────────────────────


class AnthropicClassifier:
    """Sends a single email to Claude and returns a normalized classification.

    Uses Anthropic's tool_use with a forced tool_choice so the response is
    always machine-readable — no JSON parsing, no markdown fences.
    """

    def __init__(self, api_key: str | None = None, model: str = DEFAULT_PRIMARY_MODEL) -> None:
        self._client = AsyncAnthropic(api_key=api_key or "")
        self._model = model

    async def classify(self, subject: str, body: str, sender: str) -> ClassificationResult:
        """Raises ProviderError if Claude errors or skips the tool call."""
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=_MAX_TOKENS,
                system=SYSTEM_PROMPT,
                tools=[CLASSIFICATION_TOOL],  # type: ignore[list-item]
                tool_choice={"type": "tool", "name": TOOL_NAME},
                messages=build_messages(subject, body, sender),  # type: ignore[arg-type]
            )
        except anthropic.APIError as exc:
            raise ProviderError(f"Anthropic request failed: {exc}", provider="primary") from exc

        for block in response.content:
            if isinstance(block, ToolUseBlock) and block.name == TOOL_NAME:
                return parse_classification(block.input, Provider.PRIMARY)

        raise ProviderError(
            f"Claude did not return a {TOOL_NAME} tool call "
            f"(stop_reason={response.stop_reason!r})",
            provider="primary",
        )


# ── Secondary: OpenAI ──────────────────────────────────────────────────────────


def _loads_json(text: str) -> Any:
    """Parse a JSON completion, tolerating a markdown code fence around it."""
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r"^```\w*\n?", "", text).replace("```", "").strip()
    return json.loads(text)


class OpenAIClassifier:
    """Sends a single email to an OpenAI chat model in JSON mode."""

    def __init__(self, api_key: str | None = None, model: str = DEFAULT_SECONDARY_MODEL) -> None:
        self._client = AsyncOpenAI(api_key=api_key or "")
        self._model = model

    async def classify(self, subject: str, body: str, sender: str) -> ClassificationResult:
        """Raises ProviderError on request failure, empty or non-JSON output."""
        try:
            completion = await self._client.chat.completions.create(
                model=self._model,
                temperature=_TEMPERATURE,
                max_tokens=_MAX_TOKENS,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": JSON_SYSTEM_PROMPT},
                    {"role": "user", "content": build_json_prompt(subject, body, sender)},
                ],
            )
        except openai.OpenAIError as exc:
            raise ProviderError(f"OpenAI request failed: {exc}", provider="secondary") from exc

        text = completion.choices[0].message.content if completion.choices else None
        if not text:
            raise ProviderError("No response content from OpenAI", provider="secondary")
        try:
            data = _loads_json(text)
        except json.JSONDecodeError as exc:
            raise ProviderError(
                f"OpenAI returned invalid JSON: {text[:200]!r}", provider="secondary"
            ) from exc
        return parse_classification(data, Provider.SECONDARY)
