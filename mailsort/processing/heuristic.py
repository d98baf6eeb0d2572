"""Keyword-rule classifier — the terminal fallback of the classifier chain.

Needs no network access and never fails, so the chain always ends with a
result.  Rules are checked in order; the first group with a keyword present
anywhere in the subject or body wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from mailsort.processing.types import (
    Category,
    ClassificationResult,
    Priority,
    Provider,
)


@dataclass(frozen=True)
class KeywordRule:
    category: Category
    keywords: tuple[str, ...]
    confidence: float
    priority: Priority
    needs_follow_up: bool = False


RULES: tuple[KeywordRule, ...] = (
    KeywordRule(
        Category.IMPORTANT_FOLLOW_UP,
        ("urgent", "important"),
        confidence=0.7,
        priority=Priority.HIGH,
        needs_follow_up=True,
    ),
    KeywordRule(
        Category.WORK,
        ("work", "project", "meeting"),
        confidence=0.6,
        priority=Priority.MEDIUM,
    ),
    KeywordRule(
        Category.SPAM_PROMOTIONS,
        ("promotion", "sale", "offer"),
        confidence=0.8,
        priority=Priority.LOW,
    ),
)

FALLBACK_CONFIDENCE = 0.3

_PATTERNS: tuple[tuple[KeywordRule, re.Pattern[str]], ...] = tuple(
    (rule, re.compile("|".join(re.escape(k) for k in rule.keywords), re.IGNORECASE))
    for rule in RULES
)


def classify_heuristic(subject: str, body: str, sender: str = "") -> ClassificationResult:
    """Classify by keyword groups; falls through to Other at 0.3 confidence."""
    text = f"{subject or ''} {body or ''}"
    for rule, pattern in _PATTERNS:
        match = pattern.search(text)
        if match:
            return ClassificationResult(
                category=rule.category,
                confidence=rule.confidence,
                sentiment=0.0,
                priority=rule.priority,
                needs_follow_up=rule.needs_follow_up,
                reasoning=f"Keyword rule matched {match.group(0).lower()!r}",
                provider_used=Provider.HEURISTIC,
            )
    return ClassificationResult(
        category=Category.OTHER,
        confidence=FALLBACK_CONFIDENCE,
        sentiment=0.0,
        priority=Priority.LOW,
        reasoning="No keyword rule matched",
        provider_used=Provider.HEURISTIC,
    )


class HeuristicClassifier:
    """Classifier-protocol wrapper around classify_heuristic()."""

    async def classify(self, subject: str, body: str, sender: str) -> ClassificationResult:
        return classify_heuristic(subject, body, sender)
