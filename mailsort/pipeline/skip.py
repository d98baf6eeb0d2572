"""Skip-detection for messages a previous run already classified."""

from __future__ import annotations

from collections.abc import Iterable

from mailsort.processing.types import (
    Category,
    ClassificationResult,
    Priority,
    Provider,
    category_for_label,
)

#: Label prefixes written by this tool or its predecessors.
CLASSIFIER_PREFIXES: tuple[str, ...] = ("classifier/", "ai/")
#: Substrings of legacy classifier label names.
CLASSIFIER_MARKERS: tuple[str, ...] = ("prospect", "classification")


def matching_classifier_label(labels: Iterable[str]) -> str | None:
    """Return the first label that follows a classifier naming convention."""
    for label in labels:
        folded = label.lower()
        if folded.startswith(CLASSIFIER_PREFIXES) or any(m in folded for m in CLASSIFIER_MARKERS):
            return label
    return None


def is_already_classified(labels: Iterable[str] | None, skip_enabled: bool) -> bool:
    if not skip_enabled or not labels:
        return False
    return matching_classifier_label(labels) is not None


def cached_result(labels: Iterable[str]) -> ClassificationResult:
    """Synthetic result for a skipped message; no classifier is called.

    The category is recovered when the matching label is a canonical one,
    otherwise the message is reported as Other.
    """
    label = matching_classifier_label(labels) or ""
    category = category_for_label(label) or Category.OTHER
    return ClassificationResult(
        category=category,
        confidence=1.0,
        sentiment=0.5,
        priority=Priority.MEDIUM,
        reasoning=f"Already classified (label {label!r})",
        provider_used=Provider.CACHED,
    )
