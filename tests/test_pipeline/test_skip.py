"""Tests for already-classified detection."""

import pytest

from mailsort.pipeline.skip import cached_result, is_already_classified, matching_classifier_label
from mailsort.processing.types import Category, Priority, Provider


class TestIsAlreadyClassified:
    @pytest.mark.parametrize(
        "labels",
        [
            ["INBOX", "Classifier/Work"],
            ["ai/priority/high"],
            ["Prospect-2024"],
            ["Old Classification"],
            ["CLASSIFIER/Spam-Promotions"],
        ],
    )
    def test_classifier_conventions_detected(self, labels: list[str]) -> None:
        assert is_already_classified(labels, skip_enabled=True) is True

    def test_ordinary_labels_not_detected(self) -> None:
        assert is_already_classified(["INBOX", "UNREAD", "Receipts"], skip_enabled=True) is False

    def test_disabled_never_skips(self) -> None:
        assert is_already_classified(["Classifier/Work"], skip_enabled=False) is False

    def test_no_labels(self) -> None:
        assert is_already_classified([], skip_enabled=True) is False
        assert is_already_classified(None, skip_enabled=True) is False

    def test_prefix_must_lead(self) -> None:
        # "ai/" only counts as a prefix, not anywhere in the name
        assert matching_classifier_label(["Thai/Food"]) is None


class TestCachedResult:
    def test_recovers_canonical_category(self) -> None:
        r = cached_result(["INBOX", "Classifier/Work"])
        assert r.category is Category.WORK
        assert r.confidence == 1.0
        assert r.sentiment == 0.5
        assert r.priority is Priority.MEDIUM
        assert r.provider_used is Provider.CACHED

    def test_hyphenated_label_recovers_slash_category(self) -> None:
        assert cached_result(["Classifier/Spam-Promotions"]).category is Category.SPAM_PROMOTIONS

    def test_legacy_label_reports_other(self) -> None:
        assert cached_result(["AI/Priority/High"]).category is Category.OTHER
