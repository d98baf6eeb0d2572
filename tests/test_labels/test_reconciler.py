"""Tests for label creation, substitution, application and verification."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from mailsort.errors import LabelCreationError
from mailsort.labels.reconciler import LabelReconciler, closest_label_match
from mailsort.processing.types import CLASSIFIER_LABELS, Category


# ── closest_label_match ────────────────────────────────────────────────────────


class TestClosestLabelMatch:
    def test_label_contains_request(self) -> None:
        assert closest_label_match("Work", ["Classifier/Finance", "Classifier/Work"]) == "Classifier/Work"

    def test_slash_folding(self) -> None:
        available = ["Classifier/Spam-Promotions"]
        assert closest_label_match("Spam/Promotions", available) == "Classifier/Spam-Promotions"

    def test_request_contains_bare_label(self) -> None:
        assert closest_label_match("Job Opportunities", ["Classifier/Job"]) == "Classifier/Job"

    def test_nearest_length_wins(self) -> None:
        available = ["Classifier/Work Archive 2024", "Classifier/Work"]
        assert closest_label_match("Work", available) == "Classifier/Work"

    def test_case_insensitive(self) -> None:
        assert closest_label_match("finance", ["CLASSIFIER/FINANCE"]) == "CLASSIFIER/FINANCE"

    def test_no_match(self) -> None:
        assert closest_label_match("Social", ["Classifier/Work", "INBOX"]) is None

    def test_bare_prefix_label_ignored(self) -> None:
        assert closest_label_match("Work", ["Classifier/"]) is None

    def test_empty_request(self) -> None:
        assert closest_label_match("", ["Classifier/Work"]) is None


# ── ensure_labels ──────────────────────────────────────────────────────────────


class TestEnsureLabels:
    async def test_creates_all_labels_on_first_run(self, mailbox: MagicMock) -> None:
        mapping = await LabelReconciler(mailbox).ensure_labels()

        assert list(mapping) == CLASSIFIER_LABELS
        assert mailbox.create_label.call_count == 9
        assert mapping["Classifier/Work"] == "id:Classifier/Work"

    async def test_existing_labels_not_recreated(self, mailbox: MagicMock) -> None:
        mailbox.list_labels = AsyncMock(return_value={"Classifier/Work": "L1", "INBOX": "INBOX"})

        mapping = await LabelReconciler(mailbox).ensure_labels()

        assert mapping["Classifier/Work"] == "L1"
        created = [c.args[0] for c in mailbox.create_label.call_args_list]
        assert "Classifier/Work" not in created
        assert len(created) == 8

    async def test_idempotent_when_all_exist(self, mailbox: MagicMock) -> None:
        mailbox.list_labels = AsyncMock(return_value={n: f"L_{n}" for n in CLASSIFIER_LABELS})
        await LabelReconciler(mailbox).ensure_labels()
        mailbox.create_label.assert_not_called()

    async def test_create_failure_is_fatal(self, mailbox: MagicMock) -> None:
        mailbox.create_label = AsyncMock(side_effect=RuntimeError("insufficient scope"))
        with pytest.raises(LabelCreationError, match="insufficient scope"):
            await LabelReconciler(mailbox).ensure_labels()

    async def test_list_failure_is_fatal(self, mailbox: MagicMock) -> None:
        mailbox.list_labels = AsyncMock(side_effect=RuntimeError("offline"))
        with pytest.raises(LabelCreationError):
            await LabelReconciler(mailbox).ensure_labels()


# ── apply_label ────────────────────────────────────────────────────────────────


FULL_MAPPING = {n: f"id:{n}" for n in CLASSIFIER_LABELS}


class TestApplyLabel:
    async def test_applies_canonical_label(self, mailbox: MagicMock) -> None:
        result = await LabelReconciler(mailbox).apply_label("m1", Category.FINANCE, FULL_MAPPING)

        assert result.success is True
        assert result.label_name == "Classifier/Finance"
        assert result.verified is True
        assert result.error is None
        mailbox.apply_label_with_retry.assert_awaited_once_with("m1", "id:Classifier/Finance")

    async def test_substitutes_closest_label(self, mailbox: MagicMock) -> None:
        mapping = {"Classifier/Work Items": "L9"}
        result = await LabelReconciler(mailbox).apply_label("m1", Category.WORK, mapping)

        assert result.success is True
        assert result.label_name == "Classifier/Work Items"
        mailbox.apply_label_with_retry.assert_awaited_once_with("m1", "L9")

    async def test_missing_label_reports_error(self, mailbox: MagicMock) -> None:
        result = await LabelReconciler(mailbox).apply_label("m1", Category.SOCIAL, {})

        assert result.success is False
        assert result.error == "Label 'Classifier/Social' not found in label mapping"
        mailbox.apply_label_with_retry.assert_not_called()

    async def test_apply_failure_reported_not_raised(self, mailbox: MagicMock) -> None:
        mailbox.apply_label_with_retry = AsyncMock(return_value=False)
        result = await LabelReconciler(mailbox).apply_label("m1", Category.WORK, FULL_MAPPING)

        assert result.success is False
        assert result.label_name is None
        assert "Failed to apply label" in (result.error or "")
        mailbox.verify_label_applied.assert_not_called()

    async def test_apply_exception_reported_not_raised(self, mailbox: MagicMock) -> None:
        mailbox.apply_label_with_retry = AsyncMock(side_effect=RuntimeError("socket closed"))
        result = await LabelReconciler(mailbox).apply_label("m1", Category.WORK, FULL_MAPPING)
        assert result.success is False
        assert "socket closed" in (result.error or "")

    async def test_verification_mismatch_keeps_success(self, mailbox: MagicMock) -> None:
        mailbox.verify_label_applied = AsyncMock(return_value=False)
        result = await LabelReconciler(mailbox).apply_label("m1", Category.WORK, FULL_MAPPING)
        assert result.success is True
        assert result.verified is False

    async def test_verification_error_keeps_success(self, mailbox: MagicMock) -> None:
        mailbox.verify_label_applied = AsyncMock(side_effect=RuntimeError("timeout"))
        result = await LabelReconciler(mailbox).apply_label("m1", Category.WORK, FULL_MAPPING)
        assert result.success is True
        assert result.verified is False
