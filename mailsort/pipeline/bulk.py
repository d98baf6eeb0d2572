"""Bulk analysis — one request in, one structured response out.

Wires pagination, label reconciliation and batch processing together.  Only
three conditions end a run early: a missing access token (400), a failed
fetch or broken mailbox session (500), and a failed label-existence pass when
labels were requested (500).  Everything else is recorded per message.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from typing import Any

from mailsort.config import DEFAULT_BATCH_SIZE, ClassifierConfig
from mailsort.errors import InvalidRequestError, LabelCreationError, MailsortError
from mailsort.labels.reconciler import LabelReconciler
from mailsort.mcp.types import Mailbox, RawEmail
from mailsort.pipeline.batch import (
    BatchOptions,
    BatchProcessor,
    BatchRunState,
    ProgressCallback,
)
from mailsort.pipeline.pagination import PaginationController
from mailsort.processing.orchestrator import ClassificationOrchestrator
from mailsort.processing.types import AIModel, Priority

logger = logging.getLogger(__name__)

DEFAULT_MAX_EMAILS = 100

#: Opens a mailbox session for (access_token, refresh_token).
MailboxFactory = Callable[[str, str | None], AbstractAsyncContextManager[Mailbox]]


# ── Request ────────────────────────────────────────────────────────────────────


def email_from_dict(data: Mapping[str, Any]) -> RawEmail:
    """Build a RawEmail from a caller-supplied message dict (camelCase or snake_case)."""
    labels = data.get("labels") or []
    classification = data.get("classification")
    if isinstance(classification, Mapping):
        classification = classification.get("category")
    return RawEmail(
        id=str(data.get("id", "")),
        thread_id=str(data.get("threadId", data.get("thread_id", ""))),
        sender=str(data.get("from", data.get("sender", ""))),
        subject=str(data.get("subject", "")),
        snippet=str(data.get("snippet", "")),
        labels=[str(label) for label in labels],
        body=data.get("body") or None,
        date=data.get("timestamp") or data.get("date") or None,
        classification=str(classification) if classification else None,
    )


_TRUE_STRINGS = ("true", "yes", "1")
_FALSE_STRINGS = ("false", "no", "0", "")


def _flag(data: Mapping[str, Any], key: str, default: bool) -> bool:
    """Read a boolean wire field; accepts JSON booleans and their string spellings."""
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        folded = value.strip().lower()
        if folded in _TRUE_STRINGS:
            return True
        if folded in _FALSE_STRINGS:
            return False
    raise InvalidRequestError(f"Invalid boolean for {key}: {value!r}")


@dataclass(frozen=True)
class BulkAnalyzeRequest:
    access_token: str | None = None
    refresh_token: str | None = None
    max_emails: int = DEFAULT_MAX_EMAILS
    apply_labels: bool = False
    skip_classified: bool = True
    query: str = ""
    page_token: str | None = None
    batch_size: int = DEFAULT_BATCH_SIZE
    ai_model: AIModel = AIModel.AUTO
    emails_to_process: list[RawEmail] | None = None

    def validate(self) -> None:
        if not self.access_token:
            raise InvalidRequestError("Access token required")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BulkAnalyzeRequest:
        """Parse the camelCase wire form of a request.

        Raises:
            InvalidRequestError: for an unknown ``aiModel``, malformed numbers
                or a non-boolean flag.
        """
        try:
            ai_model = AIModel(str(data.get("aiModel") or AIModel.AUTO.value))
        except ValueError as exc:
            raise InvalidRequestError(f"Unknown aiModel {data.get('aiModel')!r}") from exc
        try:
            max_emails = int(data.get("maxEmails") or DEFAULT_MAX_EMAILS)
            batch_size = int(data.get("batchSize") or DEFAULT_BATCH_SIZE)
        except (TypeError, ValueError) as exc:
            raise InvalidRequestError(f"Invalid numeric field: {exc}") from exc
        emails = data.get("emailsToProcess")
        return cls(
            access_token=data.get("accessToken") or None,
            refresh_token=data.get("refreshToken") or None,
            max_emails=max_emails,
            apply_labels=_flag(data, "applyLabels", False),
            skip_classified=_flag(data, "skipClassified", True),
            query=str(data.get("query") or ""),
            page_token=data.get("pageToken") or None,
            batch_size=batch_size,
            ai_model=ai_model,
            emails_to_process=(
                [email_from_dict(e) for e in emails] if isinstance(emails, list) else None
            ),
        )


# ── Response ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class VerificationSummary:
    total_attempted: int
    successfully_applied: int
    failed_to_apply: int
    labels_created: int

    def to_dict(self) -> dict[str, int]:
        return {
            "totalAttempted": self.total_attempted,
            "successfullyApplied": self.successfully_applied,
            "failedToApply": self.failed_to_apply,
            "labelsCreated": self.labels_created,
        }


@dataclass
class BulkAnalyzeResponse:
    success: bool
    message: str
    status: int = 200
    error: str | None = None
    state: BatchRunState = field(default_factory=BatchRunState)
    label_mapping: dict[str, str] = field(default_factory=dict)
    next_page_token: str | None = None
    verification: VerificationSummary | None = None

    @property
    def prospects(self) -> int:
        """Messages that received a real classification this run."""
        return sum(
            1 for r in self.state.results if not r.already_classified and not r.failed
        )

    def summary(self) -> dict[str, int]:
        s = self.state
        return {
            "totalProcessed": s.total_processed,
            "classified": s.total_classified,
            "prospects": self.prospects,
            "highPriority": sum(
                1 for r in s.results if r.classification.priority is Priority.HIGH
            ),
            "labelsApplied": s.labels_applied,
            "errors": s.errors,
            "skippedAlreadyClassified": s.skipped_already_classified,
            "gmailLabelsCreated": len(self.label_mapping),
        }

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "status": self.status, "error": self.error, "message": self.message}
        s = self.state
        return {
            "success": True,
            "status": self.status,
            "message": self.message,
            "result": {
                "totalProcessed": s.total_processed,
                "totalClassified": s.total_classified,
                "labelsApplied": s.labels_applied,
                "errors": s.errors,
                "progress": s.progress,
                "results": [r.to_dict() for r in s.results],
                "labelMapping": dict(self.label_mapping),
            },
            "nextPageToken": self.next_page_token,
            "verification": self.verification.to_dict() if self.verification else None,
            "summary": self.summary(),
        }


def _failure(status: int, error: str) -> BulkAnalyzeResponse:
    return BulkAnalyzeResponse(success=False, message=error, status=status, error=error)


def _verification(
    state: BatchRunState, mapping: Mapping[str, str], prospects: int
) -> VerificationSummary:
    failed = sum(
        1
        for r in state.results
        if not r.already_classified and not r.failed and not r.label_apply_success
    )
    return VerificationSummary(
        total_attempted=prospects,
        successfully_applied=state.labels_applied,
        failed_to_apply=failed,
        labels_created=len(mapping),
    )


# ── Entry point ────────────────────────────────────────────────────────────────


async def run_bulk_analysis(
    request: BulkAnalyzeRequest,
    mailbox_factory: MailboxFactory,
    orchestrator: ClassificationOrchestrator | None = None,
    on_progress: ProgressCallback | None = None,
) -> BulkAnalyzeResponse:
    """Fetch (or accept) one page of messages, classify them, optionally label them.

    The mailbox factory is not called at all for a rejected request.
    """
    try:
        request.validate()
    except InvalidRequestError as exc:
        logger.warning("Bulk analysis rejected: %s", exc)
        return _failure(400, str(exc))

    if orchestrator is None:
        orchestrator = ClassificationOrchestrator.from_config(ClassifierConfig.from_env())

    logger.info(
        "Bulk analysis: max=%d apply_labels=%s skip_classified=%s batch=%d ai_model=%s prefetched=%s",
        request.max_emails,
        request.apply_labels,
        request.skip_classified,
        request.batch_size,
        request.ai_model.value,
        len(request.emails_to_process) if request.emails_to_process is not None else "no",
    )

    try:
        async with mailbox_factory(request.access_token or "", request.refresh_token) as mailbox:
            page = await PaginationController(mailbox).resolve(
                request.query,
                request.page_token,
                request.max_emails,
                prefetched=request.emails_to_process,
            )
            if not page.messages:
                return BulkAnalyzeResponse(
                    success=True,
                    message="No emails found",
                    state=BatchRunState(progress=100),
                )

            reconciler = LabelReconciler(mailbox)
            mapping: dict[str, str] = {}
            if request.apply_labels:
                mapping = await reconciler.ensure_labels()
            else:
                logger.info("Label application disabled - skipping label creation")

            state = await BatchProcessor(orchestrator, reconciler).run(
                page.messages,
                BatchOptions(
                    batch_size=request.batch_size,
                    apply_labels=request.apply_labels,
                    skip_classified=request.skip_classified,
                    ai_model=request.ai_model,
                    label_mapping=mapping,
                ),
                on_progress=on_progress,
            )
    except LabelCreationError as exc:
        logger.error("Label creation failed: %s", exc)
        return _failure(500, str(exc))
    except (MailsortError, ValueError) as exc:
        logger.error("Bulk analysis failed: %s", exc, exc_info=True)
        return _failure(500, f"Failed to analyze emails: {exc}")
    except Exception as exc:  # noqa: BLE001
        # transport failures (broken MCP pipe, closed stream) from the mailbox session
        logger.error("Bulk analysis failed unexpectedly: %s", exc, exc_info=True)
        return _failure(500, f"Failed to analyze emails: {exc}")

    message = f"Processed {state.total_processed} emails successfully"
    if request.apply_labels:
        message += f" and applied {state.labels_applied} labels to Gmail"

    response = BulkAnalyzeResponse(
        success=True,
        message=message,
        state=state,
        label_mapping=dict(mapping),
        next_page_token=page.next_page_token,
    )
    if request.apply_labels and state.labels_applied > 0:
        response.verification = _verification(state, mapping, response.prospects)
    logger.info("Bulk analysis complete: %s", response.summary())
    return response
