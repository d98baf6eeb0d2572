"""Batch processing — skip-detect, classify and label messages batch by batch.

Messages inside a batch run concurrently; batches run strictly one after
another, which bounds outstanding classifier and Gmail calls to the batch
size.  Per-message units never touch the shared counters: they each return a
PerMessageOutcome and the coordinator folds a whole batch into the
BatchRunState once every unit has settled.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType

from mailsort.config import DEFAULT_BATCH_SIZE
from mailsort.errors import MessageProcessingError, ProviderError
from mailsort.labels.reconciler import LabelReconciler
from mailsort.mcp.types import RawEmail
from mailsort.pipeline.skip import cached_result, is_already_classified
from mailsort.processing.orchestrator import ClassificationOrchestrator
from mailsort.processing.types import (
    AIModel,
    Category,
    ClassificationResult,
    Priority,
    Provider,
    normalize_category,
)

logger = logging.getLogger(__name__)

#: Confidence given to a message whose processing failed outright.
FAILED_CONFIDENCE = 0.1
#: Confidence given to a caller's pre-classified message.
PRECLASSIFIED_CONFIDENCE = 0.95


# ── Outcomes and run state ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class PerMessageOutcome:
    """Final, immutable record of what happened to one input message."""

    id: str
    subject: str
    sender: str
    snippet: str
    timestamp: str | None
    classification: ClassificationResult
    applied_label: str | None = None
    label_apply_success: bool = False
    label_verified: bool | None = None
    already_classified: bool = False
    error: str | None = None

    @property
    def failed(self) -> bool:
        """True if the message itself could not be processed (not just labelled)."""
        return self.classification.provider_used is Provider.NONE

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "subject": self.subject,
            "from": self.sender,
            "snippet": self.snippet,
            "timestamp": self.timestamp,
            "alreadyClassified": self.already_classified,
            "classification": self.classification.to_dict(),
            "appliedLabel": self.applied_label,
            "labelApplySuccess": self.label_apply_success,
            "labelVerified": self.label_verified,
            "error": self.error,
        }


@dataclass
class BatchRunState:
    """Aggregate counters plus ordered outcomes; mutated only by the coordinator."""

    total_processed: int = 0
    total_classified: int = 0
    labels_applied: int = 0
    errors: int = 0
    skipped_already_classified: int = 0
    progress: int = 0
    batches_completed: int = 0
    results: list[PerMessageOutcome] = field(default_factory=list)

    def record(self, outcome: PerMessageOutcome) -> None:
        """Fold one settled outcome into the counters (never decreases them)."""
        self.results.append(outcome)
        if outcome.already_classified:
            self.skipped_already_classified += 1
            return
        if outcome.failed:
            self.errors += 1
            return
        self.total_classified += 1
        if outcome.label_apply_success:
            self.labels_applied += 1
        elif outcome.error:
            self.errors += 1


ProgressCallback = Callable[[BatchRunState], None]


@dataclass(frozen=True)
class BatchOptions:
    batch_size: int = DEFAULT_BATCH_SIZE
    apply_labels: bool = False
    skip_classified: bool = True
    ai_model: AIModel = AIModel.AUTO
    label_mapping: Mapping[str, str] = field(default_factory=dict)


def partition(messages: Sequence[RawEmail], batch_size: int) -> list[list[RawEmail]]:
    """Split into consecutive chunks; a non-positive size falls back to the default."""
    size = batch_size if batch_size > 0 else DEFAULT_BATCH_SIZE
    return [list(messages[i:i + size]) for i in range(0, len(messages), size)]


def compute_progress(done: int, total: int) -> int:
    """Percentage done, rounded half up; an empty run counts as complete."""
    if total <= 0:
        return 100
    return math.floor(done * 100 / total + 0.5)


# ── Processor ──────────────────────────────────────────────────────────────────


class BatchProcessor:
    """Drives Skip-Detector → Orchestrator → Reconciler over a message list.

    Usage::

        processor = BatchProcessor(orchestrator, LabelReconciler(gmail))
        state = await processor.run(messages, BatchOptions(apply_labels=True,
                                                           label_mapping=mapping))
    """

    def __init__(
        self,
        orchestrator: ClassificationOrchestrator,
        reconciler: LabelReconciler | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._reconciler = reconciler

    async def run(
        self,
        messages: Sequence[RawEmail],
        options: BatchOptions,
        on_progress: ProgressCallback | None = None,
    ) -> BatchRunState:
        """Process every message and return the final run state.

        Never aborts on a single message's failure.
        """
        if options.apply_labels and self._reconciler is None:
            raise ValueError("apply_labels requires a LabelReconciler")

        state = BatchRunState(total_processed=len(messages))
        mapping: Mapping[str, str] = MappingProxyType(dict(options.label_mapping))
        batches = partition(messages, options.batch_size)
        done = 0

        for number, batch in enumerate(batches, start=1):
            outcomes = await asyncio.gather(
                *(self._process_one(email, options, mapping) for email in batch)
            )
            for outcome in outcomes:
                state.record(outcome)
            done += len(batch)
            state.batches_completed = number
            state.progress = compute_progress(done, len(messages))
            logger.info(
                "Processed batch %d/%d: %d/%d emails (%d%%)",
                number,
                len(batches),
                done,
                len(messages),
                state.progress,
            )
            if on_progress is not None:
                on_progress(state)

        state.progress = 100
        return state

    # ── Per-message unit ───────────────────────────────────────────────────────

    async def _process_one(
        self, email: RawEmail, options: BatchOptions, mapping: Mapping[str, str]
    ) -> PerMessageOutcome:
        """Run one message to a terminal outcome. Never raises."""
        try:
            return await self._classify_and_label(email, options, mapping)
        except ProviderError as exc:
            logger.error("Classification failed for email %s: %s", email.id, exc)
            return self._failed(email, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.error("Error processing email %s: %s", email.id, exc, exc_info=True)
            return self._failed(email, f"Classification failed: {exc}")

    async def _classify_and_label(
        self, email: RawEmail, options: BatchOptions, mapping: Mapping[str, str]
    ) -> PerMessageOutcome:
        if not email.id:
            raise MessageProcessingError("Message has no id")

        if is_already_classified(email.labels, options.skip_classified):
            logger.info("Skipping already classified email %s: %r", email.id, email.subject)
            return _outcome(email, cached_result(email.labels), already_classified=True)

        result = await self._classify(email, options.ai_model)
        reconciler = self._reconciler
        if not options.apply_labels or reconciler is None:
            return _outcome(email, result)

        application = await reconciler.apply_label(email.id, result.category, mapping)
        return _outcome(
            email,
            result,
            applied_label=application.label_name if application.success else None,
            label_apply_success=application.success,
            label_verified=application.verified,
            error=application.error,
        )

    async def _classify(self, email: RawEmail, ai_model: AIModel) -> ClassificationResult:
        if email.classification:
            category = normalize_category(email.classification) or Category.OTHER
            logger.debug("Using pre-classification %r for email %s", category.value, email.id)
            return ClassificationResult(
                category=category,
                confidence=PRECLASSIFIED_CONFIDENCE,
                sentiment=0.5,
                priority=Priority.MEDIUM,
                reasoning="Pre-classified by caller",
                provider_used=Provider.CACHED,
            )
        return await self._orchestrator.classify(
            email.subject,
            email.body or email.snippet,
            email.sender,
            ai_model,
        )

    @staticmethod
    def _failed(email: RawEmail, error: str) -> PerMessageOutcome:
        result = ClassificationResult(
            category=Category.OTHER,
            confidence=FAILED_CONFIDENCE,
            priority=Priority.LOW,
            reasoning="Processing failed",
            provider_used=Provider.NONE,
        )
        return _outcome(email, result, error=error)


def _outcome(email: RawEmail, classification: ClassificationResult, **kwargs: object) -> PerMessageOutcome:
    return PerMessageOutcome(
        id=email.id,
        subject=email.subject,
        sender=email.sender,
        snippet=email.snippet,
        timestamp=email.date,
        classification=classification,
        **kwargs,  # type: ignore[arg-type]
    )
