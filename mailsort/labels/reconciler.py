"""Label reconciliation — ensure category labels exist, apply and verify them."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from mailsort.errors import LabelApplicationError, LabelCreationError
from mailsort.mcp.types import Mailbox
from mailsort.processing.types import (
    CLASSIFIER_LABELS,
    LABEL_PREFIX,
    Category,
    label_name_for,
)

logger = logging.getLogger(__name__)

#: Canonical label name → remote label ID.  Built once per run, read-only after.
LabelMapping = Mapping[str, str]


def _fold(name: str) -> str:
    return name.lower().replace("/", "-")


def closest_label_match(requested_name: str, available_names: Iterable[str]) -> str | None:
    """Return the available label closest to ``requested_name``, or None.

    A label matches when, case-insensitively and with slashes folded to
    hyphens, the label contains the requested name or the requested name
    contains the label stripped of its ``Classifier/`` prefix.  Among matches
    the one whose length is nearest the requested name wins; ties keep the
    order of ``available_names``.
    """
    wanted = _fold(requested_name).strip()
    if not wanted:
        return None
    best: str | None = None
    best_distance = 0
    for name in available_names:
        folded = _fold(name)
        bare = folded[len(LABEL_PREFIX):] if folded.startswith(_fold(LABEL_PREFIX)) else folded
        if not bare:
            continue
        if wanted in folded or bare in wanted:
            distance = abs(len(name) - len(requested_name))
            if best is None or distance < best_distance:
                best, best_distance = name, distance
    return best


@dataclass(frozen=True)
class LabelApplication:
    """Outcome of one apply_label() call.

    ``verified`` is None when verification was not attempted (nothing applied).
    """

    label_name: str | None
    success: bool
    verified: bool | None = None
    error: str | None = None


class LabelReconciler:
    """Maps categories to remote labels and applies them through a Mailbox."""

    def __init__(self, mailbox: Mailbox, label_names: Iterable[str] = CLASSIFIER_LABELS) -> None:
        self._mailbox = mailbox
        self._label_names = list(label_names)

    async def ensure_labels(self) -> dict[str, str]:
        """Idempotently create every canonical label and return the mapping.

        Skips labels that already exist.  Any failure is fatal: a partial label
        set would make the per-message mapping lookups unreliable.

        Raises:
            LabelCreationError: if listing or creating labels fails.
        """
        try:
            existing = await self._mailbox.list_labels()
            mapping: dict[str, str] = {}
            for label_name in self._label_names:
                label_id = existing.get(label_name)
                if label_id is None:
                    label_id = await self._mailbox.create_label(label_name)
                else:
                    logger.debug("Label already exists: %s", label_name)
                mapping[label_name] = label_id
        except Exception as exc:
            raise LabelCreationError(f"Failed to create Gmail labels: {exc}") from exc
        logger.info("Label mapping ready: %d label(s)", len(mapping))
        return mapping

    async def apply_label(
        self, message_id: str, category: Category, mapping: LabelMapping
    ) -> LabelApplication:
        """Apply the label for ``category`` to a message; never raises.

        Falls back to the closest label in ``mapping`` when the canonical name
        is missing.  A successful apply is followed by a verification read;
        a mismatch is only logged because Gmail label propagation can lag.
        """
        wanted = label_name_for(category)
        label_name: str | None = wanted
        if wanted not in mapping:
            label_name = closest_label_match(category.value, mapping.keys())
            if label_name is None:
                logger.error(
                    "No label for %r in mapping (have: %s)", wanted, ", ".join(mapping) or "none"
                )
                return LabelApplication(
                    label_name=None,
                    success=False,
                    error=f"Label {wanted!r} not found in label mapping",
                )
            logger.warning("Label %r missing; substituting %r", wanted, label_name)

        label_id = mapping[label_name]
        try:
            await self._apply(message_id, label_id, label_name)
        except LabelApplicationError as exc:
            return LabelApplication(label_name=None, success=False, error=str(exc))

        verified = await self._verify(message_id, label_id, label_name)
        return LabelApplication(label_name=label_name, success=True, verified=verified)

    async def _apply(self, message_id: str, label_id: str, label_name: str) -> None:
        try:
            applied = await self._mailbox.apply_label_with_retry(message_id, label_id)
        except Exception as exc:  # noqa: BLE001
            raise LabelApplicationError(
                f"Error applying label {label_name!r}: {exc}", message_id=message_id
            ) from exc
        if not applied:
            raise LabelApplicationError(
                f"Failed to apply label {label_name!r}", message_id=message_id
            )
        logger.debug("Applied label %r to message %s", label_name, message_id)

    async def _verify(self, message_id: str, label_id: str, label_name: str) -> bool:
        """Observability only: a failed verification never downgrades success."""
        try:
            verified = await self._mailbox.verify_label_applied(message_id, label_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not verify label %r on %s: %s", label_name, message_id, exc)
            return False
        if not verified:
            logger.warning(
                "Label %r not yet visible on message %s after apply", label_name, message_id
            )
        return verified
