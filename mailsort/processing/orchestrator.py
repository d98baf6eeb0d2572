"""Classifier chain — primary AI, then secondary AI, then keyword heuristic."""

from __future__ import annotations

import logging
from dataclasses import replace

from mailsort.config import ClassifierConfig
from mailsort.errors import ProviderError
from mailsort.processing.heuristic import HeuristicClassifier
from mailsort.processing.providers import (
    AnthropicClassifier,
    Classifier,
    OpenAIClassifier,
)
from mailsort.processing.types import AIModel, ClassificationResult, Provider

logger = logging.getLogger(__name__)


class ClassificationOrchestrator:
    """Runs the ordered chain of classifiers with a propagate-vs-fallback policy.

    Under ``auto`` every configured AI provider is tried in order and any
    failure falls through to the next; the heuristic ends the chain, so
    ``auto`` never raises.  A pinned provider (``primary`` or ``secondary``)
    is the only link tried and its ProviderError propagates to the caller.

    A provider slot left as None counts as not configured.

    Usage::

        orchestrator = ClassificationOrchestrator.from_config(ClassifierConfig.from_env())
        result = await orchestrator.classify(subject, body, sender)
    """

    def __init__(
        self,
        primary: Classifier | None = None,
        secondary: Classifier | None = None,
    ) -> None:
        self._chain: list[tuple[Provider, Classifier | None]] = [
            (Provider.PRIMARY, primary),
            (Provider.SECONDARY, secondary),
        ]
        self._heuristic = HeuristicClassifier()

    @classmethod
    def from_config(cls, config: ClassifierConfig) -> ClassificationOrchestrator:
        primary = (
            AnthropicClassifier(config.anthropic_api_key, config.primary_model)
            if config.primary_configured
            else None
        )
        secondary = (
            OpenAIClassifier(config.openai_api_key, config.secondary_model)
            if config.secondary_configured
            else None
        )
        return cls(primary=primary, secondary=secondary)

    def is_configured(self, provider: Provider) -> bool:
        return any(p is provider and c is not None for p, c in self._chain)

    async def classify(
        self,
        subject: str,
        body: str,
        sender: str,
        requested: AIModel = AIModel.AUTO,
    ) -> ClassificationResult:
        """Return one ClassificationResult for the email.

        Raises:
            ProviderError: only when ``requested`` pins a provider that is not
                configured or fails.
        """
        requested = AIModel(requested)
        subject = subject or ""
        body = body or ""
        sender = sender or ""

        if requested is not AIModel.AUTO:
            return await self._classify_pinned(Provider(requested.value), subject, body, sender)

        for provider, classifier in self._chain:
            if classifier is None:
                continue
            try:
                return self._tag(await classifier.classify(subject, body, sender), provider)
            except ProviderError as exc:
                logger.warning(
                    "%s classifier failed, falling back: %s", provider.value, exc
                )
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "%s classifier raised unexpectedly, falling back: %s",
                    provider.value,
                    exc,
                    exc_info=True,
                )

        logger.debug("Using keyword heuristic for %r", subject[:80])
        return await self._heuristic.classify(subject, body, sender)

    async def _classify_pinned(
        self, provider: Provider, subject: str, body: str, sender: str
    ) -> ClassificationResult:
        classifier = dict(self._chain)[provider]
        if classifier is None:
            raise ProviderError(
                f"{provider.value} classifier requested but not configured",
                provider=provider.value,
            )
        return self._tag(await classifier.classify(subject, body, sender), provider)

    @staticmethod
    def _tag(result: ClassificationResult, provider: Provider) -> ClassificationResult:
        """Stamp provider_used with the link that actually answered."""
        if result.provider_used is provider:
            return result
        return replace(result, provider_used=provider)
