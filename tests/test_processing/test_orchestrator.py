"""Tests for the classifier chain and its propagate-vs-fallback policy."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from mailsort.config import ClassifierConfig
from mailsort.errors import ProviderError
from mailsort.processing.heuristic import HeuristicClassifier
from mailsort.processing.orchestrator import ClassificationOrchestrator
from mailsort.processing.providers import AnthropicClassifier, OpenAIClassifier
from mailsort.processing.types import AIModel, Category, ClassificationResult, Provider


# ── Helpers ────────────────────────────────────────────────────────────────────


def make_result(category: Category = Category.WORK, **kwargs: object) -> ClassificationResult:
    defaults: dict[str, object] = dict(confidence=0.9, provider_used=Provider.PRIMARY)
    return ClassificationResult(category, **{**defaults, **kwargs})  # type: ignore[arg-type]


def make_classifier(**kwargs: object) -> MagicMock:
    c = MagicMock()
    c.classify = AsyncMock(**kwargs)
    return c


def failing(message: str = "boom") -> MagicMock:
    return make_classifier(side_effect=ProviderError(message))


# ── from_config ────────────────────────────────────────────────────────────────


class TestFromConfig:
    def test_builds_only_configured_providers(self) -> None:
        o = ClassificationOrchestrator.from_config(ClassifierConfig(anthropic_api_key="k"))
        assert o.is_configured(Provider.PRIMARY)
        assert not o.is_configured(Provider.SECONDARY)
        assert isinstance(dict(o._chain)[Provider.PRIMARY], AnthropicClassifier)

    def test_both_providers(self) -> None:
        o = ClassificationOrchestrator.from_config(
            ClassifierConfig(anthropic_api_key="a", openai_api_key="o")
        )
        assert isinstance(dict(o._chain)[Provider.SECONDARY], OpenAIClassifier)

    def test_no_keys_means_heuristic_only(self) -> None:
        o = ClassificationOrchestrator.from_config(ClassifierConfig())
        assert not o.is_configured(Provider.PRIMARY)
        assert not o.is_configured(Provider.SECONDARY)


# ── auto ───────────────────────────────────────────────────────────────────────


class TestAuto:
    async def test_primary_answers(self) -> None:
        primary = make_classifier(return_value=make_result())
        secondary = make_classifier(return_value=make_result(Category.FINANCE))
        o = ClassificationOrchestrator(primary=primary, secondary=secondary)

        r = await o.classify("s", "b", "f")

        assert r.category is Category.WORK
        assert r.provider_used is Provider.PRIMARY
        secondary.classify.assert_not_called()

    async def test_falls_back_to_secondary(self) -> None:
        secondary = make_classifier(return_value=make_result(Category.FINANCE))
        o = ClassificationOrchestrator(primary=failing(), secondary=secondary)

        r = await o.classify("s", "b", "f")

        assert r.category is Category.FINANCE
        assert r.provider_used is Provider.SECONDARY

    async def test_both_fail_uses_heuristic(self) -> None:
        o = ClassificationOrchestrator(primary=failing(), secondary=failing())
        r = await o.classify("URGENT: contract", "", "f")
        assert r.provider_used is Provider.HEURISTIC
        assert r.category is Category.IMPORTANT_FOLLOW_UP

    async def test_unexpected_exception_falls_through(self) -> None:
        o = ClassificationOrchestrator(primary=make_classifier(side_effect=RuntimeError("bug")))
        r = await o.classify("Hi", "", "f")
        assert r.provider_used is Provider.HEURISTIC

    async def test_unconfigured_providers_skipped(self) -> None:
        secondary = make_classifier(return_value=make_result(provider_used=Provider.SECONDARY))
        o = ClassificationOrchestrator(secondary=secondary)
        r = await o.classify("s", "b", "f")
        assert r.provider_used is Provider.SECONDARY

    async def test_nothing_configured_uses_heuristic(self) -> None:
        r = await ClassificationOrchestrator().classify("Project kickoff", "", "f")
        assert r.provider_used is Provider.HEURISTIC
        assert r.category is Category.WORK

    async def test_chain_ends_with_heuristic_classifier(self) -> None:
        o = ClassificationOrchestrator(primary=failing())
        assert isinstance(o._heuristic, HeuristicClassifier)
        o._heuristic = make_classifier(return_value=make_result(Category.OTHER))
        r = await o.classify("s", "b", "f")
        assert r.category is Category.OTHER
        o._heuristic.classify.assert_awaited_once_with("s", "b", "f")

    async def test_provider_used_reflects_answering_link(self) -> None:
        # a classifier that mislabels itself is re-stamped with its chain slot
        secondary = make_classifier(return_value=make_result(provider_used=Provider.HEURISTIC))
        o = ClassificationOrchestrator(secondary=secondary)
        assert (await o.classify("s", "b", "f")).provider_used is Provider.SECONDARY

    async def test_none_inputs_treated_as_empty(self) -> None:
        primary = make_classifier(return_value=make_result())
        o = ClassificationOrchestrator(primary=primary)
        await o.classify(None, None, None)  # type: ignore[arg-type]
        primary.classify.assert_called_once_with("", "", "")


# ── pinned ─────────────────────────────────────────────────────────────────────


class TestPinned:
    async def test_pinned_primary_failure_propagates(self) -> None:
        secondary = make_classifier(return_value=make_result())
        o = ClassificationOrchestrator(primary=failing("rate limited"), secondary=secondary)

        with pytest.raises(ProviderError, match="rate limited"):
            await o.classify("s", "b", "f", AIModel.PRIMARY)
        secondary.classify.assert_not_called()

    async def test_pinned_secondary_only_calls_secondary(self) -> None:
        primary = make_classifier(return_value=make_result())
        secondary = make_classifier(return_value=make_result(Category.SOCIAL))
        o = ClassificationOrchestrator(primary=primary, secondary=secondary)

        r = await o.classify("s", "b", "f", AIModel.SECONDARY)

        assert r.category is Category.SOCIAL
        assert r.provider_used is Provider.SECONDARY
        primary.classify.assert_not_called()

    async def test_pinned_unconfigured_raises(self) -> None:
        o = ClassificationOrchestrator(primary=make_classifier(return_value=make_result()))
        with pytest.raises(ProviderError, match="not configured"):
            await o.classify("s", "b", "f", AIModel.SECONDARY)

    async def test_accepts_string_selection(self) -> None:
        o = ClassificationOrchestrator(primary=make_classifier(return_value=make_result()))
        r = await o.classify("s", "b", "f", "primary")  # type: ignore[arg-type]
        assert r.provider_used is Provider.PRIMARY
