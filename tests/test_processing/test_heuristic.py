"""Tests for the keyword-rule fallback classifier."""

import pytest

from mailsort.processing.heuristic import (
    FALLBACK_CONFIDENCE,
    HeuristicClassifier,
    classify_heuristic,
)
from mailsort.processing.providers import Classifier
from mailsort.processing.types import Category, Priority, Provider


class TestClassifyHeuristic:
    def test_urgent_subject_is_important(self) -> None:
        r = classify_heuristic("URGENT: contract", "Please sign today.")
        assert r.category is Category.IMPORTANT_FOLLOW_UP
        assert r.confidence == 0.7
        assert r.priority is Priority.HIGH
        assert r.needs_follow_up is True
        assert r.provider_used is Provider.HEURISTIC

    @pytest.mark.parametrize("word", ["important", "IMPORTANT", "Urgent"])
    def test_important_keywords(self, word: str) -> None:
        assert classify_heuristic(f"Reply {word}", "").category is Category.IMPORTANT_FOLLOW_UP

    def test_work_keywords(self) -> None:
        r = classify_heuristic("Weekly sync", "Agenda for the project meeting")
        assert r.category is Category.WORK
        assert r.confidence == 0.6
        assert r.priority is Priority.MEDIUM
        assert r.needs_follow_up is False

    def test_promotion_keywords(self) -> None:
        r = classify_heuristic("Big SALE this weekend", "")
        assert r.category is Category.SPAM_PROMOTIONS
        assert r.confidence == 0.8
        assert r.priority is Priority.LOW

    def test_offer_in_body(self) -> None:
        r = classify_heuristic("Newsletter", "A special offer for members.")
        assert r.category is Category.SPAM_PROMOTIONS

    @pytest.mark.parametrize(
        "subject, body",
        [
            ("Reply asap", ""),
            ("Big discount", ""),
            ("Newsletter", "Click here to unsubscribe."),
            ("Deadline tomorrow", "Your task is due"),
        ],
    )
    def test_words_outside_keyword_groups_are_other(self, subject: str, body: str) -> None:
        r = classify_heuristic(subject, body)
        assert r.category is Category.OTHER
        assert r.confidence == FALLBACK_CONFIDENCE

    def test_first_matching_group_wins(self) -> None:
        # "urgent" outranks "meeting" and "offer"
        r = classify_heuristic("Meeting offer", "This is urgent")
        assert r.category is Category.IMPORTANT_FOLLOW_UP

    def test_no_keyword_falls_back_to_other(self) -> None:
        r = classify_heuristic("Hello", "How are you?")
        assert r.category is Category.OTHER
        assert r.confidence == FALLBACK_CONFIDENCE
        assert r.priority is Priority.LOW

    def test_empty_input(self) -> None:
        assert classify_heuristic("", "").category is Category.OTHER

    def test_reasoning_names_keyword(self) -> None:
        assert "urgent" in classify_heuristic("URGENT", "").reasoning

    def test_sender_is_ignored(self) -> None:
        assert classify_heuristic("Hi", "", sender="sales@shop.com").category is Category.OTHER


class TestHeuristicClassifier:
    def test_satisfies_classifier_protocol(self) -> None:
        assert isinstance(HeuristicClassifier(), Classifier)

    async def test_classify(self) -> None:
        r = await HeuristicClassifier().classify("Project update", "", "a@b.com")
        assert r.category is Category.WORK
