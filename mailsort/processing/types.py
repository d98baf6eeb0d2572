"""Types for the classification pipeline."""

from dataclasses import dataclass
from enum import Enum


class Category(str, Enum):
    """The nine canonical business categories a message can be filed under."""

    PERSONAL = "Personal"
    WORK = "Work"
    SPAM_PROMOTIONS = "Spam/Promotions"
    SOCIAL = "Social"
    NOTIFICATIONS_UPDATES = "Notifications/Updates"
    FINANCE = "Finance"
    JOB_OPPORTUNITIES = "Job Opportunities"
    IMPORTANT_FOLLOW_UP = "Important/Follow Up"
    OTHER = "Other"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Provider(str, Enum):
    """Which link in the classifier chain produced a result.

    ``cached`` marks synthetic results for already- or pre-classified messages;
    ``none`` marks the terminal result of a message whose processing failed.
    """

    PRIMARY = "primary"
    SECONDARY = "secondary"
    HEURISTIC = "heuristic"
    CACHED = "cached"
    NONE = "none"


class AIModel(str, Enum):
    """Caller's provider selection: let the chain decide, or pin one provider."""

    AUTO = "auto"
    PRIMARY = "primary"
    SECONDARY = "secondary"


# ── Gmail label mappings ───────────────────────────────────────────────────────

LABEL_PREFIX = "Classifier/"


def label_name_for(category: Category) -> str:
    """Return the canonical Gmail label name for a category.

    Slashes inside the category would nest the label in Gmail, so they become
    hyphens: ``Spam/Promotions`` → ``Classifier/Spam-Promotions``.
    """
    return LABEL_PREFIX + category.value.replace("/", "-")


CATEGORY_LABEL: dict[Category, str] = {c: label_name_for(c) for c in Category}

#: All labels created on the first run, in category order.
CLASSIFIER_LABELS: list[str] = list(CATEGORY_LABEL.values())


def category_for_label(label_name: str) -> Category | None:
    """Reverse of label_name_for(); None if the name is not a canonical label."""
    for category, name in CATEGORY_LABEL.items():
        if name.lower() == label_name.lower():
            return category
    return None


def normalize_category(raw: object) -> Category | None:
    """Match a provider's category string to a canonical Category.

    Case-insensitive, and tolerant of hyphens in place of slashes
    (``spam-promotions``).  Returns None for anything outside the nine values.
    """
    if raw is None:
        return None
    text = str(raw).strip().lower()
    if not text:
        return None
    for category in Category:
        value = category.value.lower()
        if text == value or text == value.replace("/", "-"):
            return category
    return None


def derive_priority(category: Category, urgent: bool = False) -> Priority:
    """Deterministic priority ranking used when a classifier gives none.

    High: Important/Follow Up, urgent Finance/Work.
    Medium: Job Opportunities, normal Work, urgent Personal.
    Low: Social, Notifications/Updates, Spam/Promotions.
    """
    if category is Category.IMPORTANT_FOLLOW_UP:
        return Priority.HIGH
    if category in (Category.FINANCE, Category.WORK) and urgent:
        return Priority.HIGH
    if category in (Category.JOB_OPPORTUNITIES, Category.WORK):
        return Priority.MEDIUM
    if category in (Category.SOCIAL, Category.NOTIFICATIONS_UPDATES, Category.SPAM_PROMOTIONS):
        return Priority.LOW
    # Personal, Other
    return Priority.MEDIUM if urgent else Priority.LOW


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# ── Classification result ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class ClassificationResult:
    """Normalized output of any link in the classifier chain.

    Confidence and sentiment are clamped on construction, so every instance
    satisfies 0 <= confidence <= 1 and -1 <= sentiment <= 1.
    """

    category: Category
    confidence: float
    sentiment: float = 0.0        # -1.0 (very negative) → 1.0 (very positive)
    priority: Priority = Priority.LOW
    needs_follow_up: bool = False
    reasoning: str = ""
    provider_used: Provider = Provider.HEURISTIC

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp(float(self.confidence), 0.0, 1.0))
        object.__setattr__(self, "sentiment", clamp(float(self.sentiment), -1.0, 1.0))

    def to_dict(self) -> dict[str, object]:
        return {
            "category": self.category.value,
            "confidence": self.confidence,
            "sentiment": self.sentiment,
            "priority": self.priority.value,
            "needsFollowUp": self.needs_follow_up,
            "reasoning": self.reasoning,
            "providerUsed": self.provider_used.value,
        }
