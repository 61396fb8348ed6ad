"""Sentiment normalization.

Sources report sentiment differently: web entries carry a polarity code
(0 neutral, 1 positive, 2 negative, sometimes as strings or names) while
Facebook posts carry a continuous reaction-weighted score computed by an
external model. Everything is reduced to three canonical buckets.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Dict, Iterable, Mapping, Optional, Protocol

from mediawatch.core.logging import get_logger

logger = get_logger(__name__)


class Polarity(IntEnum):
    """Canonical sentiment bucket; values are the stored codes."""
    NEUTRAL = 0
    POSITIVE = 1
    NEGATIVE = 2

    @property
    def label(self) -> str:
        return self.name.lower()


BUCKETS = (Polarity.POSITIVE, Polarity.NEUTRAL, Polarity.NEGATIVE)

_BY_TEXT = {
    "0": Polarity.NEUTRAL,
    "1": Polarity.POSITIVE,
    "2": Polarity.NEGATIVE,
    "neutral": Polarity.NEUTRAL,
    "positive": Polarity.POSITIVE,
    "negative": Polarity.NEGATIVE,
}


def normalize(raw: Any) -> Polarity:
    """
    Map a raw polarity representation to a canonical bucket.

    Accepts integer codes, their string forms and names (``"neutral"``,
    ``":neutral"``, enum members). Anything unrecognized is neutral.
    """
    if isinstance(raw, Polarity):
        return raw
    if isinstance(raw, bool) or raw is None:
        return Polarity.NEUTRAL
    if isinstance(raw, Enum):
        raw = raw.name
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    if isinstance(raw, int):
        try:
            return Polarity(raw)
        except ValueError:
            return Polarity.NEUTRAL
    if isinstance(raw, str):
        return _BY_TEXT.get(raw.strip().lstrip(":").lower(), Polarity.NEUTRAL)
    return Polarity.NEUTRAL


class SentimentLevel(str, Enum):
    """Five-way classification of a continuous score."""
    VERY_POSITIVE = "very_positive"
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    VERY_NEGATIVE = "very_negative"


# Score thresholds for the reaction-weighted model
VERY_POSITIVE_THRESHOLD = 1.5
POSITIVE_THRESHOLD = 0.5
NEGATIVE_THRESHOLD = -0.5
VERY_NEGATIVE_THRESHOLD = -1.5


def classify_score(score: float) -> SentimentLevel:
    if score >= VERY_POSITIVE_THRESHOLD:
        return SentimentLevel.VERY_POSITIVE
    if score >= POSITIVE_THRESHOLD:
        return SentimentLevel.POSITIVE
    if score <= VERY_NEGATIVE_THRESHOLD:
        return SentimentLevel.VERY_NEGATIVE
    if score <= NEGATIVE_THRESHOLD:
        return SentimentLevel.NEGATIVE
    return SentimentLevel.NEUTRAL


def collapse(level: SentimentLevel) -> Polarity:
    """Collapse the five-way level to the stored three-way bucket."""
    if level in (SentimentLevel.VERY_POSITIVE, SentimentLevel.POSITIVE):
        return Polarity.POSITIVE
    if level in (SentimentLevel.VERY_NEGATIVE, SentimentLevel.NEGATIVE):
        return Polarity.NEGATIVE
    return Polarity.NEUTRAL


def polarity_from_score(score: float) -> Polarity:
    return collapse(classify_score(score))


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MODERATE = "moderate"
    LOW = "low"
    VERY_LOW = "very_low"


def classify_confidence(confidence: Optional[float]) -> ConfidenceLevel:
    if confidence is None:
        return ConfidenceLevel.VERY_LOW
    if confidence >= 0.7:
        return ConfidenceLevel.HIGH
    if confidence >= 0.5:
        return ConfidenceLevel.MODERATE
    if confidence >= 0.3:
        return ConfidenceLevel.LOW
    return ConfidenceLevel.VERY_LOW


def safe_percentage(part: float, total: float, precision: int = 1) -> float:
    """``part / total * 100`` rounded; 0 when total is 0."""
    if not total:
        return 0.0
    return round(part / total * 100, precision)


def bucket_percentages(counts: Mapping[Any, int], total: int, precision: int = 1) -> Dict[str, float]:
    """
    Percentages per canonical bucket.

    Args:
        counts: Counts keyed by any raw polarity representation
        total: Denominator
        precision: Decimal places

    Returns:
        {'positive': pct, 'neutral': pct, 'negative': pct}; all 0 when total is 0
    """
    merged = {bucket: 0 for bucket in BUCKETS}
    for raw, count in counts.items():
        merged[normalize(raw)] += count or 0
    return {bucket.label: safe_percentage(merged[bucket], total, precision) for bucket in BUCKETS}


def bucket_counts(values: Iterable[Any]) -> Dict[str, int]:
    """Count raw polarity values per canonical bucket."""
    counts = {bucket.label: 0 for bucket in BUCKETS}
    for value in values:
        counts[normalize(value).label] += 1
    return counts


@dataclass(frozen=True)
class SentimentSignal:
    """What an external scoring provider returns for one content item.

    Either ``polarity`` (a discrete code in any accepted form) or ``score``
    (continuous model output) is set; ``confidence`` is optional.
    """
    polarity: Any = None
    score: Optional[float] = None
    confidence: Optional[float] = None

    def to_polarity(self) -> Polarity:
        if self.score is not None:
            return polarity_from_score(self.score)
        return normalize(self.polarity)

    def confidence_level(self) -> Optional[ConfidenceLevel]:
        if self.confidence is None:
            return None
        return classify_confidence(self.confidence)


class SentimentProvider(Protocol):
    """External scoring collaborator."""

    async def score(self, item: Any) -> SentimentSignal:
        ...
