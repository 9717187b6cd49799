"""Similarity scoring between import candidates and known transactions."""

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from rapidfuzz.distance import Levenshtein

from values import normalize_category_name, strip_accents

DATE_WEIGHT = 0.3
AMOUNT_WEIGHT = 0.4
DESCRIPTION_WEIGHT = 0.2
CATEGORY_WEIGHT = 0.1
SIMILAR_DESCRIPTION = 0.8


@dataclass(frozen=True)
class Record:
    date: date
    amount_cents: int
    description: str
    category: str
    transaction_id: Optional[int] = None
    row: Optional[int] = None


@dataclass(frozen=True)
class Match:
    candidate: Record
    reference: Record
    score: float
    reason: str


def date_proximity(a: date, b: date, window_days: int) -> float:
    """1.0 on the same day, decaying linearly to 0 past ``window_days``."""
    distance = abs((a - b).days)
    return max(0.0, 1.0 - distance / (window_days + 1))


def description_similarity(a: str, b: str) -> float:
    left = " ".join(strip_accents(a or "").lower().split())
    right = " ".join(strip_accents(b or "").lower().split())
    if not left and not right:
        return 1.0
    return float(Levenshtein.normalized_similarity(left, right))


def compare(candidate: Record, reference: Record, window_days: int) -> Match:
    reasons: list[str] = []
    proximity = date_proximity(candidate.date, reference.date, window_days)
    if candidate.date == reference.date:
        reasons.append("same date")
    elif proximity > 0:
        reasons.append(f"{abs((candidate.date - reference.date).days)} day(s) apart")

    same_amount = candidate.amount_cents == reference.amount_cents
    if same_amount:
        reasons.append("same amount")

    similarity = description_similarity(candidate.description, reference.description)
    if similarity > SIMILAR_DESCRIPTION:
        reasons.append(f"similar description ({similarity:.0%})")

    same_category = normalize_category_name(candidate.category) == normalize_category_name(
        reference.category
    )
    if same_category:
        reasons.append("same category")

    score = (
        DATE_WEIGHT * proximity
        + AMOUNT_WEIGHT * (1.0 if same_amount else 0.0)
        + DESCRIPTION_WEIGHT * similarity
        + CATEGORY_WEIGHT * (1.0 if same_category else 0.0)
    )
    return Match(
        candidate=candidate,
        reference=reference,
        score=round(score, 4),
        reason=", ".join(reasons) or "no common fields",
    )


class DuplicateDetector:
    def __init__(self, threshold: float = 0.8, window_days: int = 3) -> None:
        self.threshold = threshold
        self.window_days = window_days

    def best_match(
        self, candidate: Record, references: Iterable[Record]
    ) -> Optional[Match]:
        """Highest-scoring reference at or above the threshold, earliest on ties."""
        best: Optional[Match] = None
        for reference in references:
            match = compare(candidate, reference, self.window_days)
            if match.score < self.threshold:
                continue
            if best is None or match.score > best.score:
                best = match
        return best
