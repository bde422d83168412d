"""
Trust scoring — converts an agent's pass/fail tally into a trust score and
a certification flag.

    trust_score = passed / total * 100   (0 when there are no tests)
    certified   = trust_score >= 80.00 and total >= 5

Scores are fixed-point percentages rounded half-up to two places. Every test
ever recorded counts equally: there is no recency weighting and no decay.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

__all__ = [
    "CERTIFICATION_THRESHOLD",
    "MIN_TESTS_FOR_CERTIFICATION",
    "ScoreResult",
    "compute_trust_score",
    "recompute",
    "stamp_certification",
]

CERTIFICATION_THRESHOLD = Decimal("80.00")
MIN_TESTS_FOR_CERTIFICATION = 5

_HUNDRED = Decimal(100)
_TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class ScoreResult:
    trust_score: Decimal
    certified: bool
    passed: int
    total: int


def compute_trust_score(passed: int, total: int) -> Decimal:
    """Pass ratio as a percentage, rounded half-up to 2 places."""
    if passed < 0 or total < 0 or passed > total:
        raise ValueError(f"Invalid result counts: passed={passed}, total={total}")
    if total == 0:
        return Decimal("0.00")
    raw = Decimal(passed) * _HUNDRED / Decimal(total)
    return raw.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def recompute(passed: int, total: int) -> ScoreResult:
    """Derive trust score and current certification from the full history."""
    score = compute_trust_score(passed, total)
    certified = score >= CERTIFICATION_THRESHOLD and total >= MIN_TESTS_FOR_CERTIFICATION
    return ScoreResult(trust_score=score, certified=certified, passed=passed, total=total)


def stamp_certification(previous: Optional[datetime], certified: bool,
                        now: datetime) -> Optional[datetime]:
    """Return the agent's ``certified_at`` after a recalculation.

    ``certified_at`` records the first time the bar was met and is never
    cleared, even when ``certified`` later drops back to False.
    """
    if previous is not None:
        return previous
    return now if certified else None
