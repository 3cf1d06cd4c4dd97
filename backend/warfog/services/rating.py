"""Elo-style rating deltas.

Pure functions; persistence lives in ``ledger.record_win`` and ``record_loss``.
"""
import math

DEFAULT_K = 16
RATING_FLOOR = 100


def expected_score(self_rating: int, opp_rating: int) -> float:
    return 1.0 / (1.0 + 10 ** ((opp_rating - self_rating) / 400.0))


def rating_change(self_rating: int, opp_rating: int, won: bool, k: int = DEFAULT_K) -> int:
    """Points gained (positive) or lost (negative) after a decisive match.

    Halves round up, so 500 vs 500 gives +8 / -8 with K=16.
    """
    actual = 1.0 if won else 0.0
    delta = k * (actual - expected_score(self_rating, opp_rating))
    return int(math.floor(delta + 0.5))


def apply_rating_change(old_rating: int, change: int, floor: int = RATING_FLOOR) -> int:
    return max(floor, old_rating + change)
