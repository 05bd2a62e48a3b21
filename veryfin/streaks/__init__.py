"""Savings streak progress package."""

from veryfin.streaks.engine import (
    EXPECTED_GAP_DAYS,
    compute_streak_progress,
    count_current_streak,
    expected_gap_days,
)

__all__ = [
    "EXPECTED_GAP_DAYS",
    "compute_streak_progress",
    "count_current_streak",
    "expected_gap_days",
]
