"""
Streak Progress Engine

DESIGN DECISION: Progress is a PURE function of
(frequency, previously stored longest streak, entries, today).
It holds no state and touches no storage, so it can be called
from any store implementation and tested without one.

The streak walk:
1. Sort entries newest first.
2. Start a cursor at today.
3. An entry keeps the streak alive if it is no more than the
   frequency's gap (in whole days) before the cursor. The cursor then
   moves to that entry's date minus the gap.
4. The first entry that is too far back breaks the streak; nothing
   older is looked at.

The longest streak only ever ratchets upward: it is max(current, stored),
NOT a scan of the full history.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from veryfin.models.finance import StreakEntry, StreakFrequency, StreakProgress


EXPECTED_GAP_DAYS: dict[StreakFrequency, int] = {
    StreakFrequency.DAILY: 1,
    StreakFrequency.WEEKLY: 7,
    StreakFrequency.MONTHLY: 30,
}


def expected_gap_days(frequency: StreakFrequency) -> int:
    """Largest gap in days that keeps a streak of this frequency alive."""
    return EXPECTED_GAP_DAYS[StreakFrequency(frequency)]


def count_current_streak(
    save_dates: list[date],
    frequency: StreakFrequency,
    today: date,
) -> int:
    """
    Walk save dates (newest first) and count how many keep the streak alive.

    Args:
        save_dates: Entry dates, already sorted newest first
        frequency: Streak cadence
        today: Where the walk starts

    Returns:
        Number of consecutive entries counted before the first break
    """
    gap = expected_gap_days(frequency)
    cursor = today
    streak = 0

    for save_date in save_dates:
        if (cursor - save_date).days > gap:
            break
        streak += 1
        cursor = save_date - timedelta(days=gap)

    return streak


def compute_streak_progress(
    frequency: StreakFrequency,
    stored_longest_streak: int,
    entries: Iterable[StreakEntry],
    today: Optional[date] = None,
) -> StreakProgress:
    """
    Recompute a streak's derived fields from its complete entry history.

    Args:
        frequency: The streak's cadence
        stored_longest_streak: longest_streak as currently persisted
        entries: Every entry of the streak, in any order
        today: Reference date for the walk (defaults to date.today())

    Returns:
        StreakProgress with total_saved, current_streak,
        longest_streak and last_save_date
    """
    today = today or date.today()

    # sorted() is stable, so same-day entries keep their input order
    ordered = sorted(entries, key=lambda entry: entry.save_date, reverse=True)

    total_saved = sum((entry.amount for entry in ordered), Decimal("0"))
    current_streak = count_current_streak(
        [entry.save_date for entry in ordered],
        frequency,
        today,
    )

    return StreakProgress(
        total_saved=total_saved,
        current_streak=current_streak,
        longest_streak=max(current_streak, stored_longest_streak),
        last_save_date=ordered[0].save_date if ordered else None,
    )
