"""Consecutive-day streak tracking."""

from __future__ import annotations

from datetime import date
from typing import Optional

from .clock import FamilyClock
from .locks import KeyedLock
from .models import DailyStreak
from .store import STREAKS, Store


class StreakTracker:
    """Maintain one :class:`DailyStreak` per profile.

    ``update`` is called once per verification event. Repeating it on the
    same day changes nothing, a one day gap extends the streak and a longer
    gap restarts it at one. Dates earlier than the last recorded day are
    ignored so the streak never moves backwards.
    """

    def __init__(self, store: Store, clock: FamilyClock, *, locks: Optional[KeyedLock] = None) -> None:
        self.store = store
        self.clock = clock
        self.locks = locks or KeyedLock()

    def get(self, profile_id: str, family_id: str) -> Optional[DailyStreak]:
        return self.store.first(STREAKS, {"profile_id": profile_id, "family_id": family_id})

    def update(self, profile_id: str, family_id: str, today: Optional[date] = None) -> DailyStreak:
        today = today or self.clock.today()
        with self.locks.hold(("streak", profile_id)):
            current = self.get(profile_id, family_id)
            if current is None:
                return self.store.insert(
                    STREAKS,
                    DailyStreak(
                        profile_id=profile_id,
                        family_id=family_id,
                        streak_count=1,
                        longest_streak=1,
                        last_activity_date=today,
                        updated_at=self.clock.now(),
                    ),
                )
            if current.last_activity_date is None:
                streak_count = 1
            else:
                gap = (today - current.last_activity_date).days
                if gap <= 0:
                    return current
                streak_count = current.streak_count + 1 if gap == 1 else 1
            return self.store.update(
                STREAKS,
                current.id,
                {
                    "streak_count": streak_count,
                    "longest_streak": max(current.longest_streak, streak_count),
                    "last_activity_date": today,
                    "updated_at": self.clock.now(),
                },
            )


__all__ = ["StreakTracker"]
