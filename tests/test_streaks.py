from datetime import date, timedelta

from conftest import AVA, MOM

MONDAY = date(2026, 10, 19)


def test_first_update_starts_a_streak(points) -> None:
    streak = points.streaks.update("ava", "fam1", MONDAY)

    assert (streak.streak_count, streak.longest_streak, streak.last_activity_date) == (1, 1, MONDAY)


def test_same_day_updates_are_idempotent(points) -> None:
    points.streaks.update("ava", "fam1", MONDAY)
    again = points.streaks.update("ava", "fam1", MONDAY)
    once_more = points.streaks.update("ava", "fam1", MONDAY)

    assert again.streak_count == once_more.streak_count == 1
    assert once_more.last_activity_date == MONDAY


def test_consecutive_days_extend_and_gaps_reset(points) -> None:
    for offset in range(3):
        streak = points.streaks.update("ava", "fam1", MONDAY + timedelta(days=offset))
    assert (streak.streak_count, streak.longest_streak) == (3, 3)

    after_gap = points.streaks.update("ava", "fam1", MONDAY + timedelta(days=5))
    assert (after_gap.streak_count, after_gap.longest_streak) == (1, 3)
    assert after_gap.longest_streak >= after_gap.streak_count

    next_day = points.streaks.update("ava", "fam1", MONDAY + timedelta(days=6))
    assert (next_day.streak_count, next_day.longest_streak) == (2, 3)


def test_backdated_update_never_moves_the_streak_backwards(points) -> None:
    points.streaks.update("ava", "fam1", MONDAY)
    points.streaks.update("ava", "fam1", MONDAY + timedelta(days=1))

    backdated = points.streaks.update("ava", "fam1", MONDAY - timedelta(days=3))

    assert backdated.streak_count == 2
    assert backdated.last_activity_date == MONDAY + timedelta(days=1)


def test_update_defaults_to_the_family_calendar(points, clock) -> None:
    streak = points.streaks.update("ava", "fam1")
    assert streak.last_activity_date == clock.today() == MONDAY


def test_streak_display_defaults_to_zero(points) -> None:
    streak = points.streak(AVA)
    assert (streak.streak_count, streak.longest_streak, streak.last_activity_date) == (0, 0, None)

    points.streaks.update("ben", "fam1", MONDAY)
    assert points.streak(MOM, "ben").streak_count == 1
