"""Test slot grid generation."""

from datetime import date, datetime, time, timezone

import pytest

from app.schemas.scheduling import BookedInterval, DayHours, StaffSchedule, StoreConfig
from app.services.schedule import resolve_day_window
from app.services.slots import generate_day_slots

NOW = datetime(2024, 1, 15, 0, 0, tzinfo=timezone.utc)  # Mon 09:00 JST
MONDAY = date(2024, 1, 22)
SUNDAY = date(2024, 1, 21)


def make_config(**overrides) -> StoreConfig:
    values = dict(
        timezone="Asia/Tokyo",
        business_hours={
            day: DayHours(is_open=True, open_time=time(10), close_time=time(20))
            for day in range(7)
        },
        slot_duration_minutes=30,
        advance_booking_days=30,
    )
    values.update(overrides)
    return StoreConfig(**values)


def slots_by_time(day_slots):
    return {slot.time: slot for slot in day_slots.slots}


@pytest.fixture
def weekday_staff() -> StaffSchedule:
    return StaffSchedule(
        id=1,
        working_days={1, 2, 3, 4, 5},
        work_start=time(10),
        work_end=time(19),
        break_start=time(13),
        break_end=time(14),
    )


@pytest.fixture
def everyday_staff() -> StaffSchedule:
    return StaffSchedule(
        id=2, working_days=set(range(7)), work_start=time(10), work_end=time(19)
    )


def generate(config, day, staff, booked=None, duration=60, now=NOW):
    window = resolve_day_window(config, day, now)
    return generate_day_slots(config, day, window, staff, booked or {}, duration, now)


class TestSlotGrid:
    def test_break_excludes_overlapping_start_times(self, weekday_staff):
        result = slots_by_time(generate(make_config(), MONDAY, [weekday_staff]))

        assert result["12:00"].available
        assert result["12:00"].staff_ids == [1]
        for label in ("12:30", "13:00", "13:30"):
            assert not result[label].available
            assert result[label].staff_ids == []
        assert result["14:00"].available

    def test_grid_runs_from_open_while_before_close(self, weekday_staff):
        day_slots = generate(make_config(), MONDAY, [weekday_staff])
        labels = [slot.time for slot in day_slots.slots]

        assert labels[0] == "10:00"
        assert labels[-1] == "19:30"
        assert len(labels) == 20
        assert day_slots.day_of_week == 1

    def test_service_must_end_within_work_hours(self, weekday_staff):
        result = slots_by_time(generate(make_config(), MONDAY, [weekday_staff]))

        assert result["18:00"].available
        assert not result["18:30"].available
        assert not result["19:30"].available

    def test_no_partial_trailing_slot(self, weekday_staff):
        config = make_config(
            business_hours={1: DayHours(is_open=True, open_time=time(10), close_time=time(11))},
            slot_duration_minutes=45,
        )
        day_slots = generate(config, MONDAY, [weekday_staff], duration=15)

        assert [slot.time for slot in day_slots.slots] == ["10:00", "10:45"]

    def test_existing_booking_blocks_and_release_restores(self, weekday_staff):
        booked = {
            1: [BookedInterval(staff_id=1, start_time=time(15), end_time=time(16))]
        }
        blocked = slots_by_time(generate(make_config(), MONDAY, [weekday_staff], booked))

        assert blocked["14:00"].available  # ends exactly when the booking starts
        assert not blocked["14:30"].available
        assert not blocked["15:00"].available
        assert not blocked["15:30"].available
        assert blocked["16:00"].available

        restored = slots_by_time(generate(make_config(), MONDAY, [weekday_staff]))
        assert restored["14:30"].available
        assert restored["15:00"].available

    def test_staff_ids_lists_every_free_staff_member(self, weekday_staff, everyday_staff):
        result = slots_by_time(
            generate(make_config(), MONDAY, [weekday_staff, everyday_staff])
        )

        assert result["12:00"].staff_ids == [1, 2]
        assert result["13:00"].staff_ids == [2]
        assert result["13:00"].available

    def test_staff_day_off(self, weekday_staff, everyday_staff):
        result = slots_by_time(
            generate(make_config(), SUNDAY, [weekday_staff, everyday_staff])
        )

        assert result["10:00"].staff_ids == [2]

    def test_closed_day_has_no_slots(self, weekday_staff):
        day_slots = generate(make_config(regular_holidays={1}), MONDAY, [weekday_staff])

        assert day_slots.slots == []
        assert day_slots.is_holiday


class TestTodaySuppression:
    def test_points_at_or_before_now_are_suppressed(self, weekday_staff):
        now = datetime(2024, 1, 15, 1, 30, tzinfo=timezone.utc)  # 10:30 JST
        day_slots = generate(make_config(), date(2024, 1, 15), [weekday_staff], now=now)

        assert day_slots.slots[0].time == "11:00"

    def test_points_inside_lead_time_are_suppressed(self, weekday_staff):
        now = datetime(2024, 1, 15, 1, 30, tzinfo=timezone.utc)  # 10:30 JST
        config = make_config(min_lead_time_minutes=60)
        day_slots = generate(config, date(2024, 1, 15), [weekday_staff], now=now)

        assert day_slots.slots[0].time == "11:30"

    def test_future_days_are_not_suppressed(self, weekday_staff):
        now = datetime(2024, 1, 15, 1, 30, tzinfo=timezone.utc)
        day_slots = generate(make_config(), date(2024, 1, 16), [weekday_staff], now=now)

        assert day_slots.slots[0].time == "10:00"

    def test_naive_now_is_treated_as_utc(self, weekday_staff):
        aware = datetime(2024, 1, 15, 1, 30, tzinfo=timezone.utc)
        naive = aware.replace(tzinfo=None)

        from_naive = generate(make_config(), date(2024, 1, 15), [weekday_staff], now=naive)
        from_aware = generate(make_config(), date(2024, 1, 15), [weekday_staff], now=aware)

        assert from_naive.slots == from_aware.slots
        assert from_naive.slots[0].time == "11:00"
