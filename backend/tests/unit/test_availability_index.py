from datetime import time

import pytest

from tutorspool.services.availability_index import (
    AvailabilityIndex,
    WeeklyBlock,
    day_of_week,
    time_of_day,
)

from tests.factories.booking_data import MONDAY, SUNDAY, TUTOR_ID, WEDNESDAY, at


def _index(*blocks: WeeklyBlock) -> AvailabilityIndex:
    return AvailabilityIndex(TUTOR_ID, blocks)


class TestDayAndTime:
    def test_sunday_is_zero(self):
        assert day_of_week(at(10, days=-1)) == SUNDAY
        assert day_of_week(at(10)) == MONDAY
        assert day_of_week(at(10, days=5)) == 6

    def test_time_of_day_keeps_seconds(self):
        instant = at(10, 30).replace(second=59, microsecond=999)
        assert time_of_day(instant) == time(10, 30, 59)


class TestWeeklyBlock:
    def test_rejects_inverted_times(self):
        with pytest.raises(ValueError):
            WeeklyBlock(MONDAY, time(17, 0), time(9, 0))

    def test_rejects_bad_day(self):
        with pytest.raises(ValueError):
            WeeklyBlock(7, time(9, 0), time(17, 0))

    def test_bounds_are_inclusive(self):
        block = WeeklyBlock(MONDAY, time(9, 0), time(17, 0))
        assert block.contains(time(9, 0))
        assert block.contains(time(17, 0))
        assert not block.contains(time(8, 59))
        assert not block.contains(time(17, 1))


class TestAvailabilityIndex:
    def test_start_inside_block_is_open(self):
        index = _index(WeeklyBlock(MONDAY, time(9, 0), time(17, 0)))
        assert index.find_block(at(10)) is not None
        assert index.find_block(at(6)) is None

    def test_other_day_is_closed(self):
        index = _index(WeeklyBlock(WEDNESDAY, time(9, 0), time(17, 0)))
        assert index.find_block(at(10)) is None
        assert index.find_block(at(10, days=2)) is not None

    def test_start_seconds_past_block_end_is_outside(self):
        index = _index(WeeklyBlock(MONDAY, time(9, 0), time(17, 0)))
        assert index.find_block(at(17)) is not None
        assert index.find_block(at(17).replace(second=30)) is None

    def test_non_recurring_blocks_are_ignored_but_count_as_configured(self):
        index = _index(WeeklyBlock(MONDAY, time(9, 0), time(17, 0), recurring=False))
        assert not index.is_empty
        assert index.blocks_for_day(MONDAY) == []
        assert index.find_block(at(10)) is None

    def test_empty_index(self):
        assert _index().is_empty

    def test_duration_must_fit_same_block(self):
        index = _index(
            WeeklyBlock(MONDAY, time(9, 0), time(12, 0)),
            WeeklyBlock(MONDAY, time(13, 0), time(17, 0)),
        )
        assert index.find_block(at(11), duration_minutes=60) is not None
        assert index.find_block(at(11, 30), duration_minutes=60) is None
        # Without a duration only the start is checked
        assert index.find_block(at(11, 30)) is not None

    def test_blocks_for_day_sorted_by_start(self):
        late = WeeklyBlock(MONDAY, time(13, 0), time(17, 0))
        early = WeeklyBlock(MONDAY, time(9, 0), time(12, 0))
        index = _index(late, early)
        assert index.blocks_for_day(MONDAY) == [early, late]


class TestSlotStarts:
    def test_slots_step_through_block_and_fit_inside(self):
        index = _index(WeeklyBlock(MONDAY, time(9, 0), time(11, 0)))
        assert index.slot_starts(at(0).date(), 60) == [at(9), at(9, 30), at(10)]

    def test_slots_from_several_blocks_are_sorted(self):
        index = _index(
            WeeklyBlock(MONDAY, time(14, 0), time(15, 0)),
            WeeklyBlock(MONDAY, time(9, 0), time(10, 0)),
        )
        assert index.slot_starts(at(0).date(), 60) == [at(9), at(14)]

    def test_overlapping_blocks_do_not_duplicate_slots(self):
        index = _index(
            WeeklyBlock(MONDAY, time(9, 0), time(11, 0)),
            WeeklyBlock(MONDAY, time(10, 0), time(12, 0)),
        )
        slots = index.slot_starts(at(0).date(), 60)
        assert slots == sorted(set(slots))
        assert slots.count(at(10)) == 1

    def test_block_shorter_than_session_has_no_slots(self):
        index = _index(WeeklyBlock(MONDAY, time(9, 0), time(9, 30)))
        assert index.slot_starts(at(0).date(), 60) == []

    def test_day_without_blocks(self):
        index = _index(WeeklyBlock(WEDNESDAY, time(9, 0), time(17, 0)))
        assert index.slot_starts(at(0).date(), 60) == []

    def test_rejects_non_positive_duration(self):
        index = _index(WeeklyBlock(MONDAY, time(9, 0), time(17, 0)))
        with pytest.raises(ValueError):
            index.slot_starts(at(0).date(), 0)
