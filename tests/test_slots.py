import itertools

import pytest

from app.core.slots import SLOT_DEFINITIONS, compute_total_hours, is_valid_slot, slot_order


def test_catalog_has_eight_hour_slots() -> None:
    assert list(SLOT_DEFINITIONS) == ["9-10", "10-11", "11-12", "12-13", "13-14", "14-15", "15-16", "16-17"]
    assert SLOT_DEFINITIONS["9-10"] == ("9:00 - 10:00", 60)
    assert all(minutes == 60 for _, minutes in SLOT_DEFINITIONS.values())


def test_slot_validation_and_order() -> None:
    assert is_valid_slot("13-14")
    assert not is_valid_slot("8-9")
    assert not is_valid_slot("")
    assert slot_order("9-10") < slot_order("16-17")
    assert slot_order("bogus") == len(SLOT_DEFINITIONS)


@pytest.mark.parametrize("checked_count", [0, 1, 3, 8])
@pytest.mark.parametrize("break_minutes", [None, 0, 15, 60, 120])
def test_total_hours_formula(checked_count: int, break_minutes) -> None:
    minutes = [60] * checked_count
    expected = max(0.0, (sum(minutes) - (break_minutes or 0)) / 60)
    assert compute_total_hours(minutes, break_minutes) == pytest.approx(expected)


def test_total_hours_never_negative() -> None:
    assert compute_total_hours([], 120) == 0.0
    assert compute_total_hours([60], 120) == 0.0


def test_unchecked_break_is_not_deducted() -> None:
    assert compute_total_hours([60, 60], 30, break_checked=False) == pytest.approx(2.0)


def test_any_slot_combination() -> None:
    durations = [m for _, m in SLOT_DEFINITIONS.values()]
    for mask in itertools.product([False, True], repeat=4):
        chosen = [d for d, keep in zip(durations[:4], mask) if keep]
        assert compute_total_hours(chosen, 45) == pytest.approx(max(0.0, (60 * len(chosen) - 45) / 60))
