"""Fixed daily slot catalog and credited-hours arithmetic."""

from typing import Dict, Iterable, Optional, Tuple

# slot_id -> (label, duration in minutes); insertion order is display order
SLOT_DEFINITIONS: Dict[str, Tuple[str, int]] = {
    "9-10": ("9:00 - 10:00", 60),
    "10-11": ("10:00 - 11:00", 60),
    "11-12": ("11:00 - 12:00", 60),
    "12-13": ("12:00 - 13:00", 60),
    "13-14": ("13:00 - 14:00", 60),
    "14-15": ("14:00 - 15:00", 60),
    "15-16": ("15:00 - 16:00", 60),
    "16-17": ("16:00 - 17:00", 60),
}

VALID_SLOT_IDS = frozenset(SLOT_DEFINITIONS)

# Timetable imports clamp the break to this window
TIMETABLE_MAX_BREAK_MINUTES = 60


def is_valid_slot(slot_id: str) -> bool:
    return slot_id in VALID_SLOT_IDS


def slot_order(slot_id: str) -> int:
    try:
        return list(SLOT_DEFINITIONS).index(slot_id)
    except ValueError:
        return len(SLOT_DEFINITIONS)


def compute_total_hours(
    checked_minutes: Iterable[int],
    break_minutes: Optional[int],
    break_checked: bool = True,
) -> float:
    """Sum of checked slot minutes minus the break, in hours, never negative."""
    minutes = sum(checked_minutes)
    if break_checked and break_minutes:
        minutes -= break_minutes
    return max(0.0, minutes / 60)
