"""Offered pickup / delivery time slots — a pure function of the date."""

from datetime import date, timedelta

from config.settings import settings

_SATURDAY = 5


def generate_time_slots(
    today: date,
    days: int | None = None,
    start_hour: int | None = None,
    end_hour: int | None = None,
) -> list[str]:
    """Hourly business slots from tomorrow over ``days`` calendar days, weekdays only.

    >>> generate_time_slots(date(2025, 6, 13), days=1)  # Friday -> Saturday, nothing
    []
    """
    n_days = settings.SLOT_DAYS if days is None else days
    first = settings.SLOT_START_HOUR if start_hour is None else start_hour
    last = settings.SLOT_END_HOUR if end_hour is None else end_hour

    slots: list[str] = []
    for offset in range(1, n_days + 1):
        day = today + timedelta(days=offset)
        if day.weekday() >= _SATURDAY:
            continue
        for hour in range(first, last + 1):
            slots.append(f"{day.isoformat()} {hour:02d}:00")
    return slots
