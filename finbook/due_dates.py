from __future__ import annotations

from calendar import monthrange
from datetime import date, timedelta

CLAMP = "clamp"
ROLL_FORWARD = "roll_forward"
SUPPORTED_POLICIES = {CLAMP, ROLL_FORWARD}


def next_due_date(due_day: int, today: date, policy: str = CLAMP) -> date:
    """Return the first due date on or after ``today``.

    ``policy`` decides what a due day past the end of a short month means:
    ``clamp`` moves it to the month's last day, ``roll_forward`` lets it
    spill into the following month (day 31 in a 30-day month lands on the
    1st of the next one).
    """
    normalized_policy = validate_policy(policy)
    if not 1 <= due_day <= 31:
        raise ValueError("due_day must be between 1 and 31.")

    candidates = []
    for offset in (-1, 0, 1):
        # A rolled-forward due date from last month can still lie ahead.
        year, month = _shift_month(today.year, today.month, offset)
        candidate = due_date_in_month(due_day, year, month, normalized_policy)
        if candidate >= today:
            candidates.append(candidate)
    return min(candidates)


def due_date_in_month(due_day: int, year: int, month: int, policy: str = CLAMP) -> date:
    normalized_policy = validate_policy(policy)
    if normalized_policy == ROLL_FORWARD:
        return date(year, month, 1) + timedelta(days=due_day - 1)
    last_day = monthrange(year, month)[1]
    return date(year, month, min(due_day, last_day))


def days_until_due(due_day: int, today: date, policy: str = CLAMP) -> int:
    return (next_due_date(due_day, today, policy) - today).days


def validate_policy(policy: str) -> str:
    normalized = "".join(
        ch for ch in policy.strip().lower().replace("-", "_") if ch.isalnum() or ch == "_"
    )
    if normalized not in SUPPORTED_POLICIES:
        raise ValueError("Only clamp or roll_forward due date policies are supported.")
    return normalized


def _shift_month(year: int, month: int, months: int) -> tuple[int, int]:
    month_index = (year * 12 + month - 1) + months
    return month_index // 12, month_index % 12 + 1
