from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

ZERO = Decimal("0")
HUNDRED = Decimal("100")
DEFAULT_ALERT_PERCENTAGE = 80


@dataclass(frozen=True)
class Expense:
    amount: Decimal
    date: date
    category: Optional[str] = None


@dataclass(frozen=True)
class FixedExpense:
    amount: Decimal
    active: bool = True


@dataclass(frozen=True)
class BudgetSnapshot:
    monthly_budget: Decimal
    variable_total: Decimal
    fixed_total: Decimal
    total_spent: Decimal
    percent_spent: Decimal
    available: Decimal
    status: str


def evaluate_month_budget(
    expenses: Iterable[Expense],
    fixed_expenses: Iterable[FixedExpense],
    monthly_budget: Decimal,
    year: int,
    month: int,
    alert_percentage: int = DEFAULT_ALERT_PERCENTAGE,
) -> BudgetSnapshot:
    """Compare one month's spend against its budget.

    Variable expenses outside the month are ignored. Fixed expenses count
    at their expected amount whether or not this month's cycle is settled.
    """
    budget = _coerce_amount(monthly_budget)
    if budget <= ZERO:
        raise ValueError("monthly_budget must be greater than zero.")
    if not 1 <= alert_percentage <= 100:
        raise ValueError("alert_percentage must be between 1 and 100.")

    variable_total = ZERO
    for expense in expenses:
        if expense.date.year == year and expense.date.month == month:
            variable_total += _coerce_amount(expense.amount)

    fixed_total = ZERO
    for fixed in fixed_expenses:
        if fixed.active:
            fixed_total += _coerce_amount(fixed.amount)

    total_spent = variable_total + fixed_total
    percent_spent = (total_spent / budget * HUNDRED).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )
    if percent_spent > HUNDRED:
        status = "over"
    elif percent_spent >= alert_percentage:
        status = "warning"
    else:
        status = "ok"

    return BudgetSnapshot(
        monthly_budget=budget,
        variable_total=variable_total,
        fixed_total=fixed_total,
        total_spent=total_spent,
        percent_spent=percent_spent,
        available=budget - total_spent,
        status=status,
    )


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
