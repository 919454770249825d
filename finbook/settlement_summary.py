from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

from finbook.due_dates import CLAMP, next_due_date
from finbook.recurring_registry import RecurringExpenseDefinition, RecurringExpenseRegistry
from finbook.settlement_ledger import SettlementLedger, SettlementRecord, validate_period

ZERO = Decimal("0")


@dataclass(frozen=True)
class MonthlySummary:
    month: int
    year: int
    total_paid: Decimal
    paid_count: int
    pending_count: int


@dataclass(frozen=True)
class MonthlyStatusEntry:
    definition: RecurringExpenseDefinition
    record: Optional[SettlementRecord]
    is_paid: bool
    next_due_date: date


def summarize_month(
    definitions: Iterable[RecurringExpenseDefinition],
    records: Iterable[SettlementRecord],
    month: int,
    year: int,
) -> MonthlySummary:
    active_ids = {definition.id for definition in definitions if definition.active}
    paid_records = [
        record
        for record in records
        if record.is_paid and record.month == month and record.year == year
    ]
    total_paid = ZERO
    for record in paid_records:
        total_paid += record.amount_paid
    # Paid records of paused or deleted definitions count toward the totals
    # but not against pending: pending is active minus paid-and-active, not
    # active minus paid_count, so it never drops below zero.
    paid_active_ids = {record.recurring_expense_id for record in paid_records} & active_ids
    return MonthlySummary(
        month=month,
        year=year,
        total_paid=total_paid,
        paid_count=len(paid_records),
        pending_count=len(active_ids - paid_active_ids),
    )


class SettlementAggregator:
    def __init__(
        self,
        registry: RecurringExpenseRegistry,
        ledger: SettlementLedger,
        due_date_policy: str = CLAMP,
    ) -> None:
        self.registry = registry
        self.ledger = ledger
        self.due_date_policy = due_date_policy

    def summarize(self, user_id: str, month: int, year: int) -> MonthlySummary:
        validate_period(month, year)
        definitions = self.registry.list_active(user_id)
        records = self.ledger.get_for_month(user_id, month, year)
        return summarize_month(definitions, records, month, year)

    def monthly_status(
        self, user_id: str, month: int, year: int, today: date
    ) -> List[MonthlyStatusEntry]:
        """Active definitions in due-day order, each joined with its record."""
        validate_period(month, year)
        definitions = self.registry.list_active(user_id)
        records = {
            record.recurring_expense_id: record
            for record in self.ledger.get_for_month(user_id, month, year)
        }
        entries: List[MonthlyStatusEntry] = []
        for definition in definitions:
            record = records.get(definition.id)
            entries.append(
                MonthlyStatusEntry(
                    definition=definition,
                    record=record,
                    is_paid=bool(record and record.is_paid),
                    next_due_date=next_due_date(
                        definition.due_day, today, self.due_date_policy
                    ),
                )
            )
        return entries
