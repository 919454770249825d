from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Mapping, Optional

from finbook.errors import ValidationError
from finbook.recurring_registry import coerce_amount
from finbook.storage import DocumentStore, DuplicateKey

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
MIN_YEAR = 1
MAX_YEAR = 9999


@dataclass(frozen=True)
class SettlementRecord:
    id: str
    recurring_expense_id: str
    user_id: str
    month: int
    year: int
    amount_paid: Decimal
    payment_date: Optional[date]
    is_paid: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SettlementLedger:
    """Per-cycle payment state of recurring expenses.

    A cycle is keyed by (recurring_expense_id, month, year) within one user.
    No record means unpaid; a record with is_paid=False also means unpaid.
    Records are never removed, only flipped between paid and pending.

    Upserts are find-then-create-or-update. Two writers racing on the same
    key end with whichever write lands last; the unique constraint on the
    natural key turns a lost create race into an update.
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    def get_for_month(self, user_id: str, month: int, year: int) -> List[SettlementRecord]:
        validate_period(month, year)
        rows = self.store.query_settlements(user_id, month, year)
        return [_to_record(row) for row in rows]

    def find_record(
        self, definition_id: str, user_id: str, month: int, year: int
    ) -> SettlementRecord | None:
        validate_period(month, year)
        row = self.store.find_settlement(definition_id, user_id, month, year)
        return _to_record(row) if row else None

    def history(self, definition_id: str, user_id: str) -> List[SettlementRecord]:
        rows = self.store.query_settlements_for_expense(definition_id, user_id)
        return [_to_record(row) for row in rows]

    def mark_paid(
        self,
        definition_id: str,
        user_id: str,
        month: int,
        year: int,
        amount_paid: Decimal | int | float | str,
        payment_date: date | str,
    ) -> SettlementRecord:
        validate_period(month, year)
        amount = coerce_amount(amount_paid)
        if amount <= ZERO:
            raise ValidationError("Amount must be greater than zero.")
        paid_on = _coerce_date(payment_date)

        record = self._upsert(
            definition_id,
            user_id,
            month,
            year,
            on_existing={"amount_paid": amount, "payment_date": paid_on, "is_paid": True},
            on_absent={"amount_paid": amount, "payment_date": paid_on, "is_paid": True},
        )
        logger.info(
            "Recurring expense %s marked paid for %02d/%d: %s",
            definition_id,
            month,
            year,
            amount,
        )
        return record

    def mark_pending(
        self, definition_id: str, user_id: str, month: int, year: int
    ) -> SettlementRecord:
        validate_period(month, year)
        # amount_paid and payment_date stay as recorded so an accidental
        # toggle can be undone from the record itself.
        record = self._upsert(
            definition_id,
            user_id,
            month,
            year,
            on_existing={"is_paid": False},
            on_absent={"amount_paid": ZERO, "payment_date": None, "is_paid": False},
        )
        logger.info(
            "Recurring expense %s marked pending for %02d/%d", definition_id, month, year
        )
        return record

    def _upsert(
        self,
        definition_id: str,
        user_id: str,
        month: int,
        year: int,
        on_existing: Mapping[str, Any],
        on_absent: Mapping[str, Any],
    ) -> SettlementRecord:
        existing = self.store.find_settlement(definition_id, user_id, month, year)
        if existing is None:
            try:
                row = self.store.insert_settlement(
                    {
                        "recurring_expense_id": definition_id,
                        "user_id": user_id,
                        "month": month,
                        "year": year,
                        **on_absent,
                    }
                )
                return _to_record(row)
            except DuplicateKey:
                existing = self.store.find_settlement(definition_id, user_id, month, year)
                if existing is None:
                    raise
        row = self.store.update_settlement(existing["id"], on_existing)
        if row is None:
            raise RuntimeError("Settlement record vanished during update.")
        return _to_record(row)


def validate_period(month: Any, year: Any) -> None:
    if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12.")
    if isinstance(year, bool) or not isinstance(year, int) or not MIN_YEAR <= year <= MAX_YEAR:
        raise ValidationError("Year must be between 1 and 9999.")


def _coerce_date(value: date | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError) as exc:
        raise ValidationError("Payment date must be in YYYY-MM-DD format.") from exc


def _to_record(row: Mapping[str, Any]) -> SettlementRecord:
    return SettlementRecord(
        id=row["id"],
        recurring_expense_id=row["recurring_expense_id"],
        user_id=row["user_id"],
        month=row["month"],
        year=row["year"],
        amount_paid=coerce_amount(row["amount_paid"]),
        payment_date=row["payment_date"],
        is_paid=bool(row["is_paid"]),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )
