from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, List, Mapping, Optional

from finbook.categories import ExpenseCategory
from finbook.errors import ValidationError
from finbook.storage import DocumentStore

logger = logging.getLogger(__name__)

MIN_DUE_DAY = 1
MAX_DUE_DAY = 31
ZERO = Decimal("0")
UPDATABLE_FIELDS = {"description", "category", "due_day", "amount", "active"}


@dataclass(frozen=True)
class RecurringExpenseDefinition:
    id: str
    user_id: str
    description: str
    category: str
    due_day: int
    amount: Decimal = ZERO
    active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RecurringExpenseRegistry:
    """CRUD over recurring expense definitions, always scoped to one user.

    Deleting a definition is a soft delete: the row stays with active=False so
    settlement records that point at it keep a valid reference. Nothing here
    reads or writes settlement records.
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    def create(
        self,
        description: str,
        category: str,
        due_day: int,
        user_id: str,
        amount: Decimal | int | float | str = ZERO,
    ) -> str:
        values = {
            "user_id": user_id,
            "description": validate_description(description),
            "category": ExpenseCategory.validate(category),
            "due_day": validate_due_day(due_day),
            "amount": validate_expected_amount(amount),
            "active": True,
        }
        row = self.store.insert_recurring_expense(values)
        logger.info("Created recurring expense %s for user %s", row["id"], user_id)
        return row["id"]

    def get(self, user_id: str, definition_id: str) -> RecurringExpenseDefinition | None:
        row = self.store.get_recurring_expense(user_id, definition_id)
        return _to_definition(row) if row else None

    def list_active(self, user_id: str) -> List[RecurringExpenseDefinition]:
        rows = self.store.query_recurring_expenses(user_id, active=True)
        return [_to_definition(row) for row in rows]

    def list_all(self, user_id: str) -> List[RecurringExpenseDefinition]:
        rows = self.store.query_recurring_expenses(user_id)
        return [_to_definition(row) for row in rows]

    def update(
        self, user_id: str, definition_id: str, /, **fields: Any
    ) -> RecurringExpenseDefinition | None:
        values = _validate_fields(fields)
        if not values:
            return self.get(user_id, definition_id)
        row = self.store.update_recurring_expense(user_id, definition_id, values)
        if row is None:
            return None
        logger.info(
            "Updated recurring expense %s (%s)", definition_id, ", ".join(sorted(values))
        )
        return _to_definition(row)

    def set_active(
        self, user_id: str, definition_id: str, /, active: bool
    ) -> RecurringExpenseDefinition | None:
        return self.update(user_id, definition_id, active=active)

    def delete(self, user_id: str, definition_id: str, /) -> RecurringExpenseDefinition | None:
        return self.set_active(user_id, definition_id, False)


def validate_description(description: str) -> str:
    normalized = (description or "").strip()
    if not normalized:
        raise ValidationError("Description required.")
    return normalized


def validate_due_day(due_day: Any) -> int:
    if isinstance(due_day, bool) or not isinstance(due_day, int):
        raise ValidationError("Due day must be an integer.")
    if not MIN_DUE_DAY <= due_day <= MAX_DUE_DAY:
        raise ValidationError("Due day must be between 1 and 31.")
    return due_day


def validate_expected_amount(amount: Decimal | int | float | str | None) -> Decimal:
    coerced = coerce_amount(ZERO if amount is None else amount)
    if coerced < ZERO:
        raise ValidationError("Amount cannot be negative.")
    return coerced


def coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        coerced = amount
    else:
        try:
            coerced = Decimal(str(amount))
        except InvalidOperation as exc:
            raise ValidationError("Amount must be a number.") from exc
    if not coerced.is_finite():
        raise ValidationError("Amount must be a number.")
    return coerced


def _validate_fields(fields: Mapping[str, Any]) -> dict:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}.")
    values: dict[str, Any] = {}
    if "description" in fields:
        values["description"] = validate_description(fields["description"])
    if "category" in fields:
        values["category"] = ExpenseCategory.validate(fields["category"])
    if "due_day" in fields:
        values["due_day"] = validate_due_day(fields["due_day"])
    if "amount" in fields:
        values["amount"] = validate_expected_amount(fields["amount"])
    if "active" in fields:
        values["active"] = bool(fields["active"])
    return values


def _to_definition(row: Mapping[str, Any]) -> RecurringExpenseDefinition:
    return RecurringExpenseDefinition(
        id=row["id"],
        user_id=row["user_id"],
        description=row["description"],
        category=row["category"],
        due_day=row["due_day"],
        amount=coerce_amount(row["amount"]),
        active=bool(row["active"]),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )
