from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Mapping

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("hashed_password", String(255), nullable=False),
    Column("created_at", DateTime, nullable=False),
)

user_settings = Table(
    "user_settings",
    metadata,
    Column("user_id", String(32), primary_key=True),
    Column("monthly_budget", Numeric(12, 2), nullable=False),
    Column("notify_before_due_date", Integer, nullable=False),
    Column("notify_budget_percentage", Integer, nullable=False),
    Column("currency", String(3), nullable=False),
    Column("default_expense_category", String(50), nullable=False),
    Column("default_fixed_expense_category", String(50), nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

expenses = Table(
    "expenses",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(32), nullable=False, index=True),
    Column("description", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("category", String(50), nullable=False),
    Column("date", Date, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

recurring_expenses = Table(
    "recurring_expenses",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(32), nullable=False, index=True),
    Column("description", String(255), nullable=False),
    Column("category", String(50), nullable=False),
    Column("due_day", Integer, nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("active", Boolean, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

# recurring_expense_id is a weak reference: no foreign key, no cascade.
settlement_records = Table(
    "settlement_records",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(32), nullable=False),
    Column("recurring_expense_id", String(32), nullable=False),
    Column("month", Integer, nullable=False),
    Column("year", Integer, nullable=False),
    Column("amount_paid", Numeric(12, 2), nullable=False),
    Column("payment_date", Date),
    Column("is_paid", Boolean, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    UniqueConstraint(
        "user_id",
        "recurring_expense_id",
        "month",
        "year",
        name="uq_settlement_records_natural_key",
    ),
)

monthly_budgets = Table(
    "monthly_budgets",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(32), nullable=False),
    Column("month", Integer, nullable=False),
    Column("year", Integer, nullable=False),
    Column("limit", Numeric(12, 2), nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    UniqueConstraint("user_id", "month", "year", name="uq_monthly_budgets_user_month"),
)


class StoreUnavailable(RuntimeError):
    """Raised when the document store cannot be reached or refuses the call."""


class DuplicateKey(RuntimeError):
    """Raised when an insert collides with an existing natural key."""


def build_engine(database_url: str) -> Engine:
    connect_args: dict[str, Any] = {}
    engine_kwargs: dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            engine_kwargs["poolclass"] = StaticPool
    return create_engine(database_url, connect_args=connect_args, **engine_kwargs)


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DocumentStore:
    """Collection-style access to the tables backing the settlement model.

    Every method runs in its own transaction, so each call is atomic at the
    single-row level and nothing wider.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_all(self) -> None:
        with self.begin() as conn:
            metadata.create_all(conn)

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        try:
            with self.engine.begin() as conn:
                yield conn
        except (OperationalError, InterfaceError) as exc:
            logger.error("Document store call failed: %s", exc)
            raise StoreUnavailable("Document store unavailable.") from exc

    # Recurring expense definitions

    def insert_recurring_expense(self, values: Mapping[str, Any]) -> dict:
        now = utcnow()
        row_values = {"id": new_id(), "created_at": now, "updated_at": now, **values}
        with self.begin() as conn:
            row = conn.execute(
                insert(recurring_expenses)
                .values(**row_values)
                .returning(*recurring_expenses.c)
            ).mappings().first()
        return dict(row)

    def get_recurring_expense(self, user_id: str, expense_id: str) -> dict | None:
        with self.begin() as conn:
            row = conn.execute(
                select(recurring_expenses).where(
                    recurring_expenses.c.id == expense_id,
                    recurring_expenses.c.user_id == user_id,
                )
            ).mappings().first()
        return dict(row) if row else None

    def query_recurring_expenses(
        self, user_id: str, active: bool | None = None
    ) -> list[dict]:
        conditions = [recurring_expenses.c.user_id == user_id]
        if active is not None:
            conditions.append(recurring_expenses.c.active == active)
        stmt = (
            select(recurring_expenses)
            .where(*conditions)
            .order_by(
                recurring_expenses.c.due_day.asc(),
                recurring_expenses.c.created_at.asc(),
                recurring_expenses.c.id.asc(),
            )
        )
        with self.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [dict(row) for row in rows]

    def update_recurring_expense(
        self, user_id: str, expense_id: str, values: Mapping[str, Any]
    ) -> dict | None:
        stmt = (
            update(recurring_expenses)
            .where(
                recurring_expenses.c.id == expense_id,
                recurring_expenses.c.user_id == user_id,
            )
            .values(**values, updated_at=utcnow())
            .returning(*recurring_expenses.c)
        )
        with self.begin() as conn:
            row = conn.execute(stmt).mappings().first()
        return dict(row) if row else None

    # Settlement records

    def query_settlements(self, user_id: str, month: int, year: int) -> list[dict]:
        stmt = (
            select(settlement_records)
            .where(
                settlement_records.c.user_id == user_id,
                settlement_records.c.month == month,
                settlement_records.c.year == year,
            )
            .order_by(settlement_records.c.created_at.asc(), settlement_records.c.id.asc())
        )
        with self.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [dict(row) for row in rows]

    def query_settlements_for_expense(
        self, recurring_expense_id: str, user_id: str
    ) -> list[dict]:
        stmt = (
            select(settlement_records)
            .where(
                settlement_records.c.recurring_expense_id == recurring_expense_id,
                settlement_records.c.user_id == user_id,
            )
            .order_by(settlement_records.c.year.desc(), settlement_records.c.month.desc())
        )
        with self.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [dict(row) for row in rows]

    def find_settlement(
        self, recurring_expense_id: str, user_id: str, month: int, year: int
    ) -> dict | None:
        stmt = select(settlement_records).where(
            settlement_records.c.recurring_expense_id == recurring_expense_id,
            settlement_records.c.user_id == user_id,
            settlement_records.c.month == month,
            settlement_records.c.year == year,
        )
        with self.begin() as conn:
            row = conn.execute(stmt).mappings().first()
        return dict(row) if row else None

    def insert_settlement(self, values: Mapping[str, Any]) -> dict:
        now = utcnow()
        row_values = {"id": new_id(), "created_at": now, "updated_at": now, **values}
        try:
            with self.begin() as conn:
                row = conn.execute(
                    insert(settlement_records)
                    .values(**row_values)
                    .returning(*settlement_records.c)
                ).mappings().first()
        except IntegrityError as exc:
            raise DuplicateKey("Settlement record already exists.") from exc
        return dict(row)

    def update_settlement(self, record_id: str, values: Mapping[str, Any]) -> dict | None:
        stmt = (
            update(settlement_records)
            .where(settlement_records.c.id == record_id)
            .values(**values, updated_at=utcnow())
            .returning(*settlement_records.c)
        )
        with self.begin() as conn:
            row = conn.execute(stmt).mappings().first()
        return dict(row) if row else None
