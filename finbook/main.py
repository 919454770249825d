import logging
import os
from datetime import date, datetime
from decimal import Decimal

import bcrypt
from fastapi import FastAPI, HTTPException, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import and_, insert, select, update
from sqlalchemy.exc import IntegrityError

from finbook.budget_engine import (
    DEFAULT_ALERT_PERCENTAGE,
    Expense,
    FixedExpense,
    evaluate_month_budget,
)
from finbook.categories import (
    CATEGORY_CATALOGUE,
    DEFAULT_EXPENSE_CATEGORY,
    DEFAULT_FIXED_EXPENSE_CATEGORY,
    ExpenseCategory,
)
from finbook.due_dates import CLAMP, days_until_due, validate_policy
from finbook.errors import ValidationError
from finbook.recurring_registry import (
    RecurringExpenseDefinition,
    RecurringExpenseRegistry,
    coerce_amount,
    validate_description,
)
from finbook.settlement_ledger import SettlementLedger, SettlementRecord, validate_period
from finbook.settlement_summary import MonthlySummary, SettlementAggregator
from finbook.storage import (
    DocumentStore,
    StoreUnavailable,
    build_engine,
    expenses,
    monthly_budgets,
    new_id,
    user_settings,
    users,
    utcnow,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI()

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./finbook.db")
engine = build_engine(database_url)
store = DocumentStore(engine)


def get_default_monthly_budget() -> Decimal:
    raw = os.getenv("DEFAULT_MONTHLY_BUDGET", "50000")
    try:
        value = coerce_amount(raw)
    except ValueError:
        return Decimal("50000")
    return value if value > 0 else Decimal("50000")


def get_due_date_policy() -> str:
    raw = os.getenv("DUE_DATE_POLICY", CLAMP)
    try:
        return validate_policy(raw)
    except ValueError:
        logger.warning("Unknown DUE_DATE_POLICY %r, using %s", raw, CLAMP)
        return CLAMP


DEFAULT_MONTHLY_BUDGET = get_default_monthly_budget()
DUE_DATE_POLICY = get_due_date_policy()
DEFAULT_CURRENCY = "ARS"
DEFAULT_NOTIFY_BEFORE_DUE_DATE = 3
RECENT_EXPENSES_LIMIT = 3

registry = RecurringExpenseRegistry(store)
ledger = SettlementLedger(store)
aggregator = SettlementAggregator(registry, ledger, due_date_policy=DUE_DATE_POLICY)


@app.on_event("startup")
def init_db() -> None:
    store.create_all()


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request, exc: StoreUnavailable) -> JSONResponse:
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


class CredentialsPayload(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: str
    email: str
    created_at: datetime | None = None


class UserSettingsPayload(BaseModel):
    monthly_budget: Decimal | None = None
    notify_before_due_date: int | None = None
    notify_budget_percentage: int | None = None
    currency: str | None = None
    default_expense_category: str | None = None
    default_fixed_expense_category: str | None = None

    @classmethod
    def validate_payload(cls, payload: "UserSettingsPayload") -> dict:
        values: dict = {}
        if payload.monthly_budget is not None:
            if payload.monthly_budget <= 0:
                raise ValidationError("Monthly budget must be greater than zero.")
            values["monthly_budget"] = payload.monthly_budget
        if payload.notify_before_due_date is not None:
            if not 0 <= payload.notify_before_due_date <= 31:
                raise ValidationError("Reminder days must be between 0 and 31.")
            values["notify_before_due_date"] = payload.notify_before_due_date
        if payload.notify_budget_percentage is not None:
            if not 1 <= payload.notify_budget_percentage <= 100:
                raise ValidationError("Budget alert percentage must be between 1 and 100.")
            values["notify_budget_percentage"] = payload.notify_budget_percentage
        if payload.currency is not None:
            currency = payload.currency.strip().upper()
            if len(currency) != 3 or not currency.isalpha():
                raise ValidationError("Currency must be a 3-letter ISO 4217 code.")
            values["currency"] = currency
        if payload.default_expense_category is not None:
            values["default_expense_category"] = ExpenseCategory.validate(
                payload.default_expense_category
            )
        if payload.default_fixed_expense_category is not None:
            values["default_fixed_expense_category"] = ExpenseCategory.validate(
                payload.default_fixed_expense_category
            )
        return values


class UserSettingsResponse(BaseModel):
    user_id: str
    monthly_budget: Decimal
    notify_before_due_date: int
    notify_budget_percentage: int
    currency: str
    default_expense_category: str
    default_fixed_expense_category: str


class CategoryResponse(BaseModel):
    id: str
    name: str
    emoji: str


class ExpensePayload(BaseModel):
    description: str
    amount: Decimal
    category: str | None = None
    date: date

    @classmethod
    def validate_payload(cls, payload: "ExpensePayload") -> "ExpensePayload":
        payload.description = validate_description(payload.description)
        if payload.amount <= 0:
            raise ValidationError("Amount must be greater than zero.")
        if payload.category is not None:
            payload.category = ExpenseCategory.validate(payload.category)
        return payload


class ExpenseResponse(BaseModel):
    id: str
    user_id: str
    description: str
    amount: Decimal
    category: str
    date: date
    created_at: datetime | None = None
    updated_at: datetime | None = None


class FixedExpensePayload(BaseModel):
    description: str
    category: str | None = None
    due_day: int
    amount: Decimal = Decimal("0")


class FixedExpenseUpdatePayload(BaseModel):
    description: str | None = None
    category: str | None = None
    due_day: int | None = None
    amount: Decimal | None = None
    active: bool | None = None


class FixedExpenseActivePayload(BaseModel):
    active: bool


class FixedExpenseResponse(BaseModel):
    id: str
    user_id: str
    description: str
    category: str
    due_day: int
    amount: Decimal
    active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SettlementRecordResponse(BaseModel):
    id: str
    recurring_expense_id: str
    user_id: str
    month: int
    year: int
    amount_paid: Decimal
    payment_date: date | None = None
    is_paid: bool
    updated_at: datetime | None = None


class MarkPaidPayload(BaseModel):
    month: int
    year: int
    amount_paid: Decimal
    payment_date: date | None = None


class MarkPendingPayload(BaseModel):
    month: int
    year: int


class MonthlySummaryResponse(BaseModel):
    month: int
    year: int
    total_paid: Decimal
    paid_count: int
    pending_count: int


class FixedExpenseStatusResponse(BaseModel):
    expense: FixedExpenseResponse
    payment: SettlementRecordResponse | None = None
    is_paid: bool
    next_due_date: date
    days_until_due: int


class MonthlyBudgetPayload(BaseModel):
    limit: Decimal


class MonthlyBudgetResponse(BaseModel):
    user_id: str
    month: int
    year: int
    limit: Decimal
    is_default: bool


class DashboardResponse(BaseModel):
    month: int
    year: int
    currency: str
    monthly_budget: Decimal
    variable_total: Decimal
    fixed_total: Decimal
    total_spent: Decimal
    percent_spent: Decimal
    available: Decimal
    status: str
    recent_expenses: list[ExpenseResponse]
    fixed_summary: MonthlySummaryResponse


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def bad_request(exc: ValueError) -> HTTPException:
    logger.warning("Rejected request: %s", exc)
    return HTTPException(status_code=400, detail=str(exc))


def get_user_id(x_user_id: str | None = Header(None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing user identity.")
    user_id = x_user_id.strip()
    with store.begin() as conn:
        result = conn.execute(select(users.c.id).where(users.c.id == user_id))
        if not result.first():
            raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def resolve_period(month: int | None, year: int | None) -> tuple[int, int]:
    today = date.today()
    resolved_month = today.month if month is None else month
    resolved_year = today.year if year is None else year
    try:
        validate_period(resolved_month, resolved_year)
    except ValueError as exc:
        raise bad_request(exc) from exc
    return resolved_month, resolved_year


def month_bounds(month: int, year: int) -> tuple[date, date]:
    start = date(year, month, 1)
    if month == 12:
        end = date(year + 1, 1, 1)
    else:
        end = date(year, month + 1, 1)
    return start, end


def get_or_create_settings(conn, user_id: str) -> dict:
    row = conn.execute(
        select(user_settings).where(user_settings.c.user_id == user_id)
    ).mappings().first()
    if row:
        return dict(row)
    values = {
        "user_id": user_id,
        "monthly_budget": DEFAULT_MONTHLY_BUDGET,
        "notify_before_due_date": DEFAULT_NOTIFY_BEFORE_DUE_DATE,
        "notify_budget_percentage": DEFAULT_ALERT_PERCENTAGE,
        "currency": DEFAULT_CURRENCY,
        "default_expense_category": DEFAULT_EXPENSE_CATEGORY,
        "default_fixed_expense_category": DEFAULT_FIXED_EXPENSE_CATEGORY,
        "updated_at": utcnow(),
    }
    conn.execute(insert(user_settings).values(**values))
    return values


def settings_response(row: dict) -> UserSettingsResponse:
    return UserSettingsResponse(
        user_id=row["user_id"],
        monthly_budget=row["monthly_budget"],
        notify_before_due_date=row["notify_before_due_date"],
        notify_budget_percentage=row["notify_budget_percentage"],
        currency=row["currency"],
        default_expense_category=row["default_expense_category"],
        default_fixed_expense_category=row["default_fixed_expense_category"],
    )


def expense_response(row) -> ExpenseResponse:
    return ExpenseResponse(
        id=row["id"],
        user_id=row["user_id"],
        description=row["description"],
        amount=row["amount"],
        category=row["category"],
        date=row["date"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def fixed_expense_response(definition: RecurringExpenseDefinition) -> FixedExpenseResponse:
    return FixedExpenseResponse(
        id=definition.id,
        user_id=definition.user_id,
        description=definition.description,
        category=definition.category,
        due_day=definition.due_day,
        amount=definition.amount,
        active=definition.active,
        created_at=definition.created_at,
        updated_at=definition.updated_at,
    )


def settlement_response(record: SettlementRecord) -> SettlementRecordResponse:
    return SettlementRecordResponse(
        id=record.id,
        recurring_expense_id=record.recurring_expense_id,
        user_id=record.user_id,
        month=record.month,
        year=record.year,
        amount_paid=record.amount_paid,
        payment_date=record.payment_date,
        is_paid=record.is_paid,
        updated_at=record.updated_at,
    )


def summary_response(summary: MonthlySummary) -> MonthlySummaryResponse:
    return MonthlySummaryResponse(
        month=summary.month,
        year=summary.year,
        total_paid=summary.total_paid,
        paid_count=summary.paid_count,
        pending_count=summary.pending_count,
    )


def require_fixed_expense(user_id: str, expense_id: str) -> RecurringExpenseDefinition:
    definition = registry.get(user_id, expense_id)
    if definition is None:
        raise HTTPException(status_code=404, detail="Fixed expense not found.")
    return definition


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/auth/signup", response_model=UserResponse)
def signup(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    if not email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password required.")
    hashed_password = hash_password(payload.password)

    stmt = (
        insert(users)
        .values(id=new_id(), email=email, hashed_password=hashed_password, created_at=utcnow())
        .returning(users.c.id, users.c.email, users.c.created_at)
    )
    try:
        with store.begin() as conn:
            row = conn.execute(stmt).mappings().first()
            if row:
                get_or_create_settings(conn, row["id"])
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Email already exists.") from exc

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create user.")
    logger.info("Signed up user %s", row["id"])
    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.post("/auth/login", response_model=UserResponse)
def login(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    with store.begin() as conn:
        row = conn.execute(select(users).where(users.c.email == email)).mappings().first()

    if not row or not verify_password(payload.password, row["hashed_password"]):
        logger.warning("Failed login for %s", email)
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.get("/users/me/settings", response_model=UserSettingsResponse)
def get_user_settings(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UserSettingsResponse:
    user_id = get_user_id(x_user_id)
    with store.begin() as conn:
        row = get_or_create_settings(conn, user_id)
    return settings_response(row)


@app.put("/users/me/settings", response_model=UserSettingsResponse)
def update_user_settings(
    payload: UserSettingsPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UserSettingsResponse:
    user_id = get_user_id(x_user_id)
    try:
        values = UserSettingsPayload.validate_payload(payload)
    except ValueError as exc:
        raise bad_request(exc) from exc

    with store.begin() as conn:
        get_or_create_settings(conn, user_id)
        row = conn.execute(
            update(user_settings)
            .where(user_settings.c.user_id == user_id)
            .values(**values, updated_at=utcnow())
            .returning(*user_settings.c)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="User not found.")
    return settings_response(dict(row))


@app.get("/categories", response_model=list[CategoryResponse])
def list_categories() -> list[CategoryResponse]:
    return [CategoryResponse(**entry) for entry in CATEGORY_CATALOGUE]


@app.get("/expenses", response_model=list[ExpenseResponse])
def list_expenses(
    limit: int = Query(50, ge=1, le=200),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[ExpenseResponse]:
    user_id = get_user_id(x_user_id)
    with store.begin() as conn:
        rows = conn.execute(
            select(expenses)
            .where(expenses.c.user_id == user_id)
            .order_by(expenses.c.created_at.desc(), expenses.c.id.desc())
            .limit(limit)
        ).mappings().all()
    return [expense_response(row) for row in rows]


@app.get("/expenses/month", response_model=list[ExpenseResponse])
def list_month_expenses(
    month: int | None = None,
    year: int | None = None,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[ExpenseResponse]:
    user_id = get_user_id(x_user_id)
    month, year = resolve_period(month, year)
    start, end = month_bounds(month, year)
    with store.begin() as conn:
        rows = conn.execute(
            select(expenses)
            .where(
                expenses.c.user_id == user_id,
                expenses.c.date >= start,
                expenses.c.date < end,
            )
            .order_by(expenses.c.date.desc(), expenses.c.created_at.desc())
        ).mappings().all()
    return [expense_response(row) for row in rows]


@app.post("/expenses", response_model=ExpenseResponse)
def create_expense(
    payload: ExpensePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ExpenseResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = ExpensePayload.validate_payload(payload)
    except ValueError as exc:
        raise bad_request(exc) from exc

    now = utcnow()
    with store.begin() as conn:
        category = payload.category or get_or_create_settings(conn, user_id)[
            "default_expense_category"
        ]
        row = conn.execute(
            insert(expenses)
            .values(
                id=new_id(),
                user_id=user_id,
                description=payload.description,
                amount=payload.amount,
                category=category,
                date=payload.date,
                created_at=now,
                updated_at=now,
            )
            .returning(*expenses.c)
        ).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create expense.")
    return expense_response(row)


@app.put("/expenses/{expense_id}", response_model=ExpenseResponse)
def update_expense(
    expense_id: str,
    payload: ExpensePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ExpenseResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = ExpensePayload.validate_payload(payload)
    except ValueError as exc:
        raise bad_request(exc) from exc

    with store.begin() as conn:
        category = payload.category or get_or_create_settings(conn, user_id)[
            "default_expense_category"
        ]
        row = conn.execute(
            update(expenses)
            .where(expenses.c.id == expense_id, expenses.c.user_id == user_id)
            .values(
                description=payload.description,
                amount=payload.amount,
                category=category,
                date=payload.date,
                updated_at=utcnow(),
            )
            .returning(*expenses.c)
        ).mappings().first()

    if not row:
        raise HTTPException(status_code=404, detail="Expense not found.")
    return expense_response(row)


@app.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    stmt = expenses.delete().where(expenses.c.id == expense_id, expenses.c.user_id == user_id)
    with store.begin() as conn:
        result = conn.execute(stmt)
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail="Expense not found.")
    return {"status": "deleted"}


@app.get("/fixed-expenses", response_model=list[FixedExpenseResponse])
def list_fixed_expenses(
    include_inactive: bool = False,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[FixedExpenseResponse]:
    user_id = get_user_id(x_user_id)
    if include_inactive:
        definitions = registry.list_all(user_id)
    else:
        definitions = registry.list_active(user_id)
    return [fixed_expense_response(definition) for definition in definitions]


@app.post("/fixed-expenses", response_model=FixedExpenseResponse)
def create_fixed_expense(
    payload: FixedExpensePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> FixedExpenseResponse:
    user_id = get_user_id(x_user_id)
    category = payload.category
    if category is None:
        with store.begin() as conn:
            category = get_or_create_settings(conn, user_id)["default_fixed_expense_category"]
    try:
        expense_id = registry.create(
            payload.description,
            category,
            payload.due_day,
            user_id,
            amount=payload.amount,
        )
    except ValueError as exc:
        raise bad_request(exc) from exc
    return fixed_expense_response(require_fixed_expense(user_id, expense_id))


@app.put("/fixed-expenses/{expense_id}", response_model=FixedExpenseResponse)
def update_fixed_expense(
    expense_id: str,
    payload: FixedExpenseUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> FixedExpenseResponse:
    user_id = get_user_id(x_user_id)
    fields = {key: value for key, value in payload.model_dump().items() if value is not None}
    try:
        definition = registry.update(user_id, expense_id, **fields)
    except ValueError as exc:
        raise bad_request(exc) from exc
    if definition is None:
        raise HTTPException(status_code=404, detail="Fixed expense not found.")
    return fixed_expense_response(definition)


@app.put("/fixed-expenses/{expense_id}/active", response_model=FixedExpenseResponse)
def set_fixed_expense_active(
    expense_id: str,
    payload: FixedExpenseActivePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> FixedExpenseResponse:
    user_id = get_user_id(x_user_id)
    definition = registry.set_active(user_id, expense_id, payload.active)
    if definition is None:
        raise HTTPException(status_code=404, detail="Fixed expense not found.")
    return fixed_expense_response(definition)


@app.delete("/fixed-expenses/{expense_id}")
def delete_fixed_expense(
    expense_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    if registry.delete(user_id, expense_id) is None:
        raise HTTPException(status_code=404, detail="Fixed expense not found.")
    return {"status": "deactivated"}


@app.get("/fixed-expenses/status", response_model=list[FixedExpenseStatusResponse])
def list_fixed_expense_status(
    month: int | None = None,
    year: int | None = None,
    as_of: date | None = None,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[FixedExpenseStatusResponse]:
    user_id = get_user_id(x_user_id)
    month, year = resolve_period(month, year)
    today = as_of or date.today()
    entries = aggregator.monthly_status(user_id, month, year, today)
    return [
        FixedExpenseStatusResponse(
            expense=fixed_expense_response(entry.definition),
            payment=settlement_response(entry.record) if entry.record else None,
            is_paid=entry.is_paid,
            next_due_date=entry.next_due_date,
            days_until_due=days_until_due(entry.definition.due_day, today, DUE_DATE_POLICY),
        )
        for entry in entries
    ]


@app.get("/fixed-expenses/summary", response_model=MonthlySummaryResponse)
def get_fixed_expense_summary(
    month: int | None = None,
    year: int | None = None,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> MonthlySummaryResponse:
    user_id = get_user_id(x_user_id)
    month, year = resolve_period(month, year)
    return summary_response(aggregator.summarize(user_id, month, year))


@app.get("/fixed-expenses/payments", response_model=list[SettlementRecordResponse])
def list_month_payments(
    month: int | None = None,
    year: int | None = None,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[SettlementRecordResponse]:
    user_id = get_user_id(x_user_id)
    month, year = resolve_period(month, year)
    return [settlement_response(record) for record in ledger.get_for_month(user_id, month, year)]


@app.get("/fixed-expenses/{expense_id}/payments", response_model=list[SettlementRecordResponse])
def list_fixed_expense_payments(
    expense_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> list[SettlementRecordResponse]:
    user_id = get_user_id(x_user_id)
    return [settlement_response(record) for record in ledger.history(expense_id, user_id)]


@app.post("/fixed-expenses/{expense_id}/payments/paid", response_model=SettlementRecordResponse)
def mark_fixed_expense_paid(
    expense_id: str,
    payload: MarkPaidPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> SettlementRecordResponse:
    user_id = get_user_id(x_user_id)
    require_fixed_expense(user_id, expense_id)
    try:
        record = ledger.mark_paid(
            expense_id,
            user_id,
            payload.month,
            payload.year,
            payload.amount_paid,
            payload.payment_date or date.today(),
        )
    except ValueError as exc:
        raise bad_request(exc) from exc
    return settlement_response(record)


@app.post(
    "/fixed-expenses/{expense_id}/payments/pending", response_model=SettlementRecordResponse
)
def mark_fixed_expense_pending(
    expense_id: str,
    payload: MarkPendingPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> SettlementRecordResponse:
    user_id = get_user_id(x_user_id)
    require_fixed_expense(user_id, expense_id)
    try:
        record = ledger.mark_pending(expense_id, user_id, payload.month, payload.year)
    except ValueError as exc:
        raise bad_request(exc) from exc
    return settlement_response(record)


def resolve_monthly_budget(conn, user_id: str, month: int, year: int) -> tuple[Decimal, bool]:
    override = conn.execute(
        select(monthly_budgets.c.limit).where(
            and_(
                monthly_budgets.c.user_id == user_id,
                monthly_budgets.c.month == month,
                monthly_budgets.c.year == year,
            )
        )
    ).scalar_one_or_none()
    if override is not None:
        return coerce_amount(override), False
    return coerce_amount(get_or_create_settings(conn, user_id)["monthly_budget"]), True


@app.get("/budgets/{year}/{month}", response_model=MonthlyBudgetResponse)
def get_monthly_budget(
    year: int,
    month: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> MonthlyBudgetResponse:
    user_id = get_user_id(x_user_id)
    month, year = resolve_period(month, year)
    with store.begin() as conn:
        limit, is_default = resolve_monthly_budget(conn, user_id, month, year)
    return MonthlyBudgetResponse(
        user_id=user_id, month=month, year=year, limit=limit, is_default=is_default
    )


@app.put("/budgets/{year}/{month}", response_model=MonthlyBudgetResponse)
def set_monthly_budget(
    year: int,
    month: int,
    payload: MonthlyBudgetPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> MonthlyBudgetResponse:
    user_id = get_user_id(x_user_id)
    month, year = resolve_period(month, year)
    if payload.limit <= 0:
        raise bad_request(ValidationError("Budget limit must be greater than zero."))

    now = utcnow()
    with store.begin() as conn:
        existing_id = conn.execute(
            select(monthly_budgets.c.id).where(
                monthly_budgets.c.user_id == user_id,
                monthly_budgets.c.month == month,
                monthly_budgets.c.year == year,
            )
        ).scalar_one_or_none()
        if existing_id:
            conn.execute(
                update(monthly_budgets)
                .where(monthly_budgets.c.id == existing_id)
                .values(limit=payload.limit, updated_at=now)
            )
        else:
            conn.execute(
                insert(monthly_budgets).values(
                    id=new_id(),
                    user_id=user_id,
                    month=month,
                    year=year,
                    limit=payload.limit,
                    created_at=now,
                    updated_at=now,
                )
            )
    return MonthlyBudgetResponse(
        user_id=user_id, month=month, year=year, limit=payload.limit, is_default=False
    )


@app.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(
    month: int | None = None,
    year: int | None = None,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> DashboardResponse:
    user_id = get_user_id(x_user_id)
    month, year = resolve_period(month, year)
    start, end = month_bounds(month, year)
    with store.begin() as conn:
        settings = get_or_create_settings(conn, user_id)
        limit, _ = resolve_monthly_budget(conn, user_id, month, year)
        rows = conn.execute(
            select(expenses)
            .where(
                expenses.c.user_id == user_id,
                expenses.c.date >= start,
                expenses.c.date < end,
            )
            .order_by(expenses.c.created_at.desc(), expenses.c.id.desc())
        ).mappings().all()

    definitions = registry.list_active(user_id)
    snapshot = evaluate_month_budget(
        [Expense(amount=row["amount"], date=row["date"], category=row["category"]) for row in rows],
        [FixedExpense(amount=definition.amount, active=definition.active) for definition in definitions],
        limit,
        year,
        month,
        alert_percentage=settings["notify_budget_percentage"],
    )
    summary = aggregator.summarize(user_id, month, year)
    return DashboardResponse(
        month=month,
        year=year,
        currency=settings["currency"],
        monthly_budget=snapshot.monthly_budget,
        variable_total=snapshot.variable_total,
        fixed_total=snapshot.fixed_total,
        total_spent=snapshot.total_spent,
        percent_spent=snapshot.percent_spent,
        available=snapshot.available,
        status=snapshot.status,
        recent_expenses=[expense_response(row) for row in rows[:RECENT_EXPENSES_LIMIT]],
        fixed_summary=summary_response(summary),
    )
