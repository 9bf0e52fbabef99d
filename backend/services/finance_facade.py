"""Finance facade - user-scoped operations over categories, transactions,
budgets and scanned receipts.

The orchestration engine only talks to ``FinanceFacade``. ``PgFinanceFacade``
is the PostgreSQL implementation used by the web app; every query is scoped to
the caller's ``user_id`` and every write commits on success and rolls back on
failure.
"""

import calendar
import json
import uuid
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core import get_logger, NotFoundError, ConflictError
from database import get_db

logger = get_logger(__name__)

DEFAULT_CATEGORY_COLOR = "#3B82F6"
DEFAULT_CATEGORY_ICON = "tag"
DEFAULT_ALERT_THRESHOLD = 80

TRANSACTION_FIELDS = (
    "amount",
    "description",
    "category_id",
    "transaction_type",
    "merchant_name",
    "transaction_date",
)
BUDGET_FIELDS = ("name", "amount", "currency", "alert_threshold")


# ---------------------------------------------------------------------------
# Pure helpers shared by every implementation
# ---------------------------------------------------------------------------


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length"""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def compute_end_date(start: date, period_type: str) -> date:
    """Budget end date derived from its period type"""
    if period_type == "weekly":
        return start + timedelta(days=7)
    if period_type == "yearly":
        return add_months(start, 12)
    return add_months(start, 1)


def period_start(period: str, today: date) -> date:
    """First day of the current week (Monday), month or year"""
    if period == "week":
        return today - timedelta(days=today.weekday())
    if period == "year":
        return date(today.year, 1, 1)
    return today.replace(day=1)


def calculate_budget_status(budget: Dict[str, Any], spent: float, today: date) -> Dict[str, Any]:
    """Return the budget dict enriched with spending status fields.

    status is ``over_budget`` at 100% or more, ``warning`` at or above the
    alert threshold, otherwise ``on_track``.
    """
    amount = float(budget["amount"])
    spent = float(spent)
    percentage = (spent / amount) * 100 if amount > 0 else 0.0
    threshold = float(budget.get("alert_threshold") or DEFAULT_ALERT_THRESHOLD)

    end_date = _as_date(budget.get("end_date"))
    days_remaining = max(0, (end_date - today).days) if end_date else 0

    if percentage >= 100:
        status = "over_budget"
    elif percentage >= threshold:
        status = "warning"
    else:
        status = "on_track"

    enriched = dict(budget)
    enriched.update(
        {
            "spent_amount": round(spent, 2),
            "remaining_amount": round(amount - spent, 2),
            "percentage_used": round(percentage, 2),
            "days_remaining": days_remaining,
            "alert_triggered": status != "on_track",
            "status": status,
        }
    )
    return enriched


def serialize_row(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Convert database values into JSON-friendly primitives"""
    if row is None:
        return None
    out = {}
    for key, value in dict(row).items():
        if isinstance(value, Decimal):
            value = float(value)
        elif isinstance(value, uuid.UUID):
            value = str(value)
        elif isinstance(value, (datetime, date)):
            value = value.isoformat()
        out[key] = value
    return out


def _as_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _as_uuid(value, resource: str) -> str:
    """Normalize an identifier; malformed ids cannot match any row"""
    try:
        return str(uuid.UUID(str(value)))
    except (TypeError, ValueError, AttributeError):
        raise NotFoundError(resource, message=f"{resource} not found: {value}")


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class FinanceFacade(ABC):
    """User-scoped finance operations used by the tool dispatcher and the
    context assembler. Implementations raise ``NotFoundError`` or
    ``ConflictError`` for domain rejections."""

    # Categories
    @abstractmethod
    def list_categories(self, user_id) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def find_category_by_name(self, user_id, name: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def create_category(
        self,
        user_id,
        name: str,
        color: str = DEFAULT_CATEGORY_COLOR,
        icon: str = DEFAULT_CATEGORY_ICON,
    ) -> Dict[str, Any]: ...

    # Transactions
    @abstractmethod
    def get_transactions(
        self,
        user_id,
        *,
        category: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        transaction_type: Optional[str] = None,
        limit: int = 10,
    ) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def create_transaction(self, user_id, data: Dict[str, Any]) -> Dict[str, Any]: ...

    @abstractmethod
    def update_transaction(self, user_id, transaction_id, changes: Dict[str, Any]) -> Dict[str, Any]: ...

    @abstractmethod
    def delete_transaction(self, user_id, transaction_id) -> Dict[str, Any]: ...

    @abstractmethod
    def get_spending_summary(self, user_id, start_date: date, end_date: date) -> Dict[str, Any]: ...

    @abstractmethod
    def get_category_summary(self, user_id, start_date: date, end_date: date) -> List[Dict[str, Any]]: ...

    # Budgets
    @abstractmethod
    def get_budgets(
        self,
        user_id,
        *,
        active_only: bool = True,
        category_name: Optional[str] = None,
        today: Optional[date] = None,
    ) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def create_budget(self, user_id, data: Dict[str, Any]) -> Dict[str, Any]: ...

    @abstractmethod
    def update_budget(self, user_id, budget_id, changes: Dict[str, Any]) -> Dict[str, Any]: ...

    @abstractmethod
    def delete_budget(self, user_id, budget_id) -> Dict[str, Any]: ...

    # Receipts
    @abstractmethod
    def get_receipt(self, user_id, receipt_id) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def find_receipt_for_transaction(self, user_id, transaction_id) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def update_receipt_data(self, user_id, receipt_id, parsed_data: Dict[str, Any]) -> Dict[str, Any]: ...


# ---------------------------------------------------------------------------
# PostgreSQL implementation
# ---------------------------------------------------------------------------


class PgFinanceFacade(FinanceFacade):
    """Facade over the request-scoped psycopg2 connection from ``database.get_db``"""

    def __init__(self, db_provider=None):
        self._db_provider = db_provider or get_db

    @property
    def db(self):
        return self._db_provider()

    def _write(self, query: str, params=()) -> Optional[Dict[str, Any]]:
        db = self.db
        try:
            row = db.execute(query, params).fetchone()
            db.commit()
            return row
        except Exception:
            db.rollback()
            raise

    # Categories ----------------------------------------------------------

    def list_categories(self, user_id):
        rows = self.db.execute(
            "SELECT id, name, color, icon FROM categories WHERE user_id = ? ORDER BY name",
            (user_id,),
        ).fetchall()
        return [serialize_row(r) for r in rows]

    def find_category_by_name(self, user_id, name):
        row = self.db.execute(
            "SELECT id, name, color, icon FROM categories "
            "WHERE user_id = ? AND LOWER(name) = LOWER(?) LIMIT 1",
            (user_id, name.strip()),
        ).fetchone()
        return serialize_row(row)

    def create_category(self, user_id, name, color=DEFAULT_CATEGORY_COLOR, icon=DEFAULT_CATEGORY_ICON):
        name = name.strip()
        if self.find_category_by_name(user_id, name):
            raise ConflictError(f"Category '{name}' already exists")
        row = self._write(
            "INSERT INTO categories (user_id, name, color, icon) VALUES (?, ?, ?, ?) "
            "RETURNING id, name, color, icon",
            (user_id, name, color or DEFAULT_CATEGORY_COLOR, icon or DEFAULT_CATEGORY_ICON),
        )
        logger.info("category_created", user_id=user_id, category=name)
        return serialize_row(row)

    def _require_category(self, user_id, category_id) -> str:
        category_id = _as_uuid(category_id, "Category")
        row = self.db.execute(
            "SELECT id FROM categories WHERE id = ? AND user_id = ?",
            (category_id, user_id),
        ).fetchone()
        if not row:
            raise NotFoundError("Category", message=f"Category not found: {category_id}")
        return category_id

    # Transactions --------------------------------------------------------

    def get_transactions(
        self,
        user_id,
        *,
        category=None,
        start_date=None,
        end_date=None,
        transaction_type=None,
        limit=10,
    ):
        conditions = ["t.user_id = ?"]
        params: List[Any] = [user_id]
        if category:
            conditions.append("c.name ILIKE ?")
            params.append(f"%{category}%")
        if start_date:
            conditions.append("t.transaction_date >= ?")
            params.append(start_date)
        if end_date:
            conditions.append("t.transaction_date <= ?")
            params.append(end_date)
        if transaction_type:
            conditions.append("t.transaction_type = ?")
            params.append(transaction_type)
        params.append(limit)

        rows = self.db.execute(
            f"""
            SELECT t.id, t.amount, t.currency, t.description, t.merchant_name,
                   t.transaction_type, t.transaction_date, t.category_id,
                   c.name AS category_name
            FROM transactions t
            LEFT JOIN categories c ON t.category_id = c.id
            WHERE {' AND '.join(conditions)}
            ORDER BY t.transaction_date DESC, t.created_at DESC
            LIMIT ?
            """,
            tuple(params),
        ).fetchall()
        return [serialize_row(r) for r in rows]

    def _get_transaction(self, user_id, transaction_id):
        transaction_id = _as_uuid(transaction_id, "Transaction")
        row = self.db.execute(
            """
            SELECT t.id, t.amount, t.currency, t.description, t.merchant_name,
                   t.transaction_type, t.transaction_date, t.category_id,
                   c.name AS category_name
            FROM transactions t
            LEFT JOIN categories c ON t.category_id = c.id
            WHERE t.id = ? AND t.user_id = ?
            """,
            (transaction_id, user_id),
        ).fetchone()
        if not row:
            raise NotFoundError("Transaction", message=f"Transaction not found: {transaction_id}")
        return serialize_row(row)

    def create_transaction(self, user_id, data):
        category_id = self._require_category(user_id, data["category_id"])
        row = self._write(
            """
            INSERT INTO transactions
                (user_id, category_id, amount, description, merchant_name,
                 transaction_type, transaction_date)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                user_id,
                category_id,
                data["amount"],
                data.get("description"),
                data.get("merchant_name"),
                data["transaction_type"],
                data.get("transaction_date") or date.today(),
            ),
        )
        logger.info("transaction_created", user_id=user_id, amount=data["amount"])
        return self._get_transaction(user_id, row["id"])

    def update_transaction(self, user_id, transaction_id, changes):
        current = self._get_transaction(user_id, transaction_id)
        fields = {k: v for k, v in changes.items() if k in TRANSACTION_FIELDS and v is not None}
        if "category_id" in fields:
            fields["category_id"] = self._require_category(user_id, fields["category_id"])
        if not fields:
            return current

        assignments = ", ".join(f"{key} = ?" for key in fields)
        self._write(
            f"UPDATE transactions SET {assignments}, updated_at = CURRENT_TIMESTAMP "
            "WHERE id = ? AND user_id = ? RETURNING id",
            (*fields.values(), current["id"], user_id),
        )
        logger.info("transaction_updated", user_id=user_id, fields=list(fields))
        return self._get_transaction(user_id, current["id"])

    def delete_transaction(self, user_id, transaction_id):
        current = self._get_transaction(user_id, transaction_id)
        self._write(
            "DELETE FROM transactions WHERE id = ? AND user_id = ? RETURNING id",
            (current["id"], user_id),
        )
        logger.info("transaction_deleted", user_id=user_id, transaction_id=current["id"])
        return current

    def get_spending_summary(self, user_id, start_date, end_date):
        row = self.db.execute(
            """
            SELECT
                COALESCE(SUM(CASE WHEN transaction_type = 'income' THEN amount ELSE 0 END), 0) AS total_income,
                COALESCE(SUM(CASE WHEN transaction_type = 'expense' THEN amount ELSE 0 END), 0) AS total_expenses,
                COUNT(*) AS total_transactions
            FROM transactions
            WHERE user_id = ? AND transaction_date >= ? AND transaction_date <= ?
            """,
            (user_id, start_date, end_date),
        ).fetchone()
        income = float(row["total_income"])
        expenses = float(row["total_expenses"])
        return {
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "total_income": income,
            "total_expenses": expenses,
            "net_amount": round(income - expenses, 2),
            "total_transactions": int(row["total_transactions"]),
        }

    def get_category_summary(self, user_id, start_date, end_date):
        rows = self.db.execute(
            """
            SELECT c.id, c.name,
                   COALESCE(SUM(CASE WHEN t.transaction_type = 'expense' THEN t.amount ELSE 0 END), 0) AS total_spent,
                   COUNT(t.id) AS transaction_count
            FROM categories c
            LEFT JOIN transactions t
                ON c.id = t.category_id
               AND t.transaction_date >= ? AND t.transaction_date <= ?
            WHERE c.user_id = ?
            GROUP BY c.id, c.name
            ORDER BY total_spent DESC
            """,
            (start_date, end_date, user_id),
        ).fetchall()
        return [serialize_row(r) for r in rows]

    # Budgets -------------------------------------------------------------

    def _spent_for(self, user_id, budget) -> float:
        row = self.db.execute(
            """
            SELECT COALESCE(SUM(amount), 0) AS spent
            FROM transactions
            WHERE user_id = ? AND category_id = ?
              AND transaction_date >= ? AND transaction_date <= ?
              AND transaction_type = 'expense'
            """,
            (user_id, budget["category_id"], budget["start_date"], budget["end_date"]),
        ).fetchone()
        return float(row["spent"])

    def get_budgets(self, user_id, *, active_only=True, category_name=None, today=None):
        today = today or date.today()
        conditions = ["b.user_id = ?"]
        params: List[Any] = [user_id]
        if active_only:
            conditions.append("b.is_active = TRUE")
        if category_name:
            conditions.append("c.name ILIKE ?")
            params.append(f"%{category_name}%")

        rows = self.db.execute(
            f"""
            SELECT b.id, b.name, b.amount, b.currency, b.period_type,
                   b.start_date, b.end_date, b.alert_threshold, b.is_active,
                   b.category_id, c.name AS category_name
            FROM budgets b
            LEFT JOIN categories c ON b.category_id = c.id
            WHERE {' AND '.join(conditions)}
            ORDER BY b.created_at DESC
            """,
            tuple(params),
        ).fetchall()

        budgets = []
        for row in rows:
            spent = self._spent_for(user_id, row)
            budgets.append(calculate_budget_status(serialize_row(row), spent, today))
        return budgets

    def _get_budget(self, user_id, budget_id):
        budget_id = _as_uuid(budget_id, "Budget")
        row = self.db.execute(
            """
            SELECT b.id, b.name, b.amount, b.currency, b.period_type,
                   b.start_date, b.end_date, b.alert_threshold, b.is_active,
                   b.category_id, c.name AS category_name
            FROM budgets b
            LEFT JOIN categories c ON b.category_id = c.id
            WHERE b.id = ? AND b.user_id = ?
            """,
            (budget_id, user_id),
        ).fetchone()
        if not row:
            raise NotFoundError("Budget", message=f"Budget not found: {budget_id}")
        return serialize_row(row)

    def create_budget(self, user_id, data):
        category_id = self._require_category(user_id, data["category_id"])
        start = _as_date(data.get("start_date")) or date.today()
        end = compute_end_date(start, data["period_type"])
        row = self._write(
            """
            INSERT INTO budgets
                (user_id, category_id, name, amount, currency, period_type,
                 start_date, end_date, alert_threshold)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                user_id,
                category_id,
                data["name"],
                data["amount"],
                data.get("currency") or "USD",
                data["period_type"],
                start,
                end,
                data.get("alert_threshold", DEFAULT_ALERT_THRESHOLD),
            ),
        )
        logger.info("budget_created", user_id=user_id, budget=data["name"])
        return self._get_budget(user_id, row["id"])

    def update_budget(self, user_id, budget_id, changes):
        current = self._get_budget(user_id, budget_id)
        fields = {k: v for k, v in changes.items() if k in BUDGET_FIELDS and v is not None}
        if not fields:
            return current

        assignments = ", ".join(f"{key} = ?" for key in fields)
        self._write(
            f"UPDATE budgets SET {assignments}, updated_at = CURRENT_TIMESTAMP "
            "WHERE id = ? AND user_id = ? RETURNING id",
            (*fields.values(), current["id"], user_id),
        )
        logger.info("budget_updated", user_id=user_id, fields=list(fields))
        return self._get_budget(user_id, current["id"])

    def delete_budget(self, user_id, budget_id):
        current = self._get_budget(user_id, budget_id)
        self._write(
            "DELETE FROM budgets WHERE id = ? AND user_id = ? RETURNING id",
            (current["id"], user_id),
        )
        logger.info("budget_deleted", user_id=user_id, budget_id=current["id"])
        return current

    # Receipts ------------------------------------------------------------

    def _receipt_row(self, row):
        receipt = serialize_row(row)
        if receipt is not None and isinstance(receipt.get("parsed_data"), str):
            receipt["parsed_data"] = json.loads(receipt["parsed_data"])
        return receipt

    def get_receipt(self, user_id, receipt_id):
        try:
            receipt_id = _as_uuid(receipt_id, "Receipt")
        except NotFoundError:
            return None
        row = self.db.execute(
            "SELECT id, transaction_id, parsed_data, status, created_at "
            "FROM receipt_processing WHERE id = ? AND user_id = ?",
            (receipt_id, user_id),
        ).fetchone()
        return self._receipt_row(row)

    def find_receipt_for_transaction(self, user_id, transaction_id):
        try:
            transaction_id = _as_uuid(transaction_id, "Transaction")
        except NotFoundError:
            return None
        row = self.db.execute(
            "SELECT id, transaction_id, parsed_data, status, created_at "
            "FROM receipt_processing WHERE transaction_id = ? AND user_id = ? "
            "ORDER BY created_at DESC LIMIT 1",
            (transaction_id, user_id),
        ).fetchone()
        return self._receipt_row(row)

    def update_receipt_data(self, user_id, receipt_id, parsed_data):
        receipt_id = _as_uuid(receipt_id, "Receipt")
        row = self._write(
            "UPDATE receipt_processing SET parsed_data = ?, updated_at = CURRENT_TIMESTAMP "
            "WHERE id = ? AND user_id = ? "
            "RETURNING id, transaction_id, parsed_data, status, created_at",
            (json.dumps(parsed_data), receipt_id, user_id),
        )
        if not row:
            raise NotFoundError("Receipt", message=f"Receipt not found: {receipt_id}")
        logger.info("receipt_updated", user_id=user_id, receipt_id=receipt_id)
        return self._receipt_row(row)
