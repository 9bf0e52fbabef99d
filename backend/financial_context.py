"""Point-in-time financial snapshot fed to the model on every request.

The snapshot is rebuilt for each request and never cached, so tool calls made
in an earlier turn are always visible to the next one.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

import config
from core import get_logger
from services.finance_facade import FinanceFacade, period_start

logger = get_logger(__name__)

PROMPT_TRANSACTIONS = 5


@dataclass(frozen=True)
class FinancialContext:
    aggregate_spend_this_period: float
    recent_transactions: List[Dict[str, Any]] = field(default_factory=list)
    active_budgets: List[Dict[str, Any]] = field(default_factory=list)
    categories: List[Dict[str, Any]] = field(default_factory=list)
    period_start: Optional[date] = None


def build_financial_context(
    facade: FinanceFacade,
    user_id,
    limit: Optional[int] = None,
    today: Optional[date] = None,
) -> FinancialContext:
    """Collect spend this month, recent transactions, active budgets and categories"""
    today = today or date.today()
    limit = limit or config.RECENT_TRANSACTIONS_LIMIT
    start = period_start("month", today)

    summary = facade.get_spending_summary(user_id, start, today)
    context = FinancialContext(
        aggregate_spend_this_period=float(summary.get("total_expenses") or 0),
        recent_transactions=facade.get_transactions(user_id, limit=limit),
        active_budgets=facade.get_budgets(user_id, active_only=True, today=today),
        categories=facade.list_categories(user_id),
        period_start=start,
    )
    logger.debug(
        "financial_context_built",
        user_id=user_id,
        transactions=len(context.recent_transactions),
        budgets=len(context.active_budgets),
        categories=len(context.categories),
    )
    return context


def _amount(value) -> str:
    return f"${float(value or 0):,.2f}"


def render_financial_context(ctx: FinancialContext) -> str:
    """Render the snapshot as prose for the system prompt"""
    categories = ", ".join(f"{c['name']} (ID: {c['id']})" for c in ctx.categories) or "none"

    lines = [
        "User's Financial Context:",
        f"- Total spending this month: {_amount(ctx.aggregate_spend_this_period)}",
        f"- Number of recent transactions: {len(ctx.recent_transactions)}",
        f"- Active budgets: {len(ctx.active_budgets)}",
        f"- Categories: {categories}",
        "",
        "Recent Transactions:",
    ]
    recent = ctx.recent_transactions[:PROMPT_TRANSACTIONS]
    if not recent:
        lines.append("- none")
    for t in recent:
        where = t.get("merchant_name") or t.get("description") or "unknown"
        lines.append(
            f"- {_amount(t.get('amount'))} {t.get('transaction_type', '')} at {where} "
            f"({t.get('category_name') or 'Unknown'}) on {t.get('transaction_date')} "
            f"[ID: {t.get('id')}]"
        )

    lines.extend(["", "Active Budgets:"])
    if not ctx.active_budgets:
        lines.append("- none")
    for b in ctx.active_budgets:
        line = f"- {b['name']}: {_amount(b.get('amount'))} budget ({b.get('category_name') or 'Unknown'}) [ID: {b.get('id')}]"
        if "percentage_used" in b:
            line += f", {b['percentage_used']}% used, status {b.get('status')}"
        lines.append(line)

    return "\n".join(lines)
