"""LLM tool dispatcher - validates model-requested tool calls and runs them
against the finance facade.

``ToolDispatcher.dispatch`` is total: whatever the model sends, it returns a
``ToolOutcome`` and never raises. Invalid arguments never reach the facade.
"""

from datetime import date
from typing import Any, Callable, Dict, List, Optional

import config
from core import get_logger, DomainError
from llm.models import ToolOutcome
from llm.schemas import validate_tool_arguments
from llm.tools import ToolDescriptor, ToolRegistry, TOOL_REGISTRY
from services.finance_facade import (
    BUDGET_FIELDS,
    DEFAULT_ALERT_THRESHOLD,
    DEFAULT_CATEGORY_COLOR,
    DEFAULT_CATEGORY_ICON,
    FinanceFacade,
    TRANSACTION_FIELDS,
    period_start,
)

logger = get_logger(__name__)

BUDGET_CATEGORY_COLOR = "#10B981"
BUDGET_CATEGORY_ICON = "map"
DEFAULT_CURRENCY = config.DEFAULT_CURRENCY

Handler = Callable[[FinanceFacade, Any, Dict[str, Any]], ToolOutcome]


def _money(amount: float, currency: str = DEFAULT_CURRENCY) -> str:
    if currency == "USD":
        return f"${amount:,.2f}"
    return f"{currency} {amount:,.2f}"


def _join_choices(fields) -> str:
    fields = list(fields)
    if len(fields) <= 1:
        return "".join(fields)
    return ", ".join(fields[:-1]) + f", or {fields[-1]}"


def missing_update_fields_message(descriptor: ToolDescriptor, provided: List[str]) -> str:
    return (
        "No valid update fields provided. "
        f"You can update: {_join_choices(descriptor.mutable_fields)}. "
        f"You provided: {', '.join(provided) if provided else 'nothing'}"
    )


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def _execute_add_transaction(facade, user_id, args):
    transaction = facade.create_transaction(
        user_id,
        {
            "amount": args["amount"],
            "description": args["description"],
            "category_id": args["category_id"],
            "transaction_type": args["transaction_type"],
            "transaction_date": args.get("transaction_date") or date.today().isoformat(),
            "merchant_name": args.get("merchant_name"),
        },
    )
    return ToolOutcome.ok(
        f"Added {args['transaction_type']} transaction: {_money(args['amount'])} "
        f"for {args['description']}",
        transaction,
    )


def _execute_update_transaction(facade, user_id, args):
    changes = {k: args[k] for k in TRANSACTION_FIELDS if k in args}
    transaction = facade.update_transaction(user_id, args["transaction_id"], changes)
    return ToolOutcome.ok("Updated transaction successfully", transaction)


def _execute_delete_transaction(facade, user_id, args):
    deleted = facade.delete_transaction(user_id, args["transaction_id"])
    return ToolOutcome.ok("Deleted transaction successfully", {"id": deleted.get("id")})


def _execute_get_transactions(facade, user_id, args):
    transactions = facade.get_transactions(
        user_id,
        category=args.get("category"),
        start_date=args.get("start_date"),
        end_date=args.get("end_date"),
        transaction_type=args.get("transaction_type"),
        limit=args.get("limit", 10),
    )
    return ToolOutcome.ok(
        f"Found {len(transactions)} transactions", {"transactions": transactions}
    )


def _execute_get_spending_analysis(facade, user_id, args):
    period = args.get("period", "month")
    today = date.today()
    start = period_start(period, today)

    analysis = {
        "period": period,
        "spending": facade.get_spending_summary(user_id, start, today),
        "categories": facade.get_category_summary(user_id, start, today),
        "budgets": facade.get_budgets(user_id, active_only=True, today=today),
    }
    return ToolOutcome.ok(f"Generated spending analysis for the {period}", analysis)


# ---------------------------------------------------------------------------
# Budgets and categories
# ---------------------------------------------------------------------------


def _execute_create_budget(facade, user_id, args):
    currency = args.get("currency") or DEFAULT_CURRENCY
    budget = facade.create_budget(
        user_id,
        {
            "category_id": args["category_id"],
            "name": args["name"],
            "amount": args["amount"],
            "currency": currency,
            "period_type": args["period_type"],
            "start_date": args.get("start_date") or date.today().isoformat(),
            "alert_threshold": args.get("alert_threshold", DEFAULT_ALERT_THRESHOLD),
        },
    )
    return ToolOutcome.ok(
        f"Created {args['period_type']} budget \"{args['name']}\" with "
        f"{_money(args['amount'], currency)} limit",
        budget,
    )


def _resolve_budget_id(facade, user_id, args) -> Optional[str]:
    if args.get("budget_id"):
        return args["budget_id"]

    budgets = facade.get_budgets(user_id, active_only=False)
    if args.get("budget_name"):
        needle = args["budget_name"].lower()
        for budget in budgets:
            if needle in (budget.get("name") or "").lower():
                return budget["id"]
    elif args.get("category_name"):
        needle = args["category_name"].lower()
        for budget in budgets:
            if needle in (budget.get("category_name") or "").lower():
                return budget["id"]
    return None


def _available_budgets(facade, user_id) -> str:
    budgets = facade.get_budgets(user_id, active_only=False)
    if not budgets:
        return "none"
    return ", ".join(f"{b['name']} ({b.get('category_name') or 'uncategorized'})" for b in budgets)


def _execute_update_budget(facade, user_id, args):
    budget_id = _resolve_budget_id(facade, user_id, args)
    if not budget_id:
        return ToolOutcome.fail(
            f"Could not find budget. Available budgets: {_available_budgets(facade, user_id)}"
        )

    changes = {k: args[k] for k in BUDGET_FIELDS if k in args}
    budget = facade.update_budget(user_id, budget_id, changes)
    return ToolOutcome.ok(f"Updated budget \"{budget['name']}\" successfully", budget)


def _execute_delete_budget(facade, user_id, args):
    deleted = facade.delete_budget(user_id, args["budget_id"])
    return ToolOutcome.ok(f"Deleted budget \"{deleted.get('name')}\" successfully", {"id": deleted.get("id")})


def _execute_get_budgets(facade, user_id, args):
    budgets = facade.get_budgets(user_id, active_only=True, category_name=args.get("category_name"))
    return ToolOutcome.ok(f"Found {len(budgets)} budget(s)", budgets)


def _execute_create_category(facade, user_id, args):
    category = facade.create_category(
        user_id,
        args["name"],
        color=args.get("color") or DEFAULT_CATEGORY_COLOR,
        icon=args.get("icon") or DEFAULT_CATEGORY_ICON,
    )
    return ToolOutcome.ok(f"Created category \"{args['name']}\"", category)


def _execute_create_budget_with_category(facade, user_id, args):
    category = facade.find_category_by_name(user_id, args["category_name"])
    created_category = category is None
    if created_category:
        category = facade.create_category(
            user_id,
            args["category_name"],
            color=args.get("category_color") or BUDGET_CATEGORY_COLOR,
            icon=args.get("category_icon") or BUDGET_CATEGORY_ICON,
        )

    currency = args.get("currency") or DEFAULT_CURRENCY
    budget = facade.create_budget(
        user_id,
        {
            "category_id": category["id"],
            "name": args["budget_name"],
            "amount": args["amount"],
            "currency": currency,
            "period_type": args["period_type"],
            "start_date": args.get("start_date") or date.today().isoformat(),
            "alert_threshold": args.get("alert_threshold", DEFAULT_ALERT_THRESHOLD),
        },
    )
    verb = "Created" if created_category else "Used existing"
    return ToolOutcome.ok(
        f"{verb} category \"{category['name']}\" and created budget "
        f"\"{args['budget_name']}\" with {_money(args['amount'], currency)} limit",
        {"category": category, "budget": budget},
    )


# ---------------------------------------------------------------------------
# Receipts
# ---------------------------------------------------------------------------


def _receipt_summary(receipt_id, parsed: Dict[str, Any], items) -> Dict[str, Any]:
    return {
        "receipt_id": receipt_id,
        "merchant_name": parsed.get("merchantName") or "Unknown",
        "total_amount": parsed.get("totalAmount") or 0,
        "currency": parsed.get("currency") or DEFAULT_CURRENCY,
        "date": parsed.get("date") or "Unknown",
        "items": items,
    }


def _find_receipt(facade, user_id, args):
    """Return (receipt, failure_message)"""
    if args.get("receipt_id"):
        receipt = facade.get_receipt(user_id, args["receipt_id"])
        if receipt is None:
            return None, (
                f"Receipt with ID {args['receipt_id']} not found or you don't have "
                "permission to access it."
            )
        return receipt, None

    if args.get("transaction_id"):
        receipt = facade.find_receipt_for_transaction(user_id, args["transaction_id"])
        if receipt is None:
            return None, (
                f"No receipt data found for transaction ID {args['transaction_id']}. "
                "This transaction may not have been created from a scanned receipt."
            )
        return receipt, None

    return None, (
        "Receipt ID or Transaction ID is required. Please provide either "
        "receipt_id or transaction_id."
    )


def _execute_get_receipt_items(facade, user_id, args):
    receipt, failure = _find_receipt(facade, user_id, args)
    if failure:
        return ToolOutcome.fail(failure)

    parsed = receipt.get("parsed_data") or {}
    if not parsed:
        return ToolOutcome.fail(
            f"Receipt {receipt['id']} exists but contains no parsed data. "
            "The receipt may have failed to process correctly."
        )

    items = [i for i in parsed.get("items") or [] if i and i.get("name") and i.get("amount")]
    merchant = parsed.get("merchantName") or "Unknown merchant"
    if not items:
        return ToolOutcome.ok(
            f"Receipt found from {merchant} but no individual items were detected. "
            "Only the transaction summary is available.",
            _receipt_summary(receipt["id"], parsed, []),
        )
    return ToolOutcome.ok(
        f"Found {len(items)} individual items in the receipt from {merchant}",
        _receipt_summary(receipt["id"], parsed, items),
    )


def _execute_update_receipt_items(facade, user_id, args):
    receipt, failure = _find_receipt(facade, user_id, args)
    if failure:
        return ToolOutcome.fail(failure)

    parsed = dict(receipt.get("parsed_data") or {})
    parsed["items"] = [
        {
            "name": item["name"],
            "amount": item["amount"],
            "quantity": item.get("quantity", 1),
            "category": item.get("category") or "other",
        }
        for item in args["items"]
    ]
    for arg_key, data_key in (
        ("merchant_name", "merchantName"),
        ("total_amount", "totalAmount"),
        ("currency", "currency"),
        ("date", "date"),
    ):
        if args.get(arg_key) is not None:
            parsed[data_key] = args[arg_key]

    updated = facade.update_receipt_data(user_id, receipt["id"], parsed)
    return ToolOutcome.ok(
        f"Successfully updated receipt with {len(parsed['items'])} items",
        _receipt_summary(updated["id"], parsed, parsed["items"]),
    )


DEFAULT_HANDLERS: Dict[str, Handler] = {
    "add_transaction": _execute_add_transaction,
    "update_transaction": _execute_update_transaction,
    "delete_transaction": _execute_delete_transaction,
    "create_budget": _execute_create_budget,
    "update_budget": _execute_update_budget,
    "delete_budget": _execute_delete_budget,
    "create_category": _execute_create_category,
    "get_transactions": _execute_get_transactions,
    "get_spending_analysis": _execute_get_spending_analysis,
    "get_budgets": _execute_get_budgets,
    "create_budget_with_category": _execute_create_budget_with_category,
    "get_receipt_items": _execute_get_receipt_items,
    "update_receipt_items": _execute_update_receipt_items,
}


class ToolDispatcher:
    """Validate and execute one tool call at a time for a given caller"""

    def __init__(
        self,
        facade: FinanceFacade,
        registry: ToolRegistry = TOOL_REGISTRY,
        handlers: Optional[Dict[str, Handler]] = None,
    ):
        self.facade = facade
        self.registry = registry
        self.handlers = dict(DEFAULT_HANDLERS if handlers is None else handlers)

    def dispatch(self, name: str, raw_arguments: Any, caller_id) -> ToolOutcome:
        descriptor = self.registry.get(name)
        handler = self.handlers.get(name)
        if descriptor is None or handler is None:
            logger.warning("llm_action_unknown", action=name, user_id=caller_id)
            return ToolOutcome.fail(f"Unknown tool: {name}")

        ok, result = validate_tool_arguments(descriptor, raw_arguments)
        if not ok:
            logger.warning("llm_action_invalid", action=name, user_id=caller_id, error=result)
            return ToolOutcome.fail(result)
        args: Dict[str, Any] = result

        if descriptor.is_update and not any(f in args for f in descriptor.mutable_fields):
            provided = list(raw_arguments) if isinstance(raw_arguments, dict) else list(args)
            logger.warning("llm_action_no_update_fields", action=name, user_id=caller_id)
            return ToolOutcome.fail(missing_update_fields_message(descriptor, provided))

        logger.info(
            "llm_action_started",
            action=name,
            user_id=caller_id,
            args_keys=list(args.keys()),
        )
        try:
            outcome = handler(self.facade, caller_id, args)
        except DomainError as e:
            logger.warning("llm_action_rejected", action=name, user_id=caller_id, error=e.message)
            return ToolOutcome.fail(e.message)
        except Exception as e:
            logger.error("llm_action_failed", exc=e, action=name, user_id=caller_id)
            return ToolOutcome.fail(f"Tool execution failed: {e}")

        logger.info(
            "llm_action_completed",
            action=name,
            user_id=caller_id,
            success=outcome.success,
        )
        return outcome
