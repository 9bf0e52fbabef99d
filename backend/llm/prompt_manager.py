"""System prompts and synthesized messages for the two-round conversation"""

import json
from datetime import datetime
from typing import Iterable, Tuple

from llm.models import ToolOutcome

FALLBACK_APOLOGY = (
    "I'm sorry, I can't reach the assistant service right now. "
    "Please try again in a moment."
)
EMPTY_REPLY_FALLBACK = (
    "I'm not sure how to help with that. Could you rephrase your question?"
)
INTERRUPTED_NOTICE = (
    "\n\n(The response was interrupted. Some details may be missing; "
    "please ask again if you need the rest.)"
)

STRICT_FORMAT_INSTRUCTION = (
    "Your previous answer could not be processed. Reply again. If you need a "
    "tool, use the provided function-calling interface with arguments that are "
    "a single valid JSON object. Otherwise answer in plain text without any "
    "JSON action blocks."
)

_STRUCTURED_FORMATS = """For structured data (budget breakdowns, spending analysis, receipt items, transaction lists) you may answer with JSON of this shape:
{
  "type": "budget_breakdown" | "spending_analysis" | "receipt_details" | "transaction_list" | "structured_response",
  "content": {
    "message": "Short explanation",
    "data": { ... }
  }
}
- budget_breakdown data: total_budget, currency, categories [{name, amount, notes}]
- spending_analysis data: total_spent, currency, period, breakdown [{category, amount, percentage}]
- receipt_details data: merchant, date, total_amount, currency, items [{name, amount, quantity, category}]
- transaction_list data: transactions [{amount, description, category, date, merchant}]"""


def build_system_prompt(context_text: str, now: datetime) -> str:
    """System prompt for round one, with the user's financial snapshot inlined"""
    return (
        "You are a financial advisor AI assistant with the ability to read and "
        "modify the user's financial data.\n"
        f"Current date: {now.strftime('%Y-%m-%d')}.\n\n"
        f"{context_text}\n\n"
        "You can help the user by:\n"
        "1. Answering questions about their spending patterns and financial data\n"
        "2. Adding, editing, or deleting transactions when requested\n"
        "3. Creating, modifying, or deleting budgets\n"
        "4. Creating new spending categories\n"
        "5. Providing financial analysis and insights\n"
        "6. Showing detailed receipt items from scanned receipts\n\n"
        "When the user asks you to make changes, you MUST call the appropriate "
        "function. Do not just describe what you would do. Use the category and "
        "budget IDs listed above; never invent IDs.\n\n"
        "When users ask about items on a receipt, first call get_transactions to "
        "find the transaction, then get_receipt_items with its transaction_id.\n\n"
        "When updating budgets, provide at least one update field (name, amount, "
        "currency, or alert_threshold). Do not call update_budget with only "
        "budget_name or category_name.\n\n"
        f"{_STRUCTURED_FORMATS}\n\n"
        "Provide helpful, actionable advice in a conversational tone."
    )


def _outcome_lines(outcomes: Iterable[Tuple[str, ToolOutcome]]):
    for name, outcome in outcomes:
        status = "Success" if outcome.success else "Failed"
        line = f"{name}: {status} - {outcome.message}"
        if outcome.data is not None:
            line += "\nData: " + json.dumps(outcome.data, indent=2, default=str)
        yield line


def build_tool_results_message(outcomes: Iterable[Tuple[str, ToolOutcome]]) -> str:
    """User-role message that feeds every tool outcome into round two"""
    return (
        "Tool execution results:\n"
        + "\n".join(_outcome_lines(outcomes))
        + "\n\nPlease provide a final response based on these results."
    )


def summarize_outcomes(outcomes: Iterable[Tuple[str, ToolOutcome]]) -> str:
    """Plain-text status lines used when round two cannot be generated"""
    lines = []
    for name, outcome in outcomes:
        mark = "✓" if outcome.success else "✗"
        lines.append(f"{mark} {name}: {outcome.message}")
    return "\n".join(lines)
