"""LLM tool registry

Every operation the model may request is declared once here as an immutable
``ToolDescriptor``. The same declaration drives the catalog sent to the model
(``TOOLS_DEFINITIONS``) and the argument validation in ``llm.schemas``.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class ParameterSpec:
    name: str
    type: str  # string | number | integer | boolean | array
    description: str = ""
    required: bool = False
    enum: Optional[Tuple[str, ...]] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    exclusive_minimum: Optional[float] = None
    format: Optional[str] = None  # "date" => normalized to YYYY-MM-DD
    items: Tuple["ParameterSpec", ...] = ()
    min_items: Optional[int] = None

    def to_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": self.type}
        if self.description:
            schema["description"] = self.description
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.minimum is not None:
            schema["minimum"] = self.minimum
        if self.maximum is not None:
            schema["maximum"] = self.maximum
        if self.exclusive_minimum is not None:
            schema["exclusiveMinimum"] = self.exclusive_minimum
        if self.format:
            schema["format"] = self.format
        if self.type == "array":
            schema["items"] = {
                "type": "object",
                "properties": {p.name: p.to_schema() for p in self.items},
                "required": [p.name for p in self.items if p.required],
            }
            if self.min_items is not None:
                schema["minItems"] = self.min_items
        return schema


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    parameters: Tuple[ParameterSpec, ...] = ()
    # Update-style tools: at least one of these must be present
    mutable_fields: Tuple[str, ...] = field(default=())

    @property
    def required(self) -> List[str]:
        return [p.name for p in self.parameters if p.required]

    @property
    def is_update(self) -> bool:
        return bool(self.mutable_fields)

    def to_catalog_entry(self) -> Dict[str, Any]:
        """Tool catalog entry in JSON-schema form"""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": {
                "type": "object",
                "properties": {p.name: p.to_schema() for p in self.parameters},
                "required": self.required,
            },
        }


class ToolRegistry:
    """Read-only name -> descriptor mapping"""

    def __init__(self, descriptors):
        tools: Dict[str, ToolDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in tools:
                raise ValueError(f"Duplicate tool name: {descriptor.name}")
            tools[descriptor.name] = descriptor
        self._tools: Mapping[str, ToolDescriptor] = MappingProxyType(tools)

    def __contains__(self, name) -> bool:
        return name in self._tools

    def __iter__(self):
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def get(self, name: str) -> Optional[ToolDescriptor]:
        return self._tools.get(name)

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def catalog(self) -> List[Dict[str, Any]]:
        return [d.to_catalog_entry() for d in self._tools.values()]

    def function_tools(self) -> List[Dict[str, Any]]:
        """Catalog wrapped in the chat-completions ``tools`` format"""
        return [{"type": "function", "function": entry} for entry in self.catalog()]


_TRANSACTION_TYPE = ("income", "expense")
_PERIOD_TYPE = ("weekly", "monthly", "yearly")


def _p(name, type_, description="", **kwargs) -> ParameterSpec:
    if "enum" in kwargs and kwargs["enum"] is not None:
        kwargs["enum"] = tuple(kwargs["enum"])
    return ParameterSpec(name=name, type=type_, description=description, **kwargs)


TOOLS = (
    ToolDescriptor(
        name="add_transaction",
        description="Add a new transaction (expense or income)",
        parameters=(
            _p("amount", "number", "Transaction amount (always positive)", required=True, exclusive_minimum=0),
            _p("description", "string", "Transaction description", required=True),
            _p("category_id", "string", "Category ID for the transaction", required=True),
            _p("transaction_type", "string", "Type of transaction", required=True, enum=_TRANSACTION_TYPE),
            _p(
                "transaction_date",
                "string",
                "Date in YYYY-MM-DD format (optional, defaults to today)",
                format="date",
            ),
            _p("merchant_name", "string", "Merchant or vendor name (optional)"),
        ),
    ),
    ToolDescriptor(
        name="update_transaction",
        description=(
            "Update an existing transaction. At least one update field (amount, "
            "description, category_id, transaction_type, merchant_name) must be provided."
        ),
        parameters=(
            _p("transaction_id", "string", "ID of transaction to update", required=True),
            _p("amount", "number", "New amount (optional)", exclusive_minimum=0),
            _p("description", "string", "New description (optional)"),
            _p("category_id", "string", "New category ID (optional)"),
            _p("transaction_type", "string", "New transaction type (optional)", enum=_TRANSACTION_TYPE),
            _p("merchant_name", "string", "New merchant name (optional)"),
        ),
        mutable_fields=("amount", "description", "category_id", "transaction_type", "merchant_name"),
    ),
    ToolDescriptor(
        name="delete_transaction",
        description="Delete a transaction",
        parameters=(_p("transaction_id", "string", "ID of transaction to delete", required=True),),
    ),
    ToolDescriptor(
        name="create_budget",
        description="Create a new budget for a category",
        parameters=(
            _p("category_id", "string", "Category ID for the budget", required=True),
            _p("name", "string", "Budget name", required=True),
            _p("amount", "number", "Budget amount", required=True, exclusive_minimum=0),
            _p("currency", "string", "Currency code (e.g., USD, EUR). Defaults to USD."),
            _p("period_type", "string", "Budget period", required=True, enum=_PERIOD_TYPE),
            _p("start_date", "string", "Start date in YYYY-MM-DD format (optional)", format="date"),
            _p(
                "alert_threshold",
                "number",
                "Alert threshold percentage (optional, default 80)",
                minimum=0,
                maximum=100,
            ),
        ),
    ),
    ToolDescriptor(
        name="update_budget",
        description=(
            "Update an existing budget with new values. At least one update field "
            "(name, amount, currency, or alert_threshold) must be provided."
        ),
        parameters=(
            _p("budget_id", "string", "ID of budget to update (use if known)"),
            _p("budget_name", "string", "Name of budget to find and update (alternative to budget_id)"),
            _p("category_name", "string", "Category name to find budget (alternative to budget_id)"),
            _p("name", "string", "New budget name (optional)"),
            _p("amount", "number", "New budget amount (optional)", exclusive_minimum=0),
            _p("currency", "string", "New currency code (e.g., USD, EUR) (optional)"),
            _p("alert_threshold", "number", "New alert threshold percentage (optional)", minimum=0, maximum=100),
        ),
        mutable_fields=("name", "amount", "currency", "alert_threshold"),
    ),
    ToolDescriptor(
        name="delete_budget",
        description="Delete a budget",
        parameters=(_p("budget_id", "string", "ID of budget to delete", required=True),),
    ),
    ToolDescriptor(
        name="create_category",
        description="Create a new spending category",
        parameters=(
            _p("name", "string", "Category name", required=True),
            _p("color", "string", "Category color (hex code, optional)"),
            _p("icon", "string", "Category icon name (optional)"),
        ),
    ),
    ToolDescriptor(
        name="get_transactions",
        description=(
            "Get transactions with optional filters. When users ask about receipt "
            "details, use this to find transactions first, then use get_receipt_items "
            "with the transaction_id."
        ),
        parameters=(
            _p("category", "string", "Filter by category name (optional)"),
            _p("start_date", "string", "Start date in YYYY-MM-DD format (optional)", format="date"),
            _p("end_date", "string", "End date in YYYY-MM-DD format (optional)", format="date"),
            _p("transaction_type", "string", "Filter by transaction type (optional)", enum=_TRANSACTION_TYPE),
            _p(
                "limit",
                "integer",
                "Number of transactions to return (optional, default 10)",
                minimum=1,
                maximum=100,
            ),
        ),
    ),
    ToolDescriptor(
        name="get_spending_analysis",
        description="Get detailed spending analysis and insights",
        parameters=(
            _p(
                "period",
                "string",
                "Analysis period (optional, default month)",
                enum=("week", "month", "year"),
            ),
        ),
    ),
    ToolDescriptor(
        name="get_budgets",
        description="Get all user budgets with their current status",
        parameters=(_p("category_name", "string", "Filter by category name (optional)"),),
    ),
    ToolDescriptor(
        name="create_budget_with_category",
        description="Create a new budget and category if it does not exist",
        parameters=(
            _p(
                "category_name",
                "string",
                "Category name (will be created if it does not exist)",
                required=True,
            ),
            _p("budget_name", "string", "Budget name", required=True),
            _p("amount", "number", "Budget amount", required=True, exclusive_minimum=0),
            _p("currency", "string", "Currency code (e.g., USD, EUR). Defaults to USD."),
            _p("period_type", "string", "Budget period", required=True, enum=_PERIOD_TYPE),
            _p("start_date", "string", "Start date in YYYY-MM-DD format (optional)", format="date"),
            _p(
                "alert_threshold",
                "number",
                "Alert threshold percentage (optional, default 80)",
                minimum=0,
                maximum=100,
            ),
            _p("category_color", "string", "Category color (hex code, optional)"),
            _p("category_icon", "string", "Category icon name (optional)"),
        ),
    ),
    ToolDescriptor(
        name="get_receipt_items",
        description=(
            "Get detailed individual items from a scanned receipt. Use this when users "
            "ask about specific items they bought, what was on their receipt, or an "
            "itemized breakdown of a purchase. Use the transaction_id from "
            "get_transactions results. Only transactions created from scanned receipts "
            "have item-level data."
        ),
        parameters=(
            _p("receipt_id", "string", "Receipt ID to get items from"),
            _p(
                "transaction_id",
                "string",
                "Transaction ID to find related receipt (alternative to receipt_id)",
            ),
        ),
    ),
    ToolDescriptor(
        name="update_receipt_items",
        description="Update or correct individual items in a processed receipt",
        parameters=(
            _p("receipt_id", "string", "Receipt ID to update items for"),
            _p(
                "transaction_id",
                "string",
                "Transaction ID to find related receipt (alternative to receipt_id)",
            ),
            _p(
                "items",
                "array",
                "Array of corrected items to update",
                required=True,
                min_items=1,
                items=(
                    _p("name", "string", "Item name", required=True),
                    _p("amount", "number", "Item price/amount", required=True, exclusive_minimum=0),
                    _p(
                        "quantity",
                        "number",
                        "Item quantity (optional, defaults to 1)",
                        exclusive_minimum=0,
                    ),
                    _p("category", "string", "Item category (optional)"),
                ),
            ),
            _p("merchant_name", "string", "Update merchant name (optional)"),
            _p("total_amount", "number", "Update total amount (optional)", exclusive_minimum=0),
            _p("currency", "string", "Update currency (optional)"),
            _p("date", "string", "Update date in YYYY-MM-DD format (optional)", format="date"),
        ),
    ),
)

TOOL_REGISTRY = ToolRegistry(TOOLS)

TOOLS_DEFINITIONS = TOOL_REGISTRY.function_tools()
