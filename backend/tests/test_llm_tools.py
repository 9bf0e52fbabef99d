"""Structural checks for LLM tool definitions to catch regressions early."""

from llm import TOOL_REGISTRY, TOOLS_DEFINITIONS


REQUIRED_FUNCTION_KEYS = {"name", "description", "parameters"}

EXPECTED_TOOLS = {
    "add_transaction",
    "update_transaction",
    "delete_transaction",
    "create_budget",
    "update_budget",
    "delete_budget",
    "create_category",
    "get_transactions",
    "get_spending_analysis",
    "get_budgets",
    "create_budget_with_category",
    "get_receipt_items",
    "update_receipt_items",
}


def _function(name):
    return next(t["function"] for t in TOOLS_DEFINITIONS if t["function"]["name"] == name)


def test_catalog_contains_every_tool():
    assert set(TOOL_REGISTRY.names) == EXPECTED_TOOLS
    assert len(TOOLS_DEFINITIONS) == len(EXPECTED_TOOLS)


def test_tool_names_unique():
    names = [tool["function"]["name"] for tool in TOOLS_DEFINITIONS]
    assert len(names) == len(set(names)), "Tool names must be unique"


def test_tool_schema_minimum_keys():
    for tool in TOOLS_DEFINITIONS:
        assert tool["type"] == "function"
        fn = tool.get("function", {})
        assert REQUIRED_FUNCTION_KEYS.issubset(fn.keys())
        params = fn.get("parameters", {})
        assert params.get("type") == "object"
        assert "properties" in params


def test_tool_parameters_have_required_fields():
    for tool in TOOLS_DEFINITIONS:
        params = tool["function"].get("parameters", {})
        required = params.get("required", [])
        if required:
            props = params.get("properties", {})
            assert all(field in props for field in required)


def test_add_transaction_declares_required_fields_and_enum():
    params = _function("add_transaction")["parameters"]
    assert set(params["required"]) == {"amount", "description", "category_id", "transaction_type"}
    assert params["properties"]["transaction_type"]["enum"] == ["income", "expense"]


def test_update_tools_expose_mutable_fields():
    assert TOOL_REGISTRY.get("update_budget").mutable_fields == ("name", "amount", "currency", "alert_threshold")
    assert TOOL_REGISTRY.get("update_budget").is_update
    assert "amount" in TOOL_REGISTRY.get("update_transaction").mutable_fields
    assert not TOOL_REGISTRY.get("create_budget").is_update


def test_receipt_items_schema_is_an_array_of_objects():
    items = _function("update_receipt_items")["parameters"]["properties"]["items"]
    assert items["type"] == "array"
    assert items["items"]["type"] == "object"
    assert set(items["items"]["required"]) == {"name", "amount"}


def test_registry_lookup():
    assert "get_budgets" in TOOL_REGISTRY
    assert TOOL_REGISTRY.get("transfer_money") is None
    assert len(list(TOOL_REGISTRY)) == len(EXPECTED_TOOLS)
