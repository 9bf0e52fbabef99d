"""Financial snapshot assembly and rendering."""

from datetime import date

from financial_context import build_financial_context, render_financial_context

USER_ID = 1


def test_empty_snapshot(facade):
    ctx = build_financial_context(facade, USER_ID, today=date(2024, 5, 20))

    assert ctx.aggregate_spend_this_period == 0
    assert ctx.period_start == date(2024, 5, 1)
    text = render_financial_context(ctx)
    assert "Total spending this month: $0.00" in text
    assert "Categories: none" in text


def test_snapshot_counts_only_this_month_expenses(facade):
    food = facade.add_category(USER_ID, "Food")
    facade.add_transaction(USER_ID, food["id"], 30, transaction_date="2024-05-03", merchant_name="Cafe")
    facade.add_transaction(USER_ID, food["id"], 20, transaction_date="2024-04-28")
    facade.add_transaction(USER_ID, food["id"], 1000, transaction_type="income", transaction_date="2024-05-02")

    ctx = build_financial_context(facade, USER_ID, today=date(2024, 5, 20))

    assert ctx.aggregate_spend_this_period == 30
    assert len(ctx.recent_transactions) == 3
    assert ctx.recent_transactions[0]["transaction_date"] == "2024-05-03"


def test_recent_transactions_are_limited(facade):
    food = facade.add_category(USER_ID, "Food")
    for day in range(1, 8):
        facade.add_transaction(USER_ID, food["id"], day, transaction_date=f"2024-05-0{day}")

    ctx = build_financial_context(facade, USER_ID, limit=3, today=date(2024, 5, 20))

    assert [t["amount"] for t in ctx.recent_transactions] == [7, 6, 5]


def test_rendered_snapshot_lists_ids_for_the_model(facade):
    food = facade.add_category(USER_ID, "Food")
    budget = facade.add_budget(USER_ID, food["id"], "Food Budget", 200, start_date="2024-05-01")
    transaction = facade.add_transaction(USER_ID, food["id"], 50, transaction_date="2024-05-04", merchant_name="Market")

    text = render_financial_context(build_financial_context(facade, USER_ID, today=date(2024, 5, 20)))

    assert f"Food (ID: {food['id']})" in text
    assert f"[ID: {transaction['id']}]" in text
    assert "$50.00 expense at Market (Food) on 2024-05-04" in text
    assert f"Food Budget: $200.00 budget (Food) [ID: {budget['id']}], 25.0% used, status on_track" in text


def test_other_users_data_is_excluded(facade):
    mine = facade.add_category(USER_ID, "Food")
    theirs = facade.add_category(2, "Secret")
    facade.add_transaction(2, theirs["id"], 99, transaction_date="2024-05-05")
    facade.add_transaction(USER_ID, mine["id"], 1, transaction_date="2024-05-05")

    ctx = build_financial_context(facade, USER_ID, today=date(2024, 5, 20))

    assert [c["name"] for c in ctx.categories] == ["Food"]
    assert ctx.aggregate_spend_this_period == 1
