from datetime import datetime, timezone

import pytest

from cryptotxanalytics.analytics_engine import (
    aggregate,
    aggregate_with_detection,
    compute_dashboard,
    expense_amount,
    income_amount,
    spending_alerts,
)
from cryptotxanalytics.categories import category_label, detect_category
from cryptotxanalytics.schemas import (
    Analytics,
    BreakdownVariant,
    MonthlyData,
    PriceInfo,
    RankingPolicy,
    TokenValue,
    Transaction,
)

GNOSIS_PAY = "0x4822521e6135cd2599199c83ea35179229a172ee"


def tx(id, ts, **kw):
    return Transaction(id=id, tx_hash=f"0x{id}", timestamp=ts, **kw)


@pytest.fixture
def ledger():
    return [
        tx("1", "2024-01-05T09:00:00.000Z", value_out=TokenValue(amount=10, token="EURe"), to_address=GNOSIS_PAY),
        tx("2", "2024-01-20T18:00:00.000Z", value_out=TokenValue(amount=30, token="EURe"), method="Uber ride"),
        tx("3", "2024-02-01T08:00:00.000Z", value_in=TokenValue(amount=100, token="EURe")),
        tx("4", "2024-02-03T12:00:00.000Z", value_out=TokenValue(amount=5, token="USDC")),
        tx(
            "5",
            "2024-02-10T12:00:00.000Z",
            value_out=TokenValue(amount=20, token="USDC"),
            converted_value=PriceInfo(amount=18, currency="EURe"),
        ),
    ]


def test_empty_ledger_gives_empty_analytics():
    result = aggregate([], "USD")
    assert result == Analytics()
    assert result.total_spent is None
    assert result.average_transaction is None
    assert result.transactions_by_token == []
    assert result.monthly_breakdown == []

    analytics, detected = aggregate_with_detection([], "USD")
    assert analytics == Analytics()
    assert detected is None


def test_totals_and_average(ledger):
    result = aggregate(ledger, "EURe")
    assert result.total_spent.amount == pytest.approx(58.0)
    assert result.total_spent.token == "EURe"
    assert result.total_spent.usd_value is None
    # the average is over every transaction, including ones that add nothing
    assert result.average_transaction.amount == pytest.approx(58.0 / 5)
    assert result.average_transaction.amount * len(ledger) == pytest.approx(result.total_spent.amount)


def test_spending_by_token_uses_raw_outgoing_amounts(ledger):
    result = aggregate(ledger, "EURe")
    assert [(t.token, t.amount) for t in result.transactions_by_token] == [("EURe", 40.0), ("USDC", 20.0)]


def test_spending_by_category_sorted_descending(ledger):
    result = aggregate(ledger, "EURe")
    assert [(c.category, c.amount) for c in result.spending_by_category] == [
        ("transport", 30.0),
        ("other", 18.0),
        ("shopping", 10.0),
    ]


def test_explicit_category_wins(ledger):
    ledger[1] = ledger[1].model_copy(update={"category": "travel"})
    result = aggregate(ledger, "EURe")
    assert "travel" in {c.category for c in result.spending_by_category}
    assert "transport" not in {c.category for c in result.spending_by_category}


def test_income_expense_breakdown_newest_first(ledger):
    result = aggregate(ledger, "EURe")
    assert result.monthly_breakdown == [
        MonthlyData(month="02", year=2024, income=100.0, expenses=18.0, net=82.0, transaction_count=3),
        MonthlyData(month="01", year=2024, income=0.0, expenses=40.0, net=-40.0, transaction_count=2),
    ]


def test_flat_breakdown_in_first_seen_order(ledger):
    result = aggregate(ledger, "EURe", BreakdownVariant.FLAT)
    assert [(m.amount, m.token) for m in result.monthly_breakdown] == [(40.0, "EURe"), (18.0, "EURe")]


def test_nothing_in_base_currency_means_no_totals(ledger):
    result = aggregate(ledger[:2], "GBPe")
    assert result.total_spent is None
    assert result.average_transaction is None
    assert result.transactions_by_token == []


def test_usd_base_falls_back_to_usd_values():
    t = tx("u", "2024-01-01T00:00:00.000Z", value_out=TokenValue(amount=10, token="EURe", usd_value=11))
    assert expense_amount(t, "USD") == 11
    assert expense_amount(t, "GBPe") == 0.0
    result = aggregate([t], "USD")
    assert result.total_spent.usd_value == pytest.approx(11.0)

    i = tx("i", "2024-01-01T00:00:00.000Z", value_in=TokenValue(amount=10, token="EURe", usd_value=11))
    assert income_amount(i, "USD") == 11
    assert income_amount(i, "EURe") == 10


def test_aggregate_with_detection_reports_base_currency(ledger):
    analytics, detected = aggregate_with_detection(ledger, "EURe", policy=RankingPolicy.COUNT_FIRST)
    assert analytics.total_spent is not None
    assert detected.stablecoin == "EURe"


@pytest.fixture
def march():
    return datetime(2024, 3, 10, tzinfo=timezone.utc)


@pytest.fixture
def dashboard_ledger():
    return [
        tx("m1", "2024-03-02T10:00:00.000Z", value_out=TokenValue(amount=300, token="EURe")),
        tx(
            "m2",
            "2024-03-05T10:00:00.000Z",
            value_in=TokenValue(amount=50, token="EURe"),
            txn_fee=TokenValue(amount=0.1, token="DAI"),
        ),
        tx("f1", "2024-02-14T10:00:00.000Z", value_out=TokenValue(amount=200, token="EURe")),
    ]


def test_dashboard_figures(dashboard_ledger, march):
    d = compute_dashboard(dashboard_ledger, "EURe", monthly_budget=500, alert_threshold=50, now=march)
    assert d.base_currency == "EURe"
    assert d.total_spent == 500
    assert d.total_added == 50
    assert d.net_balance == -450
    assert d.current_month_expenses == 300
    assert d.current_month_income == 50
    assert d.previous_month_expenses == 200
    assert d.average_daily_spend == pytest.approx(30.0)
    assert d.projected_month_spend == pytest.approx(930.0)
    assert d.days_until_month_end == 21
    assert d.average_transaction == pytest.approx(250.0)
    assert d.total_fees == pytest.approx(0.1)
    assert [(m.year, m.month) for m in d.monthly_data] == [(2024, "03"), (2024, "02")]
    assert d.last_calculated_at == "2024-03-10T00:00:00.000Z"


def test_dashboard_alerts(dashboard_ledger, march):
    d = compute_dashboard(dashboard_ledger, "EURe", monthly_budget=500, alert_threshold=50, now=march)
    assert d.spending_alerts == [
        "Spending alert: You've used 60.0% of your monthly budget",
        "Projection alert: At current rate, you'll exceed your monthly budget by 430.00 EURe",
        "Your spending is 50.0% higher than last month",
    ]


def test_dashboard_without_budget_only_compares_months(dashboard_ledger, march):
    d = compute_dashboard(dashboard_ledger, "EURe", now=march)
    assert d.spending_alerts == ["Your spending is 50.0% higher than last month"]


def test_dashboard_uses_converted_value_in_base_currency(march):
    t = tx(
        "c",
        "2024-03-01T00:00:00.000Z",
        value_out=TokenValue(amount=20, token="USDC"),
        converted_value=PriceInfo(amount=18, currency="EURe"),
    )
    assert compute_dashboard([t], "EURe", now=march).total_spent == 18
    assert compute_dashboard([t], "GBPe", now=march).total_spent == 20


def test_dashboard_on_empty_ledger(march):
    d = compute_dashboard([], "USD", now=march)
    assert d.total_spent == 0
    assert d.spending_alerts == []
    assert len(d.monthly_data) == 2


def test_spending_alerts_edges():
    assert spending_alerts(0, 0, 0, "USD", None) == []
    assert spending_alerts(79, 100, 79, "USD", 100) == []
    assert spending_alerts(80, 100, 80, "USD", 100, None) == [
        "Spending alert: You've used 80.0% of your monthly budget"
    ]
    assert spending_alerts(121, 100, 121, "USD", 0) == ["Your spending is 21.0% higher than last month"]


@pytest.mark.parametrize(
    "to_address, description, category",
    [
        (GNOSIS_PAY.upper().replace("0X", "0x"), None, "shopping"),
        (None, "Netflix monthly", "entertainment"),
        ("0xabc", "Uber Eats order", "food"),
        ("0xabc", "transfer(address,uint256)", "other"),
        (None, None, "other"),
    ],
)
def test_detect_category(to_address, description, category):
    assert detect_category(to_address, description) == category


def test_category_label():
    assert category_label("food") == "Food & Dining"
    assert category_label("nope") == "Other"
