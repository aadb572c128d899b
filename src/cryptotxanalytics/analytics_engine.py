# analytics_engine.py
"""
Ledger -> Analytics / DashboardSummary.

Design:
- This file is *pure logic*: give it the transaction list and a base
  currency, get back freshly built views. Nothing is patched incrementally.
- Expense amount in the base currency, first match wins:
    converted_value.amount
    value_out.amount            (value_out.token == base)
    value_out.usd_value         (base == "USD")
    otherwise 0 -> the transaction does not count towards totals.
  Income is resolved the same way from value_in (no converted_value step).
- average_transaction divides by ALL transactions, not only the ones with a
  resolved amount.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from .base_currency import detect_base_currency
from .categories import detect_category
from .csv_normalizer import format_iso, parse_timestamp
from .schemas import (
    Analytics,
    BreakdownVariant,
    CategoryValue,
    DashboardSummary,
    DetectedBaseCurrency,
    LedgerEntry,
    MonthlyData,
    RankingPolicy,
    TokenValue,
)

logger = logging.getLogger(__name__)

MonthKey = Tuple[int, int]  # (year, month)


def expense_amount(tx: LedgerEntry, base_currency: str) -> float:
    if tx.converted_value is not None:
        return tx.converted_value.amount
    if tx.value_out is not None:
        if tx.value_out.token == base_currency:
            return tx.value_out.amount
        if base_currency == "USD" and tx.value_out.usd_value:
            return tx.value_out.usd_value
    return 0.0


def income_amount(tx: LedgerEntry, base_currency: str) -> float:
    if tx.value_in is not None:
        if tx.value_in.token == base_currency:
            return tx.value_in.amount
        if base_currency == "USD" and tx.value_in.usd_value:
            return tx.value_in.usd_value
    return 0.0


def month_key(timestamp: str) -> Optional[MonthKey]:
    dt = parse_timestamp(timestamp)
    if dt is None:
        return None
    dt = dt.astimezone(timezone.utc)
    return dt.year, dt.month


def _tagged(amount: float, base_currency: str) -> TokenValue:
    return TokenValue(
        amount=amount,
        token=base_currency,
        usd_value=amount if base_currency == "USD" else None,
    )


@dataclass
class _MonthTotals:
    income: float = 0.0
    expenses: float = 0.0
    count: int = 0

    def to_model(self, key: MonthKey) -> MonthlyData:
        year, month = key
        return MonthlyData(
            month=f"{month:02d}",
            year=year,
            income=self.income,
            expenses=self.expenses,
            net=self.income - self.expenses,
            transaction_count=self.count,
        )


def aggregate(
    transactions: List[LedgerEntry],
    base_currency: str,
    variant: BreakdownVariant = BreakdownVariant.INCOME_EXPENSE,
) -> Analytics:
    """Build Analytics for `base_currency`. Empty ledger -> all null / empty."""
    if not transactions:
        return Analytics()

    total = 0.0
    by_token: Dict[str, float] = {}
    by_category: Dict[str, float] = {}
    flat_months: Dict[MonthKey, float] = {}
    months: Dict[MonthKey, _MonthTotals] = {}

    for tx in transactions:
        spent = expense_amount(tx, base_currency)
        key = month_key(tx.timestamp)

        if spent > 0:
            total += spent
            token = tx.value_out.token if tx.value_out else "Unknown"
            by_token[token] = by_token.get(token, 0.0) + (tx.value_out.amount if tx.value_out else 0.0)
            category = tx.category or detect_category(tx.to_address, tx.method)
            by_category[category] = by_category.get(category, 0.0) + spent
            if key is not None:
                flat_months[key] = flat_months.get(key, 0.0) + spent

        if variant == BreakdownVariant.INCOME_EXPENSE and key is not None:
            bucket = months.setdefault(key, _MonthTotals())
            bucket.count += 1
            bucket.expenses += spent
            bucket.income += income_amount(tx, base_currency)

    if variant == BreakdownVariant.INCOME_EXPENSE:
        breakdown: List = [months[k].to_model(k) for k in sorted(months, reverse=True)]
    else:
        breakdown = [_tagged(amount, base_currency) for amount in flat_months.values()]

    analytics = Analytics(
        total_spent=_tagged(total, base_currency) if total > 0 else None,
        average_transaction=_tagged(total / len(transactions), base_currency) if total > 0 else None,
        transactions_by_token=[TokenValue(amount=a, token=t) for t, a in by_token.items()],
        monthly_breakdown=breakdown,
        spending_by_category=[
            CategoryValue(
                amount=a,
                category=c,
                token=base_currency,
                usd_value=a if base_currency == "USD" else None,
            )
            for c, a in sorted(by_category.items(), key=lambda item: -item[1])
        ],
    )
    logger.debug("Aggregated %d transactions in %s: total %.2f", len(transactions), base_currency, total)
    return analytics


def aggregate_with_detection(
    transactions: List[LedgerEntry],
    base_currency: str,
    variant: BreakdownVariant = BreakdownVariant.INCOME_EXPENSE,
    policy: RankingPolicy = RankingPolicy.VOLUME_FIRST,
    include_fees: bool = False,
) -> Tuple[Analytics, Optional[DetectedBaseCurrency]]:
    """Analytics plus a fresh base-currency detection (None for an empty ledger)."""
    analytics = aggregate(transactions, base_currency, variant)
    if not transactions:
        return analytics, None
    return analytics, detect_base_currency(transactions, policy=policy, include_fees=include_fees)


# ---------- Dashboard ----------

@dataclass
class _DashboardTotals:
    spent: float = 0.0
    added: float = 0.0
    fees: float = 0.0
    months: Dict[MonthKey, _MonthTotals] = field(default_factory=dict)


def _previous_month(key: MonthKey) -> MonthKey:
    year, month = key
    return (year - 1, 12) if month == 1 else (year, month - 1)


def compute_dashboard(
    transactions: List[LedgerEntry],
    base_currency: str,
    monthly_budget: Optional[float] = None,
    alert_threshold: Optional[float] = 80.0,
    now: Optional[datetime] = None,
) -> DashboardSummary:
    """
    Month-to-date dashboard figures and alerts.

    Unlike `aggregate`, every positive value_out counts as spending (in its
    own amount, or converted_value when that is already in the base
    currency); income is value_in, or its usd_value when the base is USD.
    """
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    current: MonthKey = (now.year, now.month)
    previous = _previous_month(current)
    days_in_month = calendar.monthrange(now.year, now.month)[1]
    days_elapsed = now.day

    totals = _DashboardTotals()
    totals.months[current] = _MonthTotals()
    totals.months[previous] = _MonthTotals()
    expense_count = 0

    for tx in transactions:
        key = month_key(tx.timestamp)
        bucket = totals.months.setdefault(key, _MonthTotals()) if key else _MonthTotals()
        bucket.count += 1

        if tx.txn_fee.amount > 0:
            totals.fees += tx.txn_fee.amount

        if tx.value_out is not None and tx.value_out.amount > 0:
            amount = tx.value_out.amount
            if tx.converted_value is not None and tx.converted_value.currency == base_currency:
                amount = tx.converted_value.amount
            totals.spent += amount
            bucket.expenses += amount
            expense_count += 1

        if tx.value_in is not None and tx.value_in.amount > 0:
            amount = tx.value_in.amount
            if base_currency == "USD" and tx.value_in.usd_value:
                amount = tx.value_in.usd_value
            totals.added += amount
            bucket.income += amount

    cur = totals.months[current]
    prev = totals.months[previous]
    average_daily = cur.expenses / days_elapsed if days_elapsed > 0 else 0.0
    projected = average_daily * days_in_month if days_elapsed > 0 else cur.expenses

    return DashboardSummary(
        base_currency=base_currency,
        total_spent=totals.spent,
        total_added=totals.added,
        net_balance=totals.added - totals.spent,
        current_month_income=cur.income,
        current_month_expenses=cur.expenses,
        previous_month_income=prev.income,
        previous_month_expenses=prev.expenses,
        monthly_data=[totals.months[k].to_model(k) for k in sorted(totals.months, reverse=True)],
        average_daily_spend=average_daily,
        average_transaction=totals.spent / expense_count if expense_count else 0.0,
        days_until_month_end=days_in_month - days_elapsed,
        projected_month_spend=projected,
        total_fees=totals.fees,
        spending_alerts=spending_alerts(
            cur.expenses, prev.expenses, projected, base_currency, monthly_budget, alert_threshold
        ),
        last_calculated_at=format_iso(now),
    )


def spending_alerts(
    current_expenses: float,
    previous_expenses: float,
    projected: float,
    base_currency: str,
    monthly_budget: Optional[float],
    alert_threshold: Optional[float] = 80.0,
) -> List[str]:
    alerts: List[str] = []
    threshold = 80.0 if alert_threshold is None else alert_threshold

    if monthly_budget and monthly_budget > 0:
        percent_used = current_expenses / monthly_budget * 100
        if percent_used >= threshold:
            alerts.append(f"Spending alert: You've used {percent_used:.1f}% of your monthly budget")
        if projected > monthly_budget:
            alerts.append(
                "Projection alert: At current rate, you'll exceed your monthly budget by "
                f"{projected - monthly_budget:.2f} {base_currency}"
            )

    if previous_expenses > 0:
        change = (current_expenses - previous_expenses) / previous_expenses * 100
        if change > 20:
            alerts.append(f"Your spending is {change:.1f}% higher than last month")
    return alerts
