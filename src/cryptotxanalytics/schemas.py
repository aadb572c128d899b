"""
Pydantic schemas (data models) for the transaction ledger, its derived views
and the operation inputs.

Core ideas:
- Python attributes are snake_case; JSON uses camelCase aliases (txHash,
  usdValue, ...) so exported documents keep their familiar shape. Both forms
  are accepted on input.
- Two ledger entry shapes: a basic Transaction, and ClassifiedTransaction which
  adds the income/expense classification relative to a tracked address.
- Analytics, DetectedBaseCurrency and DashboardSummary are derived views;
  they are recomputed wholesale, never patched.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class TxStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class TxType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    NEUTRAL = "NEUTRAL"


class RankingPolicy(str, Enum):
    """Which statistic ranks stablecoins first when detecting the base currency."""

    COUNT_FIRST = "COUNT_FIRST"
    VOLUME_FIRST = "VOLUME_FIRST"


class BreakdownVariant(str, Enum):
    """Shape of Analytics.monthly_breakdown."""

    FLAT = "FLAT"  # one TokenValue per month (expenses only)
    INCOME_EXPENSE = "INCOME_EXPENSE"  # MonthlyData with income/expenses/net


def utc_now_iso() -> str:
    """Current UTC time as 2024-01-15T10:30:00.000Z."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------- Values ----------

class TokenValue(CamelModel):
    amount: float
    token: str
    usd_value: Optional[float] = None


class PriceInfo(CamelModel):
    amount: float
    currency: str


def zero_fee(token: str = "USD") -> TokenValue:
    return TokenValue(amount=0.0, token=token, usd_value=None)


# ---------- Ledger entries ----------

class Transaction(CamelModel):
    """
    Basic ledger entry.

    Fields:
      id: caller-supplied identifier (never derived).
      tx_hash: blockchain hash, the dedup key within a ledger.
      timestamp: ISO-8601 string (UTC).
      value_in / value_out: incoming / outgoing value; both may be set (swap).
      txn_fee: always present, zero when unknown.
      historical_price, current_value, converted_value: filled by pricing and
        conversion steps, not by import.
    """

    id: str
    tx_hash: str = ""
    block_number: str = ""
    timestamp: str
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    contract_address: Optional[str] = None
    value_in: Optional[TokenValue] = None
    value_out: Optional[TokenValue] = None
    txn_fee: TokenValue = Field(default_factory=zero_fee)
    historical_price: Optional[PriceInfo] = None
    current_value: Optional[PriceInfo] = None
    converted_value: Optional[PriceInfo] = None
    status: TxStatus = TxStatus.SUCCESS
    error_code: Optional[str] = None
    method: Optional[str] = None
    category: Optional[str] = None

    @field_validator("value_in", "value_out")
    @classmethod
    def _drop_non_positive(cls, v: Optional[TokenValue]) -> Optional[TokenValue]:
        # zero or negative amounts are stored as "no value", never as 0
        if v is not None and not v.amount > 0:
            return None
        return v

    @field_validator("txn_fee", mode="before")
    @classmethod
    def _fee_never_null(cls, v):
        return zero_fee() if v is None else v

    @field_validator("tx_hash", "block_number", mode="before")
    @classmethod
    def _as_text(cls, v):
        return "" if v is None else str(v)


class ClassifiedTransaction(Transaction):
    """Ledger entry classified relative to a tracked address."""

    transaction_type: TxType = TxType.NEUTRAL
    signed_amount: float = 0.0


LedgerEntry = Union[ClassifiedTransaction, Transaction]


class DateRange(CamelModel):
    start_date: str
    end_date: str


class TransactionMetadata(CamelModel):
    imported_at: str
    total_transactions: int = 0
    date_range: Optional[DateRange] = None
    tracked_address: Optional[str] = None


# ---------- Derived views ----------

class DetectedBaseCurrency(CamelModel):
    stablecoin: Optional[str] = None
    currency_code: Optional[str] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    transaction_counts: Dict[str, int]
    total_volume: Dict[str, float]
    reason: str


class MonthlyData(CamelModel):
    month: str  # "01".."12"
    year: int
    income: float = 0.0
    expenses: float = 0.0
    net: float = 0.0
    transaction_count: int = 0


class CategoryValue(CamelModel):
    amount: float
    category: str
    token: str
    usd_value: Optional[float] = None


class Analytics(CamelModel):
    total_spent: Optional[TokenValue] = None
    average_transaction: Optional[TokenValue] = None
    transactions_by_token: List[TokenValue] = Field(default_factory=list)
    monthly_breakdown: List[Union[MonthlyData, TokenValue]] = Field(default_factory=list)
    spending_by_category: List[CategoryValue] = Field(default_factory=list)


class DashboardSummary(CamelModel):
    base_currency: str
    total_spent: float = 0.0
    total_added: float = 0.0
    net_balance: float = 0.0
    current_month_income: float = 0.0
    current_month_expenses: float = 0.0
    previous_month_income: float = 0.0
    previous_month_expenses: float = 0.0
    monthly_data: List[MonthlyData] = Field(default_factory=list)
    average_daily_spend: float = 0.0
    average_transaction: float = 0.0
    days_until_month_end: int = 0
    projected_month_spend: float = 0.0
    total_fees: float = 0.0
    spending_alerts: List[str] = Field(default_factory=list)
    last_calculated_at: str


# ---------- Settings ----------

class ExchangeRate(CamelModel):
    from_currency: str
    to_currency: str
    rate: float = Field(..., gt=0)
    timestamp: str


class Settings(CamelModel):
    base_currency: str = "USD"
    last_forex_update: Optional[str] = None
    exchange_rates: List[ExchangeRate] = Field(default_factory=list)
    monthly_budget: Optional[float] = None
    alert_threshold: float = 80.0


# ---------- Operation inputs ----------

class ImportCsvTransactionsInput(CamelModel):
    csv_data: str
    transaction_ids: List[str]
    timestamp: str = Field(default_factory=utc_now_iso)
    tracked_address: Optional[str] = None


class ImportExplorerTransactionsInput(CamelModel):
    records: List[Dict[str, Any]]
    transaction_ids: List[str]
    tracked_address: str
    timestamp: str = Field(default_factory=utc_now_iso)


class AddTransactionInput(Transaction):
    """Manual add: a full transaction, optionally already classified."""

    transaction_type: Optional[TxType] = None
    signed_amount: Optional[float] = None


class UpdateTransactionInput(CamelModel):
    """
    Partial update – every field optional.
    Only fields present in the payload are applied; an explicit null clears a
    nullable field.
    """

    id: str
    tx_hash: Optional[str] = None
    block_number: Optional[str] = None
    timestamp: Optional[str] = None
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    contract_address: Optional[str] = None
    value_in: Optional[TokenValue] = None
    value_out: Optional[TokenValue] = None
    txn_fee: Optional[TokenValue] = None
    historical_price: Optional[PriceInfo] = None
    current_value: Optional[PriceInfo] = None
    converted_value: Optional[PriceInfo] = None
    status: Optional[TxStatus] = None
    error_code: Optional[str] = None
    method: Optional[str] = None
    category: Optional[str] = None


class DeleteTransactionInput(CamelModel):
    id: str


class SetBaseCurrencyInput(CamelModel):
    base_currency: str = Field(..., min_length=1)


class SetBudgetInput(CamelModel):
    monthly_budget: Optional[float] = Field(None, ge=0)
    alert_threshold: Optional[float] = Field(None, gt=0)


class UpdateExchangeRatesInput(CamelModel):
    rates: List[ExchangeRate]
    timestamp: str = Field(default_factory=utc_now_iso)


class ConvertTransactionValuesInput(CamelModel):
    transaction_id: str
    base_currency: str


class CalculateAnalyticsInput(CamelModel):
    base_currency: Optional[str] = None  # None -> settings.base_currency
    variant: BreakdownVariant = BreakdownVariant.INCOME_EXPENSE
    policy: Optional[RankingPolicy] = None  # None -> configured policy
    include_fees: Optional[bool] = None


# ---------- Records / API responses ----------

class OperationRecord(CamelModel):
    """One applied operation; `error` holds the structured failure, if any."""

    index: int
    type: str
    timestamp: str
    input: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None


class CSVPreviewResponse(BaseModel):
    """
    API response model for /upload/csv (preview only).
    """

    filename: str
    headers: List[str]
    total_rows: int
    preview_first_5: List[Dict[str, Any]]


class ImportResponse(BaseModel):
    """
    API response model for /import/csv and /import/explorer.
    """

    filename: Optional[str] = None
    inserted: int
    skipped_duplicates: int
    skipped_excluded: int
    total_transactions: int
