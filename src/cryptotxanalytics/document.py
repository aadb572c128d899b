# document.py
"""
LedgerDocument: the ledger plus its settings and derived views, changed only
through named operations.

Every call to `apply` appends an OperationRecord (index, type, timestamp,
input). With record_errors=True a structural failure (InvalidFormat,
NotFound, EmptyBatch) is stored on the record instead of raised, and the
document is left exactly as it was. Handlers compute the new state first and
assign it last, so a failure never leaves a half-applied change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Type

from pydantic import BaseModel, ValidationError

from .analytics_engine import aggregate_with_detection, compute_dashboard
from .config import AppConfig, get_config
from .csv_normalizer import parse_import
from .errors import EmptyBatch, InvalidFormat, LedgerError, NotFound
from .fx_utils import apply_exchange_rate_update, convert_transaction
from .ledger import (
    add_transaction,
    delete_transaction,
    extend_date_range,
    recompute_metadata,
    select_new_transactions,
    update_transaction,
)
from .schemas import (
    AddTransactionInput,
    Analytics,
    CalculateAnalyticsInput,
    ConvertTransactionValuesInput,
    DashboardSummary,
    DeleteTransactionInput,
    DetectedBaseCurrency,
    ImportCsvTransactionsInput,
    ImportExplorerTransactionsInput,
    LedgerEntry,
    OperationRecord,
    RankingPolicy,
    SetBaseCurrencyInput,
    SetBudgetInput,
    Settings,
    TransactionMetadata,
    UpdateExchangeRatesInput,
    UpdateTransactionInput,
    utc_now_iso,
)
from .tx_builder import build_transactions, explorer_record_to_input, transaction_from_input

logger = logging.getLogger(__name__)

IMPORT_CSV_TRANSACTIONS = "IMPORT_CSV_TRANSACTIONS"
IMPORT_EXPLORER_TRANSACTIONS = "IMPORT_EXPLORER_TRANSACTIONS"
ADD_TRANSACTION = "ADD_TRANSACTION"
UPDATE_TRANSACTION = "UPDATE_TRANSACTION"
DELETE_TRANSACTION = "DELETE_TRANSACTION"
SET_BASE_CURRENCY = "SET_BASE_CURRENCY"
UPDATE_EXCHANGE_RATES = "UPDATE_EXCHANGE_RATES"
SET_BUDGET = "SET_BUDGET"
CONVERT_TRANSACTION_VALUES = "CONVERT_TRANSACTION_VALUES"
CALCULATE_ANALYTICS = "CALCULATE_ANALYTICS"

INPUT_MODELS: Dict[str, Type[BaseModel]] = {
    IMPORT_CSV_TRANSACTIONS: ImportCsvTransactionsInput,
    IMPORT_EXPLORER_TRANSACTIONS: ImportExplorerTransactionsInput,
    ADD_TRANSACTION: AddTransactionInput,
    UPDATE_TRANSACTION: UpdateTransactionInput,
    DELETE_TRANSACTION: DeleteTransactionInput,
    SET_BASE_CURRENCY: SetBaseCurrencyInput,
    UPDATE_EXCHANGE_RATES: UpdateExchangeRatesInput,
    SET_BUDGET: SetBudgetInput,
    CONVERT_TRANSACTION_VALUES: ConvertTransactionValuesInput,
    CALCULATE_ANALYTICS: CalculateAnalyticsInput,
}

# Only the fields actually sent are meaningful for these; recorded inputs keep that shape.
PARTIAL_OPERATIONS = {UPDATE_TRANSACTION, SET_BUDGET}


@dataclass
class LedgerDocument:
    config: AppConfig = field(default_factory=get_config)
    transactions: List[LedgerEntry] = field(default_factory=list)
    metadata: Optional[TransactionMetadata] = None
    settings: Optional[Settings] = None
    analytics: Analytics = field(default_factory=Analytics)
    detected_base_currency: Optional[DetectedBaseCurrency] = None
    operations: List[OperationRecord] = field(default_factory=list)

    def __post_init__(self):
        if self.settings is None:
            self.settings = Settings(
                base_currency=self.config.base_currency,
                alert_threshold=self.config.alert_threshold,
            )

    # ---------- dispatch ----------

    def apply(self, op_type: str, payload: Any, record_errors: bool = False) -> OperationRecord:
        """
        Validate `payload` for `op_type`, run it, and append the OperationRecord.
        Unknown operation types and invalid payloads are InvalidFormat errors.
        """
        record = OperationRecord(
            index=len(self.operations),
            type=op_type,
            timestamp=utc_now_iso(),
            input=_raw_input(payload),
        )
        try:
            model = _validate(op_type, payload)
            record.input = model.model_dump(
                mode="json", by_alias=True, exclude_unset=op_type in PARTIAL_OPERATIONS
            )
            record.result = self._handlers()[op_type](model)
        except LedgerError as err:
            logger.warning("%s failed: %s", op_type, err.message)
            if not record_errors:
                raise
            record.error = err.to_dict()
        self.operations.append(record)
        return record

    def _handlers(self) -> Dict[str, Callable[[Any], Optional[Dict[str, Any]]]]:
        return {
            IMPORT_CSV_TRANSACTIONS: self._import_csv,
            IMPORT_EXPLORER_TRANSACTIONS: self._import_explorer,
            ADD_TRANSACTION: self._add,
            UPDATE_TRANSACTION: self._update,
            DELETE_TRANSACTION: self._delete,
            SET_BASE_CURRENCY: self._set_base_currency,
            UPDATE_EXCHANGE_RATES: self._update_exchange_rates,
            SET_BUDGET: self._set_budget,
            CONVERT_TRANSACTION_VALUES: self._convert,
            CALCULATE_ANALYTICS: self._calculate,
        }

    # ---------- transaction management ----------

    def _import_csv(self, inp: ImportCsvTransactionsInput) -> Dict[str, Any]:
        rows = parse_import(inp.csv_data)
        built = build_transactions(
            rows,
            inp.transaction_ids,
            default_timestamp=inp.timestamp,
            tracked_address=inp.tracked_address,
            default_fee_token=self.config.fee_token,
        )
        return self._merge_batch(built, imported_at=inp.timestamp, tracked_address=inp.tracked_address)

    def _import_explorer(self, inp: ImportExplorerTransactionsInput) -> Dict[str, Any]:
        if len(inp.transaction_ids) < len(inp.records):
            raise InvalidFormat(
                f"Not enough transaction IDs provided: {len(inp.transaction_ids)} for {len(inp.records)} records",
                {"ids": len(inp.transaction_ids), "rows": len(inp.records)},
            )
        built = [
            transaction_from_input(explorer_record_to_input(record, inp.tracked_address, tx_id))
            for record, tx_id in zip(inp.records, inp.transaction_ids)
        ]
        return self._merge_batch(built, imported_at=inp.timestamp, tracked_address=inp.tracked_address)

    def _merge_batch(
        self, built: List[LedgerEntry], *, imported_at: str, tracked_address: Optional[str]
    ) -> Dict[str, Any]:
        if not built:
            raise EmptyBatch("No transactions to import")
        merged = select_new_transactions(self.transactions, built, self.config.excluded_contracts)
        transactions = self.transactions + merged.added
        metadata = recompute_metadata(
            self.metadata,
            transactions,
            merged.added,
            imported_at=imported_at,
            tracked_address=tracked_address,
        )
        self.transactions, self.metadata = transactions, metadata
        logger.info(
            "Imported %d transactions (%d duplicates, %d excluded)",
            len(merged.added),
            merged.skipped_duplicates,
            merged.skipped_excluded,
        )
        return {
            "inserted": len(merged.added),
            "skippedDuplicates": merged.skipped_duplicates,
            "skippedExcluded": merged.skipped_excluded,
            "totalTransactions": len(transactions),
        }

    def _add(self, inp: AddTransactionInput) -> Dict[str, Any]:
        tx = transaction_from_input(inp)
        self.transactions, self.metadata, added = add_transaction(
            self.transactions, self.metadata, tx, self.config.excluded_contracts
        )
        return {"added": added, "totalTransactions": len(self.transactions)}

    def _update(self, inp: UpdateTransactionInput) -> None:
        self.transactions = update_transaction(self.transactions, inp)
        if "timestamp" in inp.model_fields_set and inp.timestamp is not None:
            self.metadata = extend_date_range(self.metadata, inp.timestamp)

    def _delete(self, inp: DeleteTransactionInput) -> Dict[str, Any]:
        self.transactions, self.metadata = delete_transaction(
            self.transactions, self.metadata, inp.id, now=utc_now_iso()
        )
        return {"totalTransactions": len(self.transactions)}

    # ---------- currency management ----------

    def _set_base_currency(self, inp: SetBaseCurrencyInput) -> None:
        self.settings = self.settings.model_copy(update={"base_currency": inp.base_currency})

    def _update_exchange_rates(self, inp: UpdateExchangeRatesInput) -> None:
        self.settings = apply_exchange_rate_update(self.settings, inp.rates, inp.timestamp)

    def _set_budget(self, inp: SetBudgetInput) -> None:
        update = {name: getattr(inp, name) for name in inp.model_fields_set}
        if update.get("alert_threshold") is None:
            update.pop("alert_threshold", None)
        self.settings = self.settings.model_copy(update=update)

    def _convert(self, inp: ConvertTransactionValuesInput) -> None:
        tx = self.get_transaction(inp.transaction_id)
        converted = convert_transaction(tx, self.settings.exchange_rates, inp.base_currency)
        self.transactions = [converted if t.id == tx.id else t for t in self.transactions]

    # ---------- analytics ----------

    def _calculate(self, inp: CalculateAnalyticsInput) -> Dict[str, Any]:
        base = inp.base_currency or self.settings.base_currency
        policy = inp.policy or RankingPolicy(self.config.detection_policy)
        include_fees = self.config.detection_include_fees if inp.include_fees is None else inp.include_fees
        self.analytics, self.detected_base_currency = aggregate_with_detection(
            self.transactions, base, inp.variant, policy=policy, include_fees=include_fees
        )
        return {
            "baseCurrency": base,
            "detectedStablecoin": self.detected_base_currency.stablecoin if self.detected_base_currency else None,
        }

    def dashboard(self, now: Optional[datetime] = None) -> DashboardSummary:
        return compute_dashboard(
            self.transactions,
            self.settings.base_currency,
            self.settings.monthly_budget,
            self.settings.alert_threshold,
            now=now,
        )

    # ---------- reading ----------

    def get_transaction(self, tx_id: str) -> LedgerEntry:
        for tx in self.transactions:
            if tx.id == tx_id:
                return tx
        raise NotFound(f"Transaction with ID {tx_id} not found", {"id": tx_id})

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready snapshot (camelCase keys)."""

        def dump(model):
            return model.model_dump(mode="json", by_alias=True) if model is not None else None

        return {
            "transactions": [dump(tx) for tx in self.transactions],
            "metadata": dump(self.metadata),
            "settings": dump(self.settings),
            "analytics": dump(self.analytics),
            "detectedBaseCurrency": dump(self.detected_base_currency),
            "operations": [dump(op) for op in self.operations],
        }


def _validate(op_type: str, payload: Any) -> BaseModel:
    model_cls = INPUT_MODELS.get(op_type)
    if model_cls is None:
        raise InvalidFormat(f"Unknown operation type: {op_type}", {"type": op_type})
    if isinstance(payload, model_cls):
        return payload
    try:
        return model_cls.model_validate(payload)
    except ValidationError as e:
        raise InvalidFormat(
            f"Invalid input for {op_type}",
            {"errors": e.errors(include_url=False, include_context=False)},
        ) from e


def _raw_input(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json", by_alias=True)
    if isinstance(payload, Mapping):
        return dict(payload)
    return {}
