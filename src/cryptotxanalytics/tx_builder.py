# tx_builder.py
"""
Turn parsed CSV rows (or explorer API records, or manual input) into ledger
entries.

Rules:
- Token for a value side: symbol column -> "(TOKEN)" hint in the matched
  header -> contract address -> "ETH".
- With a tracked address the result is a ClassifiedTransaction (INCOME /
  EXPENSE / NEUTRAL + signed amount); without one, a plain Transaction.
- Ids are supplied by the caller, one per row. Too few ids is a format error
  raised before anything is built.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .csv_normalizer import (
    ParsedRow,
    format_iso,
    parse_fee_amount,
    parse_positive_amount,
    parse_timestamp,
    resolve_row,
    to_iso_timestamp,
)
from .errors import InvalidFormat
from .schemas import (
    AddTransactionInput,
    ClassifiedTransaction,
    LedgerEntry,
    PriceInfo,
    TokenValue,
    Transaction,
    TxStatus,
    TxType,
)

logger = logging.getLogger(__name__)

DEFAULT_TOKEN = "ETH"
GAS_TOKEN = "ETH"
WEI_PER_ETH = Decimal(10) ** 18


@dataclass(frozen=True)
class ImportHints:
    """Per-row context the CSV itself does not carry."""

    tx_id: str
    default_timestamp: str
    tracked_address: Optional[str] = None
    default_fee_token: str = "USD"


def classify(
    from_address: Optional[str],
    to_address: Optional[str],
    tracked_address: str,
    amount_in: Optional[float],
    amount_out: Optional[float],
) -> Tuple[TxType, float]:
    """
    Direction relative to the tracked address (case-insensitive).

    Sent by the tracked address to someone else -> EXPENSE, negative amount.
    Received from someone else -> INCOME, positive amount.
    Self transfers and unrelated rows -> NEUTRAL, 0.
    """
    tracked = tracked_address.lower()
    is_from = (from_address or "").lower() == tracked
    is_to = (to_address or "").lower() == tracked

    if is_from and not is_to:
        return TxType.EXPENSE, -(amount_out or amount_in or 0.0)
    if is_to and not is_from:
        return TxType.INCOME, amount_in or amount_out or 0.0
    return TxType.NEUTRAL, 0.0


def resolve_status(raw: Optional[str]) -> TxStatus:
    value = (raw or "").strip()
    if value == "1" or value.lower() == "success":
        return TxStatus.SUCCESS
    return TxStatus.FAILED


def _side_token(symbol: str, header_hint: str, contract: str) -> str:
    return symbol or header_hint or contract or DEFAULT_TOKEN


def _price(raw: str) -> Optional[PriceInfo]:
    amount = parse_positive_amount(raw)
    return PriceInfo(amount=amount, currency="USD") if amount is not None else None


def build_transaction(row: ParsedRow, hints: ImportHints) -> LedgerEntry:
    """Build one ledger entry from a parsed CSV row."""
    found = resolve_row(row)
    cell = {name: f.value for name, f in found.items()}
    value_in_field, value_out_field, fee_field = found["value_in"], found["value_out"], found["txn_fee"]
    contract = cell["contract_address"]
    symbol = cell["token_symbol"]

    amount_in = parse_positive_amount(value_in_field.value)
    amount_out = parse_positive_amount(value_out_field.value)

    value_in = None
    if amount_in is not None:
        value_in = TokenValue(
            amount=amount_in, token=_side_token(symbol, value_in_field.token, contract)
        )
    value_out = None
    if amount_out is not None:
        value_out = TokenValue(
            amount=amount_out, token=_side_token(symbol, value_out_field.token, contract)
        )

    if fee_field.token:
        fee_token = fee_field.token
    elif "DAI" in fee_field.value.upper():
        fee_token = "DAI"
    else:
        fee_token = hints.default_fee_token

    fields: Dict[str, Any] = dict(
        id=hints.tx_id,
        tx_hash=cell["tx_hash"],
        block_number=cell["block_number"],
        timestamp=to_iso_timestamp(cell["timestamp"], hints.default_timestamp),
        from_address=cell["from_address"] or None,
        to_address=cell["to_address"] or None,
        contract_address=contract or None,
        value_in=value_in,
        value_out=value_out,
        txn_fee=TokenValue(amount=parse_fee_amount(fee_field.value), token=fee_token),
        historical_price=_price(cell["historical_price"]),
        current_value=_price(cell["current_value"]),
        status=resolve_status(cell["status"]),
        error_code=cell["error_code"] or None,
        method=cell["method"] or None,
    )

    if not hints.tracked_address:
        return Transaction(**fields)

    tx_type, signed = classify(
        fields["from_address"], fields["to_address"], hints.tracked_address, amount_in, amount_out
    )
    return ClassifiedTransaction(**fields, transaction_type=tx_type, signed_amount=signed)


def build_transactions(
    rows: List[ParsedRow],
    transaction_ids: List[str],
    *,
    default_timestamp: str,
    tracked_address: Optional[str] = None,
    default_fee_token: str = "USD",
) -> List[LedgerEntry]:
    """
    Build every row; row i gets transaction_ids[i].
    Raises InvalidFormat when fewer ids than rows are supplied.
    """
    if len(transaction_ids) < len(rows):
        raise InvalidFormat(
            f"Not enough transaction IDs provided: {len(transaction_ids)} for {len(rows)} rows",
            {"ids": len(transaction_ids), "rows": len(rows)},
        )
    built = [
        build_transaction(
            row,
            ImportHints(
                tx_id=transaction_ids[i],
                default_timestamp=default_timestamp,
                tracked_address=tracked_address,
                default_fee_token=default_fee_token,
            ),
        )
        for i, row in enumerate(rows)
    ]
    logger.debug("Built %d transactions from %d rows", len(built), len(rows))
    return built


def transaction_from_input(data: Union[AddTransactionInput, Mapping[str, Any]]) -> LedgerEntry:
    """
    Manual / API path: fields arrive already typed, no header matching.
    A supplied transaction_type yields a ClassifiedTransaction; a missing
    signed_amount is then derived from the value sides.
    """
    if not isinstance(data, AddTransactionInput):
        data = AddTransactionInput.model_validate(data)

    fields = data.model_dump(exclude={"transaction_type", "signed_amount"})
    if data.transaction_type is None:
        return Transaction(**fields)

    signed = data.signed_amount
    if signed is None:
        amount_in = data.value_in.amount if data.value_in else None
        amount_out = data.value_out.amount if data.value_out else None
        if data.transaction_type == TxType.EXPENSE:
            signed = -(amount_out or amount_in or 0.0)
        elif data.transaction_type == TxType.INCOME:
            signed = amount_in or amount_out or 0.0
        else:
            signed = 0.0
    return ClassifiedTransaction(**fields, transaction_type=data.transaction_type, signed_amount=signed)


def _to_decimal(raw: Any) -> Decimal:
    try:
        return Decimal(str(raw).strip()) if raw not in (None, "") else Decimal(0)
    except InvalidOperation:
        return Decimal(0)


def explorer_record_to_input(
    record: Mapping[str, Any], tracked_address: str, tx_id: str
) -> AddTransactionInput:
    """
    Convert an explorer API token-transfer record into manual-add input.

    - value is a raw integer string scaled by tokenDecimal (18 when missing/invalid)
    - timeStamp is unix seconds
    - only the sender pays gas: gasUsed * gasPrice / 1e18, in ETH
    - explorers only list successful transfers
    """
    tracked = tracked_address.lower()
    from_address = str(record.get("from") or "")
    to_address = str(record.get("to") or "")
    is_incoming = to_address.lower() == tracked
    is_outgoing = from_address.lower() == tracked

    try:
        decimals = int(str(record.get("tokenDecimal") or "").strip()) or 18
    except ValueError:
        decimals = 18
    amount = float(_to_decimal(record.get("value")) / (Decimal(10) ** decimals))

    gas_fee = float(_to_decimal(record.get("gasUsed")) * _to_decimal(record.get("gasPrice")) / WEI_PER_ETH)

    token = record.get("tokenSymbol") or record.get("tokenName") or "UNKNOWN"
    ts = parse_timestamp(str(record.get("timeStamp") or ""))

    tx_type, signed = classify(
        from_address,
        to_address,
        tracked_address,
        amount if is_incoming else None,
        amount if is_outgoing else None,
    )

    return AddTransactionInput(
        id=tx_id,
        tx_hash=str(record.get("hash") or ""),
        block_number=str(record.get("blockNumber") or ""),
        timestamp=format_iso(ts) if ts else str(record.get("timeStamp") or ""),
        from_address=from_address or None,
        to_address=to_address or None,
        contract_address=record.get("contractAddress") or None,
        value_in=TokenValue(amount=amount, token=token) if is_incoming and amount > 0 else None,
        value_out=TokenValue(amount=amount, token=token) if is_outgoing and amount > 0 else None,
        txn_fee=TokenValue(amount=gas_fee if is_outgoing else 0.0, token=GAS_TOKEN),
        status=TxStatus.SUCCESS,
        method=record.get("functionName") or None,
        transaction_type=tx_type,
        signed_amount=signed,
    )
