# export_service.py
"""
Ledger exports for download: a flat CSV for spreadsheets and a JSON dump.

Dates are rendered in UTC, day first (15/01/2024, 10:30:00).
"""

from __future__ import annotations

import csv
import io
import json
from typing import Any, Dict, List, Optional

from .categories import OTHER
from .csv_normalizer import parse_timestamp
from .schemas import LedgerEntry, utc_now_iso

CSV_HEADERS = [
    "Date",
    "Time",
    "Transaction Hash",
    "From",
    "To",
    "Category",
    "Type",
    "Amount",
    "Token",
    "Fee",
    "Fee Token",
    "Status",
]


def _fmt_number(x: Optional[float]) -> str:
    if x is None:
        return "0"
    # 25.0 -> "25", 25.5 -> "25.5"
    return f"{x:.10f}".rstrip("0").rstrip(".") or "0"


def export_row(tx: LedgerEntry) -> List[str]:
    dt = parse_timestamp(tx.timestamp)
    is_outgoing = tx.value_out is not None and tx.value_out.amount > 0
    side = tx.value_out if is_outgoing else tx.value_in
    return [
        dt.strftime("%d/%m/%Y") if dt else "",
        dt.strftime("%H:%M:%S") if dt else "",
        tx.tx_hash,
        tx.from_address or "",
        tx.to_address or "",
        tx.category or OTHER,
        "Outgoing" if is_outgoing else "Incoming",
        _fmt_number(side.amount if side else None),
        side.token if side else "",
        _fmt_number(tx.txn_fee.amount),
        tx.txn_fee.token,
        tx.status.value,
    ]


def export_to_csv(transactions: List[LedgerEntry]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for tx in transactions:
        writer.writerow(export_row(tx))
    return buf.getvalue()


def export_to_json(transactions: List[LedgerEntry], exported_at: Optional[str] = None) -> str:
    def entry(tx: LedgerEntry) -> Dict[str, Any]:
        data = tx.model_dump(
            mode="json",
            by_alias=True,
            include={"id", "tx_hash", "timestamp", "from_address", "to_address", "value_in", "value_out", "txn_fee", "status"},
        )
        data["category"] = tx.category or OTHER
        return data

    payload = {
        "exportedAt": exported_at or utc_now_iso(),
        "transactionCount": len(transactions),
        "transactions": [entry(tx) for tx in transactions],
    }
    return json.dumps(payload, indent=2)
