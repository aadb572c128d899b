# app.py
"""
Main FastAPI application.

This file wires together:
- the web server (FastAPI + Uvicorn)
- the in-memory LedgerDocument (one per process)
- CSV / explorer imports, transaction edits, currency settings, analytics
- CSV / JSON / PDF exports

Endpoints:
  GET    /health                       → liveness check
  GET    /version                      → app version metadata
  POST   /upload/csv                   → parse CSV and PREVIEW (no ledger writes)
  POST   /import/csv                   → parse CSV and merge into the ledger
  POST   /import/explorer              → merge explorer API records
  GET    /transactions                 → paginated ledger
  POST   /transactions                 → add one transaction
  PATCH  /transactions/{tx_id}         → partial update
  DELETE /transactions/{tx_id}         → delete
  POST   /transactions/{tx_id}/convert → fill converted / USD values
  GET    /settings, PUT /settings/base-currency, PUT /settings/budget
  POST   /fx/rates                     → store exchange rates
  POST   /analytics/calculate, GET /analytics, GET /analytics/dashboard
  GET    /analytics/base-currency      → detector report (no state change)
  GET    /operations                   → applied operations (with errors)
  GET    /export/transactions.csv|.json, /export/summary.pdf

  Command to start the server: uvicorn cryptotxanalytics.app:app --reload
"""

import logging
import uuid
from io import BytesIO
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, File, Form, HTTPException, Query, Response, UploadFile
from fastapi.responses import StreamingResponse

from .__about__ import __title__, __version__
from .analytics_engine import aggregate
from .base_currency import base_currency_report, format_base_currency_display
from .config import get_config, setup_logging
from .csv_normalizer import parse_import
from .document import (
    ADD_TRANSACTION,
    CALCULATE_ANALYTICS,
    CONVERT_TRANSACTION_VALUES,
    DELETE_TRANSACTION,
    IMPORT_CSV_TRANSACTIONS,
    IMPORT_EXPLORER_TRANSACTIONS,
    SET_BASE_CURRENCY,
    SET_BUDGET,
    UPDATE_EXCHANGE_RATES,
    UPDATE_TRANSACTION,
    LedgerDocument,
)
from .errors import LedgerError
from .export_service import export_to_csv, export_to_json
from .report_pdf import build_summary_pdf
from .schemas import CSVPreviewResponse, ImportResponse, OperationRecord, RankingPolicy

logger = logging.getLogger(__name__)

app = FastAPI(title=__title__, version=__version__)

document = LedgerDocument()


def reset_document() -> LedgerDocument:
    """Start over with an empty ledger (tests, manual resets)."""
    global document
    document = LedgerDocument(config=get_config())
    return document


def _apply(op_type: str, payload: Any) -> OperationRecord:
    """Run an operation; structural errors become HTTP errors with a structured detail."""
    try:
        return document.apply(op_type, payload)
    except LedgerError as err:
        raise HTTPException(status_code=err.status_code, detail=err.to_dict())


def _new_ids(n: int) -> List[str]:
    return [str(uuid.uuid4()) for _ in range(n)]


async def _read_csv_upload(file: UploadFile) -> tuple[str, str]:
    filename = file.filename or ""
    if not filename.lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Please upload a .csv file")

    data = await file.read()
    if len(data) == 0:
        raise HTTPException(status_code=400, detail="Empty file")
    return filename, data.decode("utf-8-sig", errors="replace")


@app.on_event("startup")
def on_startup() -> None:
    """
    Runs when the server starts.
    - Configures logging from CRYPTO_TXANALYTICS_LOG_LEVEL.
    """
    setup_logging()
    logger.info("%s %s started", __title__, __version__)


# -----------------------------------------------------------------------------
# Health + version endpoints (simple sanity checks)
# -----------------------------------------------------------------------------
@app.get("/health")
def health() -> Dict[str, str]:
    """Quick liveness check for monitoring or manual testing."""
    return {"status": "ok"}


@app.get("/version")
def version() -> Dict[str, str]:
    """Show the backend name and version (useful to confirm deployments)."""
    return {"name": __title__, "version": __version__}


# -----------------------------------------------------------------------------
# Import endpoints
# -----------------------------------------------------------------------------
@app.post("/upload/csv", response_model=CSVPreviewResponse)
async def upload_csv(file: UploadFile = File(...)) -> Dict[str, Any]:
    """
    Accept a CSV upload and return a PREVIEW of the parsed rows (no ledger writes).

    Why preview? Users can check how headers were read before importing.
    """
    filename, text = await _read_csv_upload(file)
    try:
        rows = parse_import(text)
    except LedgerError as err:
        raise HTTPException(status_code=err.status_code, detail=err.to_dict())
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Parser error: {e!s}")

    return {
        "filename": filename,
        "headers": list(rows[0].keys()) if rows else [],
        "total_rows": len(rows),
        "preview_first_5": rows[:5],
    }


@app.post("/import/csv", response_model=ImportResponse)
async def import_csv(
    file: UploadFile = File(...),
    tracked_address: Optional[str] = Form(None),
) -> Dict[str, Any]:
    """
    Parse an explorer CSV export and merge it into the ledger.
    Duplicate hashes and excluded contracts are skipped and counted.
    """
    filename, text = await _read_csv_upload(file)
    try:
        rows = parse_import(text)
    except LedgerError as err:
        raise HTTPException(status_code=err.status_code, detail=err.to_dict())

    record = _apply(
        IMPORT_CSV_TRANSACTIONS,
        {
            "csvData": text,
            "transactionIds": _new_ids(len(rows)),
            "trackedAddress": tracked_address or None,
        },
    )
    return _import_response(filename, record)


@app.post("/import/explorer", response_model=ImportResponse)
def import_explorer(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """
    Merge explorer API token-transfer records.
    Body: {"trackedAddress": "0x..", "records": [...], "transactionIds": [...] (optional)}
    """
    records = payload.get("records") or []
    body = {**payload, "transactionIds": payload.get("transactionIds") or _new_ids(len(records))}
    record = _apply(IMPORT_EXPLORER_TRANSACTIONS, body)
    return _import_response(None, record)


def _import_response(filename: Optional[str], record: OperationRecord) -> Dict[str, Any]:
    result = record.result or {}
    return {
        "filename": filename,
        "inserted": result.get("inserted", 0),
        "skipped_duplicates": result.get("skippedDuplicates", 0),
        "skipped_excluded": result.get("skippedExcluded", 0),
        "total_transactions": result.get("totalTransactions", len(document.transactions)),
    }


# -----------------------------------------------------------------------------
# Transactions
# -----------------------------------------------------------------------------
@app.get("/transactions")
def list_transactions(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    token: str | None = None,
    sort: str = Query("timestamp_desc", pattern="^(timestamp_asc|timestamp_desc)$"),
):
    """
    Paginated list of ledger transactions (camelCase fields).
    `token` filters on either value side.
    """
    items = list(document.transactions)
    if token:
        items = [
            tx
            for tx in items
            if (tx.value_in and tx.value_in.token == token) or (tx.value_out and tx.value_out.token == token)
        ]
    items.sort(key=lambda tx: tx.timestamp, reverse=(sort == "timestamp_desc"))

    total = len(items)
    start = (page - 1) * page_size
    data = [tx.model_dump(mode="json", by_alias=True) for tx in items[start:start + page_size]]
    return {
        "meta": {"page": page, "page_size": page_size, "total": total},
        "items": data,
    }


@app.post("/transactions")
def add_transaction(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """Add one transaction. Excluded contracts and known hashes are skipped silently."""
    record = _apply(ADD_TRANSACTION, payload)
    return record.result or {}


@app.patch("/transactions/{tx_id}")
def patch_transaction(tx_id: str, payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """Partial update: only the fields sent are changed; null clears a field."""
    _apply(UPDATE_TRANSACTION, {**payload, "id": tx_id})
    return document.get_transaction(tx_id).model_dump(mode="json", by_alias=True)


@app.delete("/transactions/{tx_id}")
def remove_transaction(tx_id: str) -> Dict[str, Any]:
    record = _apply(DELETE_TRANSACTION, {"id": tx_id})
    return record.result or {}


@app.post("/transactions/{tx_id}/convert")
def convert_transaction_values(tx_id: str, base_currency: str = Query(..., min_length=1)) -> Dict[str, Any]:
    """Fill converted_value / usd_value from the stored exchange rates."""
    _apply(CONVERT_TRANSACTION_VALUES, {"transactionId": tx_id, "baseCurrency": base_currency})
    return document.get_transaction(tx_id).model_dump(mode="json", by_alias=True)


# -----------------------------------------------------------------------------
# Settings
# -----------------------------------------------------------------------------
@app.get("/settings")
def get_settings() -> Dict[str, Any]:
    return document.settings.model_dump(mode="json", by_alias=True)


@app.put("/settings/base-currency")
def set_base_currency(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    _apply(SET_BASE_CURRENCY, payload)
    return get_settings()


@app.put("/settings/budget")
def set_budget(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    _apply(SET_BUDGET, payload)
    return get_settings()


@app.post("/fx/rates")
def update_exchange_rates(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """Store exchange rates; the newest entry per currency pair wins."""
    _apply(UPDATE_EXCHANGE_RATES, payload)
    return get_settings()


# -----------------------------------------------------------------------------
# Analytics
# -----------------------------------------------------------------------------
@app.post("/analytics/calculate")
def calculate_analytics(payload: Optional[Dict[str, Any]] = Body(None)) -> Dict[str, Any]:
    """Recompute analytics (and the detected base currency) from the ledger."""
    _apply(CALCULATE_ANALYTICS, payload or {})
    return get_analytics()


@app.get("/analytics")
def get_analytics() -> Dict[str, Any]:
    detected = document.detected_base_currency
    return {
        "analytics": document.analytics.model_dump(mode="json", by_alias=True),
        "detectedBaseCurrency": detected.model_dump(mode="json", by_alias=True) if detected else None,
        "display": format_base_currency_display(detected),
    }


@app.get("/analytics/base-currency")
def detect_base_currency_report(policy: RankingPolicy | None = None, include_fees: bool | None = None) -> Dict[str, Any]:
    """Run the detector without touching the stored analytics."""
    config = document.config
    report = base_currency_report(
        document.transactions,
        policy=policy or RankingPolicy(config.detection_policy),
        include_fees=config.detection_include_fees if include_fees is None else include_fees,
    )
    return report.model_dump(mode="json", by_alias=True)


@app.get("/analytics/dashboard")
def dashboard() -> Dict[str, Any]:
    return document.dashboard().model_dump(mode="json", by_alias=True)


@app.get("/operations")
def list_operations(limit: int = Query(100, ge=1, le=1000)) -> List[Dict[str, Any]]:
    return [op.model_dump(mode="json", by_alias=True) for op in document.operations[-limit:]]


# -----------------------------------------------------------------------------
# Exports
# -----------------------------------------------------------------------------
@app.get("/export/transactions.csv", summary="Download the ledger as CSV")
def export_transactions_csv() -> Response:
    csv_bytes = export_to_csv(document.transactions).encode("utf-8")
    headers = {"Content-Disposition": 'attachment; filename="transactions.csv"'}
    return Response(content=csv_bytes, media_type="text/csv; charset=utf-8", headers=headers)


@app.get("/export/transactions.json", summary="Download the ledger as JSON")
def export_transactions_json() -> Response:
    headers = {"Content-Disposition": 'attachment; filename="transactions.json"'}
    return Response(content=export_to_json(document.transactions), media_type="application/json", headers=headers)


@app.get("/export/summary.pdf", summary="Download a PDF spending summary")
def export_summary_pdf() -> StreamingResponse:
    summary = document.dashboard()
    analytics = aggregate(document.transactions, document.settings.base_currency)
    pdf_bytes = build_summary_pdf(document.transactions, summary, analytics)
    return StreamingResponse(
        BytesIO(pdf_bytes),
        media_type="application/pdf",
        headers={"Content-Disposition": 'attachment; filename="summary.pdf"'},
    )
