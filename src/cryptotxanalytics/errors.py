# errors.py
"""
Structural errors raised by the ledger operations.

Each error can be raised (normal call sites) or turned into a plain dict with
`to_dict()` and stored on an operation record ("error as data"). Per-row
parsing problems are never errors: they degrade to None/defaults.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class LedgerError(Exception):
    code = "LEDGER_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": dict(self.details)}


class InvalidFormat(LedgerError):
    """Malformed import input: missing header/data rows, too few transaction ids."""

    code = "INVALID_FORMAT"


class NotFound(LedgerError):
    """Update/delete referencing an id that is not in the ledger."""

    code = "NOT_FOUND"
    status_code = 404


class EmptyBatch(LedgerError):
    """Bulk import invoked with zero transactions."""

    code = "EMPTY_BATCH"
