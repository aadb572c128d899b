# config.py
"""
Runtime configuration read from environment variables.

Values come from the process environment, optionally seeded from a `.env`
file at the project root (python-dotenv). Everything has a sensible default
so tests and local runs need no setup.

  CRYPTO_TXANALYTICS_EXCLUDED_CONTRACTS     comma separated contract addresses
  CRYPTO_TXANALYTICS_DETECTION_POLICY       COUNT_FIRST | VOLUME_FIRST
  CRYPTO_TXANALYTICS_DETECTION_INCLUDE_FEES true/false
  CRYPTO_TXANALYTICS_BASE_CURRENCY          default settings.baseCurrency
  CRYPTO_TXANALYTICS_FEE_TOKEN              fee token when the CSV gives no hint
  CRYPTO_TXANALYTICS_ALERT_THRESHOLD        budget alert threshold in percent
  CRYPTO_TXANALYTICS_LOG_LEVEL              DEBUG, INFO, WARNING, ...
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

# project_root/.env  (src/cryptotxanalytics/config.py -> parents[2] == project root)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Gnosis Pay spender contract: its transfers mirror card payments already in the ledger.
DEFAULT_EXCLUDED_CONTRACTS = ("0x5cb9073902f2035222b9749f8fb0c9bfe5527108",)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AppConfig:
    excluded_contracts: frozenset[str]
    detection_policy: str = "VOLUME_FIRST"
    detection_include_fees: bool = False
    base_currency: str = "USD"
    fee_token: str = "USD"
    alert_threshold: float = 80.0
    log_level: str = "WARNING"


def _split_addresses(raw: Optional[str]) -> frozenset[str]:
    if raw is None:
        return frozenset(a.lower() for a in DEFAULT_EXCLUDED_CONTRACTS)
    return frozenset(part.strip().lower() for part in raw.split(",") if part.strip())


def _as_float(raw: Optional[str], default: float) -> float:
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger(__name__).warning("Ignoring non-numeric value %r, using %s", raw, default)
        return default


def load_config(env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """
    Build an AppConfig from `env` (defaults to os.environ).
    Passing a dict makes the function easy to test.
    """
    if env is None:
        load_dotenv(PROJECT_ROOT / ".env")
        env = os.environ

    policy = env.get("CRYPTO_TXANALYTICS_DETECTION_POLICY", "VOLUME_FIRST").strip().upper()
    if policy not in {"COUNT_FIRST", "VOLUME_FIRST"}:
        logging.getLogger(__name__).warning("Unknown detection policy %r, using VOLUME_FIRST", policy)
        policy = "VOLUME_FIRST"

    return AppConfig(
        excluded_contracts=_split_addresses(env.get("CRYPTO_TXANALYTICS_EXCLUDED_CONTRACTS")),
        detection_policy=policy,
        detection_include_fees=env.get("CRYPTO_TXANALYTICS_DETECTION_INCLUDE_FEES", "false").strip().lower()
        in _TRUE_VALUES,
        base_currency=env.get("CRYPTO_TXANALYTICS_BASE_CURRENCY", "USD").strip() or "USD",
        fee_token=env.get("CRYPTO_TXANALYTICS_FEE_TOKEN", "USD").strip() or "USD",
        alert_threshold=_as_float(env.get("CRYPTO_TXANALYTICS_ALERT_THRESHOLD"), 80.0),
        log_level=env.get("CRYPTO_TXANALYTICS_LOG_LEVEL", "WARNING").strip().upper() or "WARNING",
    )


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    return load_config()


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging once (API startup, scripts)."""
    level_name = (level or get_config().log_level).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.WARNING), format=LOG_FORMAT)
