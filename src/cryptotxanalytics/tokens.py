"""Token symbol normalization for the Gnosis Pay stablecoins."""

from __future__ import annotations

from typing import Optional

USDC = "USDC"
EURE = "EURe"
GBPE = "GBPe"

# Order matters: it is the stable order used when ranking stablecoins.
STABLECOINS = (USDC, EURE, GBPE)

CURRENCY_CODES = {USDC: "USD", EURE: "EUR", GBPE: "GBP"}

_ALIASES = {
    "USDC": USDC,
    "USD": USDC,
    "EUR": EURE,
    "EURE": EURE,
    "GBP": GBPE,
    "GBPE": GBPE,
}


def normalize_token(token: Optional[str]) -> str:
    """
    Map free-text token symbols to their canonical display form.

    "usd" -> "USDC", " EURE " -> "EURe", "gbp" -> "GBPe". Anything else is
    returned trimmed, in its original case. None/empty -> "".
    """
    if not token:
        return ""
    trimmed = token.strip()
    return _ALIASES.get(trimmed.upper(), trimmed)


def is_supported_stablecoin(token: Optional[str]) -> bool:
    return normalize_token(token) in STABLECOINS


def currency_code(stablecoin: str) -> str:
    """Fiat code for a canonical stablecoin symbol (USDC -> USD)."""
    return CURRENCY_CODES[normalize_token(stablecoin)]
