# categories.py
"""
Spending categories for card payments.

Known merchant addresses win; otherwise the first category whose keyword
appears in the description (the method name for on-chain rows) is used.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class CategoryConfig:
    label: str
    keywords: Tuple[str, ...] = ()


OTHER = "other"

# Insertion order is the match order.
CATEGORY_CONFIG: Dict[str, CategoryConfig] = {
    "food": CategoryConfig(
        "Food & Dining",
        ("restaurant", "cafe", "food", "grocery", "supermarket", "delivery", "uber eats", "deliveroo"),
    ),
    "transport": CategoryConfig(
        "Transport",
        ("uber", "lyft", "taxi", "bus", "train", "metro", "fuel", "parking", "transport"),
    ),
    "shopping": CategoryConfig(
        "Shopping",
        ("amazon", "shop", "store", "retail", "clothing", "electronics", "market"),
    ),
    "entertainment": CategoryConfig(
        "Entertainment",
        ("netflix", "spotify", "cinema", "movie", "game", "entertainment", "subscription"),
    ),
    "utilities": CategoryConfig(
        "Utilities",
        ("electricity", "water", "gas", "internet", "phone", "bill", "utility"),
    ),
    "travel": CategoryConfig(
        "Travel",
        ("hotel", "flight", "booking", "airbnb", "travel", "vacation", "trip"),
    ),
    "health": CategoryConfig(
        "Health",
        ("pharmacy", "doctor", "hospital", "medical", "health", "fitness", "gym"),
    ),
    "education": CategoryConfig(
        "Education",
        ("course", "school", "university", "book", "education", "learning", "tutorial"),
    ),
    "income": CategoryConfig(
        "Income",
        ("salary", "payment received", "refund", "deposit", "income"),
    ),
    OTHER: CategoryConfig("Other"),
}

MERCHANT_CATEGORIES: Dict[str, str] = {
    "0x4822521e6135cd2599199c83ea35179229a172ee": "shopping",  # Gnosis Pay
}


def detect_category(to_address: Optional[str], description: Optional[str] = None) -> str:
    if to_address and to_address.lower() in MERCHANT_CATEGORIES:
        return MERCHANT_CATEGORIES[to_address.lower()]

    if description:
        desc = description.lower()
        for name, config in CATEGORY_CONFIG.items():
            if any(kw in desc for kw in config.keywords):
                return name
    return OTHER


def category_label(category: str) -> str:
    config = CATEGORY_CONFIG.get(category)
    return config.label if config else CATEGORY_CONFIG[OTHER].label
