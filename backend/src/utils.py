"""Utility helpers for Just Choose Already."""

from __future__ import annotations

import re
from typing import Any, Optional

METERS_PER_MILE = 1609.34


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    if not value:
        return "unset"
    if len(value) <= visible * 2:
        return "*" * len(value)
    return f"{value[:visible]}...{value[-visible:]}"


def miles_to_meters(miles: float) -> float:
    return miles * METERS_PER_MILE


def normalize_text(text: Optional[str]) -> str:
    """Lowercase, trim and collapse inner whitespace."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text.strip().lower())


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False
