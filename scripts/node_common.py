from __future__ import annotations

from typing import Any, Optional


def to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def to_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def safe_error_text(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


def compact_text(value: Optional[str], max_chars: int = 220) -> str:
    if not value:
        return ""
    collapsed = " ".join(value.split())
    if len(collapsed) <= max_chars:
        return collapsed
    return collapsed[: max_chars - 3] + "..."
