"""Helpers for safe HTTP logging."""

from __future__ import annotations

import json
from typing import Any


def truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[: max_chars - 3] + "..."


def preview_json(data: Any, max_chars: int) -> str:
    try:
        raw = json.dumps(data, ensure_ascii=True, default=str)
    except TypeError:
        raw = str(data)
    return truncate(raw, max_chars)
