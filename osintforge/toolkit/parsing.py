"""Helpers for pulling a JSON payload out of noisy tool output."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

_CLOSERS = {"{": "}", "[": "]"}


def extract_json(raw: str, openers: str = "{") -> Optional[Any]:
    """
    Return the JSON value spanning from the first opener to the last matching
    closer in ``raw``, or None if there is no such span or it does not parse.

    Tools print banners and progress lines around their JSON; this slices
    them off without trying to understand them.
    """
    positions = [(raw.find(o), o) for o in openers if raw.find(o) != -1]
    if not positions:
        return None
    start, opener = min(positions)
    end = raw.rfind(_CLOSERS[opener])
    if end <= start:
        return None
    try:
        return json.loads(raw[start:end + 1])
    except json.JSONDecodeError as exc:
        logger.debug(f"[Parser] Embedded JSON did not decode: {exc}")
        return None


def pick(data: dict, *keys: str, default: Any = None) -> Any:
    """First non-None value among alternate key spellings."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default
