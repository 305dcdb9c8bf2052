"""Newline-delimited JSON encoding for record batches."""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Iterable

from .records import Record


logger = logging.getLogger(__name__)

CIRCULAR = "[Circular]"
UNSERIALIZABLE = "[unable to serialize]"


def _stringify(value: Any) -> str:
    try:
        return str(value)
    except Exception:
        return UNSERIALIZABLE


def _decycle(value: Any, ancestors: set[int]) -> Any:
    """Copy containers, replacing references back to an ancestor."""
    if isinstance(value, float) and not math.isfinite(value):
        # No JSON form for NaN/Infinity
        return None
    if isinstance(value, (dict, list, tuple, set, frozenset)):
        marker = id(value)
        if marker in ancestors:
            return CIRCULAR
        ancestors.add(marker)
        try:
            if isinstance(value, dict):
                return {
                    k if isinstance(k, (str, int, float, bool)) or k is None else _stringify(k):
                        _decycle(v, ancestors)
                    for k, v in value.items()
                }
            return [_decycle(item, ancestors) for item in value]
        finally:
            ancestors.discard(marker)
    return value


def safe_dumps(document: Any) -> str:
    """
    Serialize ``document`` to compact JSON without ever raising.

    Cycles become ``"[Circular]"``, unknown objects are stringified and
    non-finite floats become ``null``. A document that still cannot be
    encoded is sent as its string form, or as a placeholder when even
    that fails.
    """
    try:
        return json.dumps(
            _decycle(document, set()),
            default=_stringify,
            allow_nan=False,
            separators=(",", ":"),
        )
    except Exception as e:
        logger.debug(f"Falling back to string form for unserializable document: {e}")

    try:
        return json.dumps(str(document))
    except Exception:
        return json.dumps(UNSERIALIZABLE)


def encode_batch(records: Iterable[Record]) -> str:
    """One JSON document per record, joined with newlines."""
    return "\n".join(safe_dumps(record.to_dict()) for record in records)
