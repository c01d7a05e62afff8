"""Best-effort JSON recovery from model responses."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from invoice_ledger.core.errors import MalformedModelOutputError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def decode_model_json(text: str) -> dict[str, Any]:
    """Decode the JSON object embedded in *text*.

    Strategy:
    1. Drop ```` ```json ```` / ```` ``` ```` fence markers.
    2. Attempt ``json.loads`` on the whole remainder (fast path).
    3. Fall back to the greedy substring from the first ``{`` to the last ``}``.

    Raises ``MalformedModelOutputError`` when no JSON object can be recovered.
    """
    if not text or not text.strip():
        raise MalformedModelOutputError("Model returned an empty response", raw_text=text or "")

    stripped = strip_code_fences(text)

    try:
        parsed = json.loads(stripped)
    except (json.JSONDecodeError, ValueError):
        parsed = None

    if parsed is None:
        start = stripped.find("{")
        end = stripped.rfind("}")
        if start == -1 or end <= start:
            raise MalformedModelOutputError("No JSON object found in model response", raw_text=text)
        try:
            parsed = json.loads(stripped[start : end + 1])
        except (json.JSONDecodeError, ValueError) as exc:
            logger.warning("Could not decode model JSON: %s", exc)
            raise MalformedModelOutputError(f"Invalid JSON in model response: {exc}", raw_text=text) from exc

    if not isinstance(parsed, dict):
        raise MalformedModelOutputError(
            f"Expected a JSON object, got {type(parsed).__name__}",
            raw_text=text,
        )
    return parsed
