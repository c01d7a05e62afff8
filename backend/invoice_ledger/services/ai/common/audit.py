"""One audit_logs row per model call, keyed by the ledger record it concerns."""

from __future__ import annotations

import hashlib
import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session

from invoice_ledger.core.config import get_settings
from invoice_ledger.services.audit import create_audit_log

from .providers.base import ProviderResult

logger = logging.getLogger(__name__)

# scope -> (audit action, entity_type of the record the call is about)
SCOPE_ACTIONS: dict[str, tuple[str, str]] = {
    "invoice_extract": ("AI_INVOICE_EXTRACTED", "invoice"),
    "classification": ("AI_EXPENSE_CLASSIFIED", "classifications"),
    "query": ("AI_QUERY_TRANSLATED", "question"),
    "synthesis": ("AI_ANSWER_SYNTHESISED", "question"),
    "retrieval": ("AI_ANSWER_SYNTHESISED", "question"),
    "risk": ("AI_RISK_ANALYSED", "movements"),
}


def _fingerprint(text: str) -> str:
    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()


def log_ai_run(
    db: Session,
    *,
    scope: str,
    provider_result: ProviderResult,
    prompt_text: str,
    parsed_output: dict[str, Any] | None,
    entity_id: str | None = None,
    extra_meta: dict[str, Any] | None = None,
) -> None:
    """Add the audit row for one model call; committing is left to the caller.

    Prompt and response are stored as sha256 fingerprints. The raw text is
    kept only with ``AI_DEBUG_STORE_RAW=true``.
    """
    action, entity_type = SCOPE_ACTIONS.get(scope, ("AI_RUN", "ai"))

    metadata: dict[str, Any] = {
        "scope": scope,
        "provider": provider_result.provider,
        "model": provider_result.model,
        "prompt_tokens": provider_result.prompt_tokens,
        "completion_tokens": provider_result.completion_tokens,
        "total_tokens": provider_result.prompt_tokens + provider_result.completion_tokens,
        "latency_ms": provider_result.latency_ms,
        "prompt_hash": _fingerprint(prompt_text),
        "response_hash": _fingerprint(provider_result.raw_text),
    }
    if get_settings().ai_debug_store_raw:
        metadata.update(prompt_raw=prompt_text, response_raw=provider_result.raw_text)
    metadata.update(extra_meta or {})

    logger.debug("AI %s call on %s (%s ms)", scope, provider_result.model, provider_result.latency_ms)
    create_audit_log(
        db,
        entity_type=entity_type,
        entity_id=entity_id or str(uuid.uuid4()),
        action=action,
        old_value=None,
        new_value=parsed_output,
        actor_type="SYSTEM",
        metadata=metadata,
    )
