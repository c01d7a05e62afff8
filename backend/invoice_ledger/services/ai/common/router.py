"""AI Router: resolves provider + model + call parameters for a scope."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from invoice_ledger.core.config import get_settings

from .providers import BaseProvider, get_provider

logger = logging.getLogger(__name__)

SCOPES = (
    "invoice_extract",
    "classification",
    "query",
    "synthesis",
    "retrieval",
    "embedding",
    "risk",
)

# Grounded answers over retrieved chunks run colder than the other scopes.
SCOPE_TEMPERATURE_OVERRIDES: dict[str, float] = {
    "retrieval": 0.1,
}


@dataclass(frozen=True)
class ResolvedConfig:
    """Final resolved provider + model for one call."""

    provider: BaseProvider
    model: str
    temperature: float
    max_tokens: int
    timeout_seconds: float
    max_retries: int
    initial_backoff_seconds: float


def resolve(scope: str, *, provider: BaseProvider | None = None) -> ResolvedConfig:
    """Resolve provider + model for a given *scope*.

    * ``embedding`` uses ``AI_EMBEDDING_MODEL``.
    * ``query`` uses ``AI_QUERY_MODEL``.
    * every other scope uses ``AI_TEXT_MODEL``.

    An explicit *provider* skips the factory (used by tests and batch jobs
    that share one instance). Raises ``AIConfigurationError`` when the
    configured provider cannot be built.
    """
    settings = get_settings()

    if scope not in SCOPES:
        logger.warning("Unknown AI scope %r; using text model defaults", scope)

    if scope == "embedding":
        model = settings.ai_embedding_model
    elif scope == "query":
        model = settings.ai_query_model
    else:
        model = settings.ai_text_model

    if provider is None:
        provider = get_provider(settings.ai_provider)

    return ResolvedConfig(
        provider=provider,
        model=model,
        temperature=SCOPE_TEMPERATURE_OVERRIDES.get(scope, settings.ai_temperature),
        max_tokens=settings.ai_max_tokens,
        timeout_seconds=settings.ai_timeout_seconds,
        max_retries=settings.ai_max_retries,
        initial_backoff_seconds=settings.ai_initial_backoff_seconds,
    )
