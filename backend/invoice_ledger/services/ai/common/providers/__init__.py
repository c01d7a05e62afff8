"""Provider factory: returns the configured provider instance."""

from __future__ import annotations

import logging

from invoice_ledger.core.config import get_settings
from invoice_ledger.core.errors import AIConfigurationError

from .base import Attachment, BaseProvider, EmbeddingResult, ProviderResult
from .mock import MockProvider

logger = logging.getLogger(__name__)

__all__ = [
    "get_provider",
    "Attachment",
    "BaseProvider",
    "EmbeddingResult",
    "ProviderResult",
    "MockProvider",
]


def get_provider(provider_name: str) -> BaseProvider:
    """Return a provider instance for *provider_name*.

    Providers are built per call so that a missing credential only affects
    the request that needs it. Selecting Gemini without ``GEMINI_API_KEY``
    raises ``AIConfigurationError``; callers decide how to degrade.
    """
    settings = get_settings()
    name = provider_name.lower().strip()

    if name not in settings.ai_allowed_providers:
        raise AIConfigurationError(f"AI provider {name!r} is not in the allowlist")

    if name == "mock":
        return MockProvider(dimensions=settings.ai_embedding_dimensions)

    if name == "gemini":
        if not settings.gemini_configured:
            raise AIConfigurationError("GEMINI_API_KEY is not configured")
        from .gemini import GeminiProvider

        return GeminiProvider(api_key=settings.gemini_api_key.strip())

    raise AIConfigurationError(f"Unknown AI provider {name!r}")
