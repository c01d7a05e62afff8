"""Abstract base for all AI providers."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Attachment:
    """Binary document sent alongside a prompt (e.g. an invoice PDF)."""

    data: bytes
    mime_type: str = "application/pdf"


@dataclass(frozen=True)
class ProviderResult:
    """Immutable result returned by every provider."""

    raw_text: str
    model: str
    provider: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0


@dataclass(frozen=True)
class EmbeddingResult:
    vector: list[float] = field(default_factory=list)
    model: str = ""
    provider: str = ""
    latency_ms: float = 0.0


class BaseProvider(abc.ABC):
    """Contract that every AI provider must implement."""

    name: str = "base"

    @abc.abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        attachments: tuple[Attachment, ...] = (),
        model: str = "",
        temperature: float = 0.3,
        max_tokens: int = 1024,
        timeout_seconds: float = 30.0,
    ) -> ProviderResult:
        """Send *prompt* (plus optional attachments) and return a ``ProviderResult``."""

    @abc.abstractmethod
    async def embed(
        self,
        text: str,
        *,
        model: str = "",
        timeout_seconds: float = 30.0,
    ) -> EmbeddingResult:
        """Return the embedding vector for *text*."""
