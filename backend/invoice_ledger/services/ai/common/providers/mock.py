"""Mock provider: deterministic responses for tests and offline development."""

from __future__ import annotations

import hashlib
import math
import time

from .base import Attachment, BaseProvider, EmbeddingResult, ProviderResult

DEFAULT_MOCK_TEXT = '{"mock": true}'


class MockProvider(BaseProvider):
    name = "mock"

    def __init__(self, text: str = DEFAULT_MOCK_TEXT, dimensions: int = 768) -> None:
        self._text = text
        self._dimensions = dimensions

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
        t0 = time.monotonic()
        text = self._text
        elapsed = (time.monotonic() - t0) * 1000
        return ProviderResult(
            raw_text=text,
            model=model or "mock-v1",
            provider=self.name,
            prompt_tokens=len(prompt.split()),
            completion_tokens=len(text.split()),
            latency_ms=round(elapsed, 2),
        )

    async def embed(
        self,
        text: str,
        *,
        model: str = "",
        timeout_seconds: float = 30.0,
    ) -> EmbeddingResult:
        # Expand a sha256 digest into a unit vector; equal texts map to equal vectors.
        values: list[float] = []
        counter = 0
        while len(values) < self._dimensions:
            digest = hashlib.sha256(f"{counter}:{text}".encode()).digest()
            values.extend((byte - 127.5) / 127.5 for byte in digest)
            counter += 1
        values = values[: self._dimensions]
        norm = math.sqrt(sum(v * v for v in values)) or 1.0
        return EmbeddingResult(
            vector=[v / norm for v in values],
            model=model or "mock-embedding-v1",
            provider=self.name,
        )
