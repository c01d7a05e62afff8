"""Google Gemini provider (Generative Language REST API)."""

from __future__ import annotations

import base64
import logging
import time

import httpx

from invoice_ledger.core.errors import ModelInvocationError

from .base import Attachment, BaseProvider, EmbeddingResult, ProviderResult

logger = logging.getLogger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


class GeminiProvider(BaseProvider):
    name = "gemini"

    def __init__(self, api_key: str, base_url: str = GEMINI_API_BASE) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

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
        model = model or "gemini-2.5-flash"
        t0 = time.monotonic()

        parts: list[dict] = [{"text": prompt}]
        for attachment in attachments:
            parts.append(
                {
                    "inline_data": {
                        "mime_type": attachment.mime_type,
                        "data": base64.b64encode(attachment.data).decode("ascii"),
                    }
                }
            )

        data = await self._post(
            f"{self._base_url}/models/{model}:generateContent",
            {
                "contents": [{"role": "user", "parts": parts}],
                "generationConfig": {
                    "temperature": temperature,
                    "maxOutputTokens": max_tokens,
                },
            },
            timeout_seconds,
        )

        elapsed = (time.monotonic() - t0) * 1000
        candidates = data.get("candidates") or []
        if not candidates:
            reason = (data.get("promptFeedback") or {}).get("blockReason", "no candidates")
            raise ModelInvocationError(f"Gemini returned no candidates ({reason})")
        content_parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in content_parts)
        usage = data.get("usageMetadata", {})

        return ProviderResult(
            raw_text=text,
            model=model,
            provider=self.name,
            prompt_tokens=usage.get("promptTokenCount", 0),
            completion_tokens=usage.get("candidatesTokenCount", 0),
            latency_ms=round(elapsed, 2),
        )

    async def embed(
        self,
        text: str,
        *,
        model: str = "",
        timeout_seconds: float = 30.0,
    ) -> EmbeddingResult:
        model = model or "text-embedding-004"
        t0 = time.monotonic()
        data = await self._post(
            f"{self._base_url}/models/{model}:embedContent",
            {
                "model": f"models/{model}",
                "content": {"parts": [{"text": text}]},
            },
            timeout_seconds,
        )
        elapsed = (time.monotonic() - t0) * 1000
        values = (data.get("embedding") or {}).get("values")
        if not values:
            raise ModelInvocationError("Gemini embedding response has no values")
        return EmbeddingResult(
            vector=[float(v) for v in values],
            model=model,
            provider=self.name,
            latency_ms=round(elapsed, 2),
        )

    async def _post(self, url: str, payload: dict, timeout_seconds: float) -> dict:
        try:
            async with httpx.AsyncClient(timeout=timeout_seconds) as client:
                resp = await client.post(
                    url,
                    headers={
                        "x-goog-api-key": self._api_key,
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
                resp.raise_for_status()
                body = resp.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            detail = exc.response.text[:300]
            logger.warning("Gemini HTTP %s: %s", status, detail)
            raise ModelInvocationError(f"Gemini HTTP {status}: {detail}", status_code=status) from exc
        except ValueError as exc:
            raise ModelInvocationError(f"Gemini returned a non-JSON body: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ModelInvocationError(f"Gemini transport error: {exc}") from exc
        if not isinstance(body, dict):
            raise ModelInvocationError(f"Gemini returned unexpected JSON of type {type(body).__name__}")
        return body
