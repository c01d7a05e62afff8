from functools import lru_cache
import json
from typing import Annotated

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_list_value(value) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if raw == "":
            return []
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        except ValueError:
            pass
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_by_name=True,
        populate_by_name=True,
    )
    database_url: str = ""
    auto_create_schema: bool = False

    log_level: str = "INFO"
    docs_enabled: bool = Field(default=True)
    openapi_enabled: bool = Field(default=True)
    expose_error_details: bool = False

    # --- AI ---
    gemini_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    )
    ai_provider: str = "gemini"
    ai_allowed_providers: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["gemini", "mock"])
    ai_text_model: str = "gemini-2.5-flash"
    ai_query_model: str = "gemini-2.5-flash"
    ai_embedding_model: str = "text-embedding-004"
    ai_embedding_dimensions: int = 768
    ai_temperature: float = 0.3
    ai_max_tokens: int = 8192
    ai_timeout_seconds: float = 120.0
    ai_max_retries: int = 3
    ai_initial_backoff_seconds: float = 1.0
    ai_debug_store_raw: bool = False

    # --- Vector retrieval ---
    rag_top_k: int = 5
    rag_embed_batch_size: int = 10
    rag_reindex_mode: str = "incremental"
    rag_index_on_startup: bool = True

    max_upload_bytes: int = 15 * 1024 * 1024

    pii_redaction_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("PII_REDACTION_ENABLED"),
    )
    pii_redaction_fields: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: [
            "tax_id",
            "documento",
            "cpf",
            "cnpj",
            "email",
            "phone",
        ],
        validation_alias=AliasChoices("PII_REDACTION_FIELDS"),
    )

    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=list)
    cors_allow_methods: Annotated[list[str], NoDecode] = Field(default_factory=lambda: [
        "GET",
        "POST",
        "PUT",
        "DELETE",
        "OPTIONS",
    ])
    cors_allow_headers: Annotated[list[str], NoDecode] = Field(default_factory=lambda: [
        "Content-Type",
        "Accept",
    ])

    @field_validator(
        "cors_allow_origins",
        "cors_allow_methods",
        "cors_allow_headers",
        "pii_redaction_fields",
        "ai_allowed_providers",
        mode="before",
    )
    @classmethod
    def _split_csv(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return _parse_list_value(value)
        return value

    @field_validator("rag_reindex_mode")
    @classmethod
    def _check_reindex_mode(cls, value: str) -> str:
        mode = (value or "").strip().lower()
        if mode not in {"incremental", "full"}:
            raise ValueError(f"RAG_REINDEX_MODE must be 'incremental' or 'full', got {value!r}")
        return mode

    @property
    def gemini_configured(self) -> bool:
        return bool(self.gemini_api_key.strip())

@lru_cache

def get_settings() -> Settings:
    return Settings()
