"""Query translation contracts: QueryPlan / QueryFilters."""

from __future__ import annotations

from datetime import date
from enum import StrEnum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

AGGREGATION_ALIASES = {
    "soma": "sum",
    "media": "average",
    "média": "average",
    "contagem": "count",
    "lista": "list",
}


class AggregationMode(StrEnum):
    LIST = "list"
    SUM = "sum"
    AVERAGE = "average"
    COUNT = "count"


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and value.strip().lower() in {"", "null", "none"}:
        return None
    return value


class QueryFilters(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    counterparty_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("counterparty_name", "fornecedor_nome")
    )
    tax_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("tax_id", "fornecedor_cnpj"))
    date_from: Optional[date] = Field(default=None, validation_alias=AliasChoices("date_from", "data_inicio"))
    date_to: Optional[date] = Field(default=None, validation_alias=AliasChoices("date_to", "data_fim"))
    value_min: Optional[float] = Field(default=None, validation_alias=AliasChoices("value_min", "valor_min"))
    value_max: Optional[float] = Field(default=None, validation_alias=AliasChoices("value_max", "valor_max"))
    category: Optional[str] = Field(default=None, validation_alias=AliasChoices("category", "classificacao"))
    invoice_number: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("invoice_number", "numero_nota")
    )

    @field_validator("*", mode="before")
    @classmethod
    def _blanks(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_validator("counterparty_name", "tax_id", "category", "invoice_number", mode="before")
    @classmethod
    def _text(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        if v is None:
            return None
        return str(v).strip() or None


class QueryPlan(BaseModel):
    """Structured form of a free-text question."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    query_type: str = Field(default="general", validation_alias=AliasChoices("query_type", "tipo_consulta"))
    filters: QueryFilters = Field(default_factory=QueryFilters, validation_alias=AliasChoices("filters", "filtros"))
    aggregation: AggregationMode = Field(
        default=AggregationMode.LIST,
        validation_alias=AliasChoices("aggregation", "agregacao"),
    )
    friendly_question: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("friendly_question", "resposta_amigavel"),
    )
    fallback: bool = False

    @field_validator("query_type", mode="before")
    @classmethod
    def _query_type(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        return "general" if v is None else str(v)

    @field_validator("filters", mode="before")
    @classmethod
    def _null_filters(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("aggregation", mode="before")
    @classmethod
    def _aggregation(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        if v is None:
            return AggregationMode.LIST
        text = str(v).strip().lower()
        return AGGREGATION_ALIASES.get(text, text)

    @classmethod
    def fallback_for(cls, question: str) -> "QueryPlan":
        """Whole question as a counterparty-name filter, listed."""
        return cls(
            query_type="general",
            filters=QueryFilters(counterparty_name=question),
            aggregation=AggregationMode.LIST,
            friendly_question=question,
            fallback=True,
        )
