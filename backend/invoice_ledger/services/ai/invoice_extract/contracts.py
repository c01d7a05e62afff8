"""Invoice extraction contracts: ExtractedInvoice + the closed expense category set."""

from __future__ import annotations

import unicodedata
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

EXPENSE_CATEGORIES: tuple[str, ...] = (
    "INSUMOS AGRÍCOLAS",
    "MANUTENÇÃO E OPERAÇÃO",
    "RECURSOS HUMANOS",
    "SERVIÇOS OPERACIONAIS",
    "INFRAESTRUTURA E UTILIDADES",
    "ADMINISTRATIVAS",
    "SEGUROS E PROTEÇÃO",
    "IMPOSTOS E TAXAS",
    "INVESTIMENTOS",
)

DEFAULT_EXPENSE_CATEGORY = "ADMINISTRATIVAS"

CATEGORY_EXAMPLES: dict[str, list[str]] = {
    "INSUMOS AGRÍCOLAS": ["Sementes", "Fertilizantes", "Defensivos Agrícolas", "Corretivos"],
    "MANUTENÇÃO E OPERAÇÃO": ["Combustíveis", "Lubrificantes", "Peças", "Manutenção de Máquinas"],
    "RECURSOS HUMANOS": ["Mão de Obra Temporária", "Salários e Encargos"],
    "SERVIÇOS OPERACIONAIS": ["Frete", "Transporte", "Colheita Terceirizada"],
    "INFRAESTRUTURA E UTILIDADES": ["Energia Elétrica", "Arrendamento", "Construções"],
    "ADMINISTRATIVAS": ["Honorários Contábeis", "Despesas Bancárias"],
    "SEGUROS E PROTEÇÃO": ["Seguro Agrícola", "Seguro de Ativos"],
    "IMPOSTOS E TAXAS": ["ITR", "IPTU", "IPVA", "INCRA-CCIR"],
    "INVESTIMENTOS": ["Máquinas", "Implementos", "Veículos", "Imóveis"],
}

FALLBACK_SUPPLIER_NAME = "DADOS TEMPORÁRIOS - GEMINI INDISPONÍVEL"
FALLBACK_MESSAGE = (
    "O serviço Gemini está temporariamente indisponível. Os dados exibidos são "
    "temporários. Por favor, tente novamente mais tarde."
)


def _fold(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.upper().split())


_FOLDED_CATEGORIES = {_fold(category): category for category in EXPENSE_CATEGORIES}


def match_category(value: Any) -> Optional[str]:
    """Return the canonical category for *value*, ignoring case and accents, or None."""
    if not isinstance(value, str) or not value.strip():
        return None
    return _FOLDED_CATEGORIES.get(_fold(value.strip().strip(".\"'")))


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and value.strip().lower() in {"", "null", "none"}:
        return None
    return value


class SupplierInfo(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    legal_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("legal_name", "razao_social"))
    trade_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("trade_name", "fantasia"))
    tax_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("tax_id", "cnpj"))

    @field_validator("legal_name", "trade_name", "tax_id", mode="before")
    @classmethod
    def _text_or_none(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        return None if v is None else str(v)


class BilledToInfo(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = Field(default=None, validation_alias=AliasChoices("name", "nome_completo"))
    tax_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("tax_id", "cpf"))

    @field_validator("name", "tax_id", mode="before")
    @classmethod
    def _text_or_none(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        return None if v is None else str(v)


class ExtractedInvoice(BaseModel):
    """Strict shape of the invoice JSON the model is asked to return.

    ``total_amount`` is in cents (``344900`` is R$ 3.449,00). The category is
    kept as the model wrote it; callers run it through ``match_category``.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    supplier: SupplierInfo = Field(
        default_factory=SupplierInfo,
        validation_alias=AliasChoices("supplier", "fornecedor"),
    )
    billed_to: BilledToInfo = Field(
        default_factory=BilledToInfo,
        validation_alias=AliasChoices("billed_to", "faturado"),
    )
    invoice_number: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("invoice_number", "numero_nota_fiscal"),
    )
    issue_date: Optional[date] = Field(
        default=None,
        validation_alias=AliasChoices("issue_date", "data_emissao"),
    )
    description: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("description", "descricao_produtos"),
    )
    installment_count: int = Field(
        default=1,
        ge=1,
        validation_alias=AliasChoices("installment_count", "quantidade_parcelas"),
    )
    due_date: Optional[date] = Field(
        default=None,
        validation_alias=AliasChoices("due_date", "data_vencimento"),
    )
    total_amount: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("total_amount", "valor_total"),
    )
    expense_category: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("expense_category", "classificacao_despesa"),
    )

    @field_validator("supplier", "billed_to", mode="before")
    @classmethod
    def _null_party(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("invoice_number", "description", "expense_category", mode="before")
    @classmethod
    def _text_or_none(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        return None if v is None else str(v)

    @field_validator("issue_date", "due_date", mode="before")
    @classmethod
    def _date_or_none(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_validator("installment_count", mode="before")
    @classmethod
    def _default_installments(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        return 1 if v is None else v

    @field_validator("total_amount", mode="before")
    @classmethod
    def _cents(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        if v is None or isinstance(v, bool):
            return v
        try:
            return int(Decimal(str(v).strip()).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        except (InvalidOperation, ValueError):
            msg = f"valor_total must be a number of cents, got {v!r}"
            raise ValueError(msg)
