"""Invoice PDF extraction service with bounded retry, strict validation and audit."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from invoice_ledger.core.errors import MalformedModelOutputError

from ..common import router as ai_router
from ..common.audit import log_ai_run
from ..common.json_tools import decode_model_json
from ..common.providers.base import Attachment, BaseProvider, ProviderResult
from ..common.retry import invoke_with_backoff
from .contracts import (
    DEFAULT_EXPENSE_CATEGORY,
    EXPENSE_CATEGORIES,
    FALLBACK_SUPPLIER_NAME,
    ExtractedInvoice,
    match_category,
)

logger = logging.getLogger(__name__)

_NUMBERED_CATEGORIES = "\n".join(f"{index}. {name}" for index, name in enumerate(EXPENSE_CATEGORIES, start=1))

INVOICE_EXTRACT_PROMPT = f"""Você é um especialista em análise de notas fiscais brasileiras (NFe). Analise este documento PDF de uma nota fiscal e extraia EXATAMENTE os seguintes dados em formato JSON válido.

INSTRUÇÕES CRÍTICAS:
- Use null se a informação não for encontrada
- Para datas, use formato YYYY-MM-DD
- Para CNPJ/CPF, mantenha apenas números
- Para classificação de despesa, analise os produtos/serviços e escolha UMA categoria mais adequada

ATENÇÃO ESPECIAL - NÃO CONFUNDA ESTES CAMPOS:
- NÚMERO DA NOTA FISCAL: aparece como "NF-e N°:" ou "N°:" seguido de números
- CNPJ DO FORNECEDOR: seção do emitente/fornecedor
- CNPJ/CPF DO DESTINATÁRIO: seção "DESTINATÁRIO/REMETENTE"

CATEGORIAS DE DESPESAS DISPONÍVEIS:
{_NUMBERED_CATEGORIES}

FORMATO DE RESPOSTA (JSON):
{{
    "fornecedor": {{"razao_social": "string ou null", "fantasia": "string ou null", "cnpj": "apenas números ou null"}},
    "faturado": {{"nome_completo": "string ou null", "cpf": "apenas números ou null"}},
    "numero_nota_fiscal": "string ou null",
    "data_emissao": "YYYY-MM-DD ou null",
    "descricao_produtos": "descrição detalhada dos produtos/serviços ou null",
    "quantidade_parcelas": 1,
    "data_vencimento": "YYYY-MM-DD ou null",
    "valor_total": "número em centavos ou null (ex: 344900 para R$ 3.449,00)",
    "classificacao_despesa": "uma das categorias acima ou null"
}}

EXEMPLOS PARA EVITAR CONFUSÃO:
- Se vir "N°: 000.207.590", então numero_nota_fiscal = "000207590"
- Se vir CNPJ "18.944.113/0002-91" na seção do emitente, então fornecedor.cnpj = "18944113000291"
- Se vir CPF "709.046.011-88" na seção destinatário, então faturado.cpf = "70904601188"

RESPOSTA: Retorne APENAS o JSON válido, sem comentários, explicações ou formatação markdown."""

CLASSIFY_EXPENSE_PROMPT = """Você é um especialista em classificação de despesas agrícolas.
Analise a seguinte descrição de produtos/serviços e classifique em UMA das categorias disponíveis:

Descrição: "{description}"

Categorias disponíveis:
{categories}

Responda APENAS com o nome da categoria mais adequada, sem explicações adicionais."""


@dataclass
class ExtractionServiceResult:
    invoice: ExtractedInvoice
    provider_result: ProviderResult
    raw: dict[str, Any]


async def extract_invoice(
    pdf_bytes: bytes,
    db: Optional[Session] = None,
    *,
    provider: BaseProvider | None = None,
) -> ExtractionServiceResult:
    """Extract invoice fields from a PDF.

    Raises ``AIConfigurationError`` when no provider can be built,
    ``RetryExhaustedError`` (or the underlying error) when the model call
    fails, and ``MalformedModelOutputError`` when the answer is not a valid
    invoice object.
    """
    config = ai_router.resolve("invoice_extract", provider=provider)
    attachments = (Attachment(data=pdf_bytes, mime_type="application/pdf"),)

    logger.info("Extracting invoice with %s (%s)", config.provider.name, config.model)
    result = await invoke_with_backoff(
        lambda: config.provider.generate(
            INVOICE_EXTRACT_PROMPT,
            attachments=attachments,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout_seconds=config.timeout_seconds,
        ),
        max_retries=config.max_retries,
        initial_delay=config.initial_backoff_seconds,
        operation_name="Invoice extraction",
    )

    parsed = decode_model_json(result.raw_text)
    try:
        invoice = ExtractedInvoice.model_validate(parsed)
    except ValidationError as exc:
        logger.warning("Extracted invoice failed validation: %s", exc.errors()[:3])
        raise MalformedModelOutputError(f"Extracted invoice does not match schema: {exc}", raw_text=result.raw_text) from exc

    if db is not None:
        log_ai_run(
            db,
            scope="invoice_extract",
            provider_result=result,
            prompt_text=INVOICE_EXTRACT_PROMPT,
            parsed_output=invoice.model_dump(mode="json"),
            extra_meta={"pdf_bytes": len(pdf_bytes)},
        )

    logger.info("Invoice extracted: number=%s category=%s", invoice.invoice_number, invoice.expense_category)
    return ExtractionServiceResult(invoice=invoice, provider_result=result, raw=parsed)


def _override_cents(value: Any) -> Any:
    """Form value for ``valor_total``; anything that is not a plain number of cents becomes 0."""
    try:
        cents = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        cents = None
    if cents is None or not cents.is_finite():
        logger.warning("Ignoring non-numeric valor_total override %r", value)
        return 0
    return value


def build_fallback_invoice(overrides: Mapping[str, Any] | None = None, *, today: date | None = None) -> ExtractedInvoice:
    """Labelled placeholder invoice used when the model is unavailable.

    Recognised *overrides* (form fields): ``cnpj_fornecedor``, ``nome_faturado``,
    ``cpf_faturado``, ``numero_nf``, ``valor_total`` (cents), ``classificacao``.
    """
    overrides = {key: value for key, value in (overrides or {}).items() if value not in (None, "")}
    today = today or date.today()
    return ExtractedInvoice(
        supplier={
            "legal_name": FALLBACK_SUPPLIER_NAME,
            "trade_name": "FALLBACK",
            "tax_id": overrides.get("cnpj_fornecedor", "00000000000000"),
        },
        billed_to={
            "name": overrides.get("nome_faturado", "USUÁRIO TEMPORÁRIO"),
            "tax_id": overrides.get("cpf_faturado", "00000000000"),
        },
        invoice_number=overrides.get("numero_nf", "TEMPORÁRIO"),
        issue_date=today,
        description="Dados temporários devido à indisponibilidade do serviço Gemini",
        installment_count=1,
        due_date=today,
        total_amount=_override_cents(overrides.get("valor_total", 0)),
        expense_category=overrides.get("classificacao", DEFAULT_EXPENSE_CATEGORY),
    )


def is_fallback_invoice(invoice: ExtractedInvoice) -> bool:
    return invoice.supplier.legal_name == FALLBACK_SUPPLIER_NAME


async def classify_expense(
    description: str,
    db: Optional[Session] = None,
    *,
    provider: BaseProvider | None = None,
) -> str:
    """Ask the model for one category; any failure or non-member answer yields the default."""
    if not description or not description.strip():
        return DEFAULT_EXPENSE_CATEGORY

    prompt = CLASSIFY_EXPENSE_PROMPT.format(
        description=description.strip()[:2000],
        categories="\n".join(EXPENSE_CATEGORIES),
    )
    try:
        config = ai_router.resolve("classification", provider=provider)
        result = await config.provider.generate(
            prompt,
            model=config.model,
            temperature=config.temperature,
            max_tokens=64,
            timeout_seconds=config.timeout_seconds,
        )
    except Exception:
        logger.exception("Expense classification failed; using %s", DEFAULT_EXPENSE_CATEGORY)
        return DEFAULT_EXPENSE_CATEGORY

    category = match_category(result.raw_text)
    if category is None:
        logger.warning("Model answered unknown category %r", result.raw_text[:80])
        category = DEFAULT_EXPENSE_CATEGORY

    if db is not None:
        log_ai_run(
            db,
            scope="classification",
            provider_result=result,
            prompt_text=prompt,
            parsed_output={"category": category},
        )
    return category


async def resolve_category(
    invoice: ExtractedInvoice,
    db: Optional[Session] = None,
    *,
    provider: BaseProvider | None = None,
) -> str:
    """Canonical category for *invoice*, reclassifying when the model's label is off-list."""
    category = match_category(invoice.expense_category)
    if category is not None:
        return category
    logger.info("Category %r is not recognised; reclassifying from description", invoice.expense_category)
    return await classify_expense(invoice.description or "", db, provider=provider)
