import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from invoice_ledger.core.config import get_settings
from invoice_ledger.core.dependencies import get_db
from invoice_ledger.core.errors import InvalidMovementError, InvoiceLedgerError
from invoice_ledger.schemas.ledger import ClassificationOut, PartyOut
from invoice_ledger.services.ai.invoice_extract.contracts import FALLBACK_MESSAGE, ExtractedInvoice
from invoice_ledger.services.ai.invoice_extract.service import (
    build_fallback_invoice,
    extract_invoice,
    is_fallback_invoice,
    resolve_category,
)
from invoice_ledger.services.ai.retrieval.service import refresh_after_write
from invoice_ledger.services.ledger_gateway import ClassificationGateway, MovementGateway, PartyGateway

router = APIRouter()
logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"
PDF_ONLY_MESSAGE = "Apenas arquivos PDF são permitidos para extração de dados de notas fiscais."
MISSING_FILE_MESSAGE = "Nenhum arquivo PDF enviado."
UNRESOLVED_IDS_MESSAGE = (
    "Falha na criação do Movimento. IDs de Fornecedor, Faturado ou Classificação não foram resolvidos."
)
EXTRACTION_METHOD = "direct_pdf_processing_with_db_launch"


def _too_large_message(limit_bytes: int) -> str:
    return f"Arquivo muito grande. Máximo {limit_bytes // (1024 * 1024)}MB permitido para PDFs."


def _upload_error(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "error": message})


def _party_dict(record) -> dict:
    return PartyOut.model_validate(record).model_dump(mode="json")


def _classification_dict(record) -> dict:
    return ClassificationOut.model_validate(record).model_dump(mode="json")


async def _persist_invoice(db: Session, invoice: ExtractedInvoice, category: str, actor: dict[str, Any]) -> dict[str, Any]:
    parties = PartyGateway(db, **actor)
    supplier = parties.find_or_create(
        invoice.supplier.tax_id,
        invoice.supplier.legal_name,
        role="SUPPLIER",
        trade_name=invoice.supplier.trade_name,
    )
    billed_to = parties.find_or_create(invoice.billed_to.tax_id, invoice.billed_to.name, role="BILLED_TO")
    expense = ClassificationGateway(db, **actor).find_or_create(category)

    analysis: dict[str, Any] = {
        "fornecedor": supplier.as_dict(_party_dict),
        "faturado": billed_to.as_dict(_party_dict),
        "despesa": expense.as_dict(_classification_dict),
    }

    if not (supplier.id and billed_to.id and expense.id):
        analysis["movimento"] = {"status": "FALHA_CRIACAO", "message": UNRESOLVED_IDS_MESSAGE}
        return analysis

    try:
        movement = MovementGateway(db, **actor).create_with_installments(
            supplier_id=supplier.id,
            billed_to_id=billed_to.id,
            classification_ids=[expense.id],
            total_cents=invoice.total_amount,
            issue_date=invoice.issue_date,
            invoice_number=invoice.invoice_number,
            description=invoice.description,
            installment_count=invoice.installment_count,
            due_date=invoice.due_date,
        )
    except InvalidMovementError as exc:
        logger.warning("Movement not created: %s", exc.message)
        analysis["movimento"] = {"status": "FALHA_CRIACAO", "message": exc.message}
        return analysis

    analysis["movimento"] = {
        "status": "CRIADO_SUCESSO",
        "message": "Registro lançado com sucesso.",
        "id": movement.id,
        "parcelaId": movement.installments[0].id if movement.installments else None,
    }
    indexed = await refresh_after_write(db, movement)
    analysis["movimento"]["indexado"] = indexed
    return analysis


@router.post("/extract-data")
async def extract_data(
    request: Request,
    invoice: Optional[UploadFile] = File(None),
    cnpj_fornecedor: Optional[str] = Form(None),
    nome_faturado: Optional[str] = Form(None),
    cpf_faturado: Optional[str] = Form(None),
    numero_nf: Optional[str] = Form(None),
    valor_total: Optional[str] = Form(None),
    classificacao: Optional[str] = Form(None),
    db: Session = Depends(get_db),
):
    settings = get_settings()
    started = time.monotonic()

    if invoice is None:
        return _upload_error(MISSING_FILE_MESSAGE)
    if (invoice.content_type or "").lower() != PDF_MIME_TYPE:
        return _upload_error(PDF_ONLY_MESSAGE)

    content = await invoice.read(settings.max_upload_bytes + 1)
    if len(content) > settings.max_upload_bytes:
        return _upload_error(_too_large_message(settings.max_upload_bytes))
    if not content:
        return _upload_error(MISSING_FILE_MESSAGE)

    try:
        extracted = (await extract_invoice(content, db)).invoice
    except InvoiceLedgerError as exc:
        logger.warning("AI extraction unavailable, using fallback record: %s", exc.message)
        extracted = build_fallback_invoice(
            {
                "cnpj_fornecedor": cnpj_fornecedor,
                "nome_faturado": nome_faturado,
                "cpf_faturado": cpf_faturado,
                "numero_nf": numero_nf,
                "valor_total": valor_total,
                "classificacao": classificacao,
            }
        )

    category = await resolve_category(extracted, db)
    extracted = extracted.model_copy(update={"expense_category": category})
    db.commit()

    actor = {
        "actor_type": "EXTRACTION",
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }
    analysis = await _persist_invoice(db, extracted, category, actor)

    elapsed = time.monotonic() - started
    fallback = is_fallback_invoice(extracted)
    logger.info(
        "Invoice %s processed in %.1fs (fallback=%s, movement=%s)",
        invoice.filename,
        elapsed,
        fallback,
        analysis["movimento"]["status"],
    )
    return {
        "success": True,
        "method": EXTRACTION_METHOD,
        "data": extracted.model_dump(mode="json"),
        "dbAnalysis": analysis,
        "fallback": fallback,
        "fallbackMessage": FALLBACK_MESSAGE if fallback else None,
        "metadata": {
            "filename": invoice.filename,
            "fileSize": len(content),
            "processingTime": f"{elapsed:.1f}s",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }
