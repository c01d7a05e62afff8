"""Invoice risk analysis service."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from invoice_ledger.models.ledger import Movement

from ..common import router as ai_router
from ..common.audit import log_ai_run
from ..common.json_tools import decode_model_json
from ..common.providers.base import BaseProvider
from .contracts import RiskAssessment

logger = logging.getLogger(__name__)

RISK_ANALYSIS_PROMPT = """Você é um analista de risco financeiro sênior, especializado em detectar fraudes em notas fiscais agrícolas.
Sua tarefa é analisar os dados de uma nota e gerar um parecer em JSON com a seguinte estrutura:
{{
  "risk_score": <int, 0-10>,
  "summary": "<string, resumo da análise>",
  "red_flags": [
    {{"type": "<string, ex: 'SOBREPREÇO', 'INCONSISTÊNCIA DE CATEGORIA', 'FORNECEDOR INCOMUM', 'PADRÃO SUSPEITO'>", "description": "<string>"}}
  ]
}}

Seja rigoroso. Compare o valor pago com uma estimativa de mercado. Verifique se os produtos condizem com a categoria e o fornecedor.
Procure por padrões suspeitos (valores redondos, etc.).

Dados da nota fiscal:
{invoice}"""


def movement_risk_payload(movement: Movement) -> dict[str, Any]:
    return {
        "numero_nota_fiscal": movement.invoice_number,
        "data_emissao": movement.issue_date.isoformat() if movement.issue_date else None,
        "fornecedor": {
            "razao_social": movement.supplier.legal_name,
            "documento": movement.supplier.tax_id,
        },
        "faturado": {"nome": movement.billed_to.legal_name},
        "descricao": movement.description,
        "valor_total": float(movement.total_amount),
        "classificacoes": [c.description for c in movement.classifications],
        "parcelas": len(movement.installments),
    }


async def analyze_invoice_risk(
    movement: Movement,
    db: Optional[Session] = None,
    *,
    provider: BaseProvider | None = None,
) -> RiskAssessment:
    """Never raises; any failure yields ``RiskAssessment.neutral``."""
    prompt = RISK_ANALYSIS_PROMPT.format(
        invoice=json.dumps(movement_risk_payload(movement), ensure_ascii=False, indent=2),
    )
    try:
        config = ai_router.resolve("risk", provider=provider)
        result = await config.provider.generate(
            prompt,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout_seconds=config.timeout_seconds,
        )
        assessment = RiskAssessment.model_validate(decode_model_json(result.raw_text))
    except Exception as exc:
        logger.warning("Risk analysis failed for movement %s: %s", movement.id, exc)
        return RiskAssessment.neutral(str(exc))

    if db is not None:
        log_ai_run(
            db,
            scope="risk",
            provider_result=result,
            prompt_text=prompt,
            parsed_output=assessment.model_dump(),
            entity_id=str(movement.id),
        )
        db.commit()
    logger.info("Risk analysis for movement %s: score=%d", movement.id, assessment.risk_score)
    return assessment
