"""Natural-language query path: translate, search, aggregate, synthesise."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from invoice_ledger.services.aggregation import aggregate_movements
from invoice_ledger.services.ledger_gateway import MovementGateway

from ..common import router as ai_router
from ..common.audit import log_ai_run
from ..common.json_tools import decode_model_json
from ..common.providers.base import BaseProvider
from .contracts import QueryPlan

logger = logging.getLogger(__name__)

ANSWER_APOLOGY = "Desculpe, não consegui formular uma resposta adequada."

QUERY_TRANSLATION_PROMPT = """Você é um assistente que converte perguntas sobre notas fiscais em critérios de busca estruturados.

DATA DE HOJE: {today}

PERGUNTA DO USUÁRIO: "{question}"

Analise a pergunta e retorne UM JSON com os seguintes campos (use null se não aplicável):

{{
  "tipo_consulta": "fornecedor" | "periodo" | "valor" | "categoria" | "geral",
  "filtros": {{
    "fornecedor_nome": "string ou null (nome ou parte do nome)",
    "fornecedor_cnpj": "string ou null (apenas números)",
    "data_inicio": "YYYY-MM-DD ou null",
    "data_fim": "YYYY-MM-DD ou null",
    "valor_min": número ou null,
    "valor_max": número ou null,
    "classificacao": "string ou null (categoria de despesa)",
    "numero_nota": "string ou null"
  }},
  "agregacao": "soma" | "media" | "contagem" | "lista" | null,
  "resposta_amigavel": "string (reformule a pergunta de forma clara)"
}}

EXEMPLOS:

Pergunta: "Quanto gastei com a empresa XYZ em outubro?"
Resposta: {{"tipo_consulta": "fornecedor", "filtros": {{"fornecedor_nome": "XYZ", "data_inicio": "2024-10-01", "data_fim": "2024-10-31"}}, "agregacao": "soma", "resposta_amigavel": "Total gasto com fornecedor XYZ em outubro de 2024"}}

Pergunta: "Mostre todas as notas acima de R$ 5000"
Resposta: {{"tipo_consulta": "valor", "filtros": {{"valor_min": 5000}}, "agregacao": "lista", "resposta_amigavel": "Notas fiscais com valor superior a R$ 5.000,00"}}

IMPORTANTE:
- Para valores monetários, converta para número (ex: "R$ 5.000" = 5000)
- Se o usuário mencionar "este mês" ou "hoje", use a data de hoje como referência
- Retorne APENAS o JSON, sem texto adicional"""

ANSWER_SYNTHESIS_PROMPT = """Você é um assistente financeiro que responde perguntas sobre notas fiscais de forma clara e objetiva.

PERGUNTA DO USUÁRIO: "{question}"

DADOS ENCONTRADOS:
{results}

Gere uma resposta em português do Brasil que:
1. Seja direta e objetiva
2. Apresente os números de forma clara (use formatação brasileira para valores)
3. Se houver muitos resultados, resuma os principais pontos
4. Se não houver resultados, explique de forma amigável

RESPOSTA:"""


async def translate_question(
    question: str,
    db: Optional[Session] = None,
    *,
    provider: BaseProvider | None = None,
    today: date | None = None,
) -> QueryPlan:
    """Translate *question* into a ``QueryPlan``. Never raises.

    Any failure (no key, transport error, unparsable or invalid output)
    degrades to ``QueryPlan.fallback_for(question)``.
    """
    prompt = QUERY_TRANSLATION_PROMPT.format(
        question=question,
        today=(today or date.today()).isoformat(),
    )
    try:
        config = ai_router.resolve("query", provider=provider)
        result = await config.provider.generate(
            prompt,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout_seconds=config.timeout_seconds,
        )
        plan = QueryPlan.model_validate(decode_model_json(result.raw_text))
    except Exception as exc:
        logger.warning("Query translation failed (%s); searching by name instead", exc)
        return QueryPlan.fallback_for(question)

    if db is not None:
        log_ai_run(
            db,
            scope="query",
            provider_result=result,
            prompt_text=prompt,
            parsed_output=plan.model_dump(mode="json"),
        )
    logger.info("Question translated: type=%s aggregation=%s", plan.query_type, plan.aggregation.value)
    return plan


async def synthesize_answer(
    question: str,
    results: dict[str, Any],
    db: Optional[Session] = None,
    *,
    provider: BaseProvider | None = None,
) -> str:
    prompt = ANSWER_SYNTHESIS_PROMPT.format(
        question=question,
        results=json.dumps(results, ensure_ascii=False, indent=2, default=str),
    )
    try:
        config = ai_router.resolve("synthesis", provider=provider)
        result = await config.provider.generate(
            prompt,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout_seconds=config.timeout_seconds,
        )
    except Exception:
        logger.exception("Answer synthesis failed")
        return ANSWER_APOLOGY

    answer = result.raw_text.strip()
    if not answer:
        return ANSWER_APOLOGY
    if db is not None:
        log_ai_run(
            db,
            scope="synthesis",
            provider_result=result,
            prompt_text=prompt,
            parsed_output={"answer_chars": len(answer)},
        )
    return answer


async def answer_question(
    db: Session,
    question: str,
    *,
    provider: BaseProvider | None = None,
) -> dict[str, Any]:
    """Full query path returning the ``{sucesso, ...}`` envelope."""
    try:
        plan = await translate_question(question, db, provider=provider)
        movements = MovementGateway(db).search(plan.filters.model_dump())
        aggregated = aggregate_movements(movements, plan.aggregation.value)
        answer = await synthesize_answer(question, aggregated, db, provider=provider)
        db.commit()
    except Exception as exc:
        logger.exception("Query failed for question %r", question)
        db.rollback()
        return {
            "sucesso": False,
            "erro": str(exc),
            "pergunta_original": question,
        }

    return {
        "sucesso": True,
        "pergunta_original": question,
        "criterios_busca": plan.model_dump(mode="json"),
        "resultados": aggregated,
        "resposta_natural": answer,
        "metadados": {
            "total_encontrado": len(movements),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }
