"""Vector retrieval over movement chunks: indexing, ranking and grounded answers.

Each movement owns at most one ``DocumentContext`` row holding a synthesised
text chunk and its embedding. On PostgreSQL ranking uses the pgvector cosine
distance operator; on other dialects (SQLite in tests) the distance is
computed in Python over the JSON-stored vectors.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, Sequence

from pgvector.sqlalchemy import Vector
from sqlalchemy import Float, bindparam, delete, select
from sqlalchemy.orm import Session

from invoice_ledger.core.config import get_settings
from invoice_ledger.models.ledger import DocumentContext, Movement
from invoice_ledger.schemas.ledger import MovementStatus

from ..common import router as ai_router
from ..common.audit import log_ai_run
from ..common.providers.base import BaseProvider

logger = logging.getLogger(__name__)

RETRIEVAL_APOLOGY = (
    "Desculpe, ocorreu um erro ao consultar o índice vetorial. Verifique se o "
    "servidor do PostgreSQL está ativo e se o índice foi criado corretamente."
)

CHUNK_SEPARATOR = "\n\n---\n\n"

GROUNDED_ANSWER_PROMPT = """Você é um assistente financeiro inteligente e prestativo.
Use EXCLUSIVAMENTE o contexto fornecido abaixo para responder à pergunta do usuário.
Não invente informações. Se o contexto for insuficiente, diga que não consegue responder.
Sua resposta deve ser concisa e focada nos dados.

--- CONTEXTO DAS NOTAS FISCAIS ---
{context}
----------------------------------

PERGUNTA DO USUÁRIO: {question}"""


@dataclass
class RankedChunk:
    text: str
    distance: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class IndexReport:
    total: int = 0
    indexed: int = 0
    failed: list[int] = field(default_factory=list)


def build_context_text(movement: Movement) -> str:
    categories = ", ".join(c.description for c in movement.classifications)
    supplier = movement.supplier.legal_name if movement.supplier is not None else "N/A"
    total = Decimal(str(movement.total_amount)).quantize(Decimal("0.01"))
    issue_date = movement.issue_date.isoformat() if movement.issue_date else "N/A"
    return (
        f"Movimento ID: {movement.id}. "
        f"Nota Fiscal: {movement.invoice_number or 'N/A'}. "
        f"Fornecedor: {supplier}. "
        f"Categoria(s): {categories}. "
        f"Valor Total: {total}. "
        f"Descrição dos Itens: {movement.description or ''}. "
        f"Data de Emissão: {issue_date}."
    )


def build_context_metadata(movement: Movement) -> dict[str, Any]:
    return {
        "movimento_id": movement.id,
        "categoria": ", ".join(c.description for c in movement.classifications),
        "numero_nf": movement.invoice_number,
    }


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """``1 - cos(a, b)``; vectors with zero norm are maximally distant from everything."""
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 1.0
    return 1.0 - dot / (norm_a * norm_b)


async def embed_text(text: str, *, provider: BaseProvider | None = None) -> list[float]:
    config = ai_router.resolve("embedding", provider=provider)
    result = await config.provider.embed(text, model=config.model, timeout_seconds=config.timeout_seconds)
    return list(result.vector)


async def rebuild_index(db: Session, *, provider: BaseProvider | None = None) -> IndexReport:
    """Drop every chunk and re-embed all non-inactive movements.

    Embeddings are requested ``rag_embed_batch_size`` at a time; a movement
    whose embedding fails is logged and left out of the index.
    """
    settings = get_settings()
    batch_size = max(1, settings.rag_embed_batch_size)
    if provider is None:
        provider = ai_router.resolve("embedding").provider

    db.execute(delete(DocumentContext))
    movements = list(
        db.execute(
            select(Movement).where(Movement.status != MovementStatus.INACTIVE.value).order_by(Movement.id)
        )
        .unique()
        .scalars()
        .all()
    )
    report = IndexReport(total=len(movements))
    if not movements:
        db.commit()
        logger.info("No movements to index")
        return report

    logger.info("Rebuilding vector index for %d movement(s)", len(movements))
    for start in range(0, len(movements), batch_size):
        batch = movements[start : start + batch_size]
        texts = [build_context_text(m) for m in batch]
        vectors = await asyncio.gather(
            *(embed_text(text, provider=provider) for text in texts),
            return_exceptions=True,
        )
        for movement, text, vector in zip(batch, texts, vectors):
            if isinstance(vector, BaseException):
                logger.error("Failed to index movement %s: %s", movement.id, vector)
                report.failed.append(movement.id)
                continue
            db.add(
                DocumentContext(
                    movement_id=movement.id,
                    content=text,
                    embedding=vector,
                    metadata_=build_context_metadata(movement),
                )
            )
            report.indexed += 1

    db.commit()
    logger.info("Vector index rebuilt: %d indexed, %d failed", report.indexed, len(report.failed))
    return report


async def index_movement(
    db: Session,
    movement: Movement,
    *,
    provider: BaseProvider | None = None,
) -> DocumentContext:
    """Insert or replace the chunk of one movement."""
    text = build_context_text(movement)
    vector = await embed_text(text, provider=provider)

    chunk = db.execute(
        select(DocumentContext).where(DocumentContext.movement_id == movement.id)
    ).scalar_one_or_none()
    if chunk is None:
        chunk = DocumentContext(movement_id=movement.id)
        db.add(chunk)
    chunk.content = text
    chunk.embedding = vector
    chunk.metadata_ = build_context_metadata(movement)
    db.commit()
    logger.info("Indexed movement %s", movement.id)
    return chunk


async def refresh_after_write(
    db: Session,
    movement: Movement,
    *,
    provider: BaseProvider | None = None,
) -> bool:
    """Bring the index up to date after *movement* was written.

    Returns False when indexing failed; the movement itself stays committed.
    """
    mode = get_settings().rag_reindex_mode
    try:
        if mode == "full":
            await rebuild_index(db, provider=provider)
        else:
            await index_movement(db, movement, provider=provider)
    except Exception:
        db.rollback()
        logger.exception("Vector index refresh (%s) failed for movement %s", mode, movement.id)
        return False
    return True


def rank_chunks(db: Session, vector: Sequence[float], k: int) -> list[RankedChunk]:
    """Return the *k* chunks closest to *vector*, ascending by cosine distance."""
    if k <= 0:
        return []

    if db.get_bind().dialect.name == "postgresql":
        query_vector = bindparam("query_vector", list(vector), type_=Vector(len(vector)))
        distance = DocumentContext.embedding.op("<=>", return_type=Float)(query_vector).label("distance")
        rows = db.execute(
            select(DocumentContext.content, DocumentContext.metadata_, distance)
            .order_by(distance, DocumentContext.id)
            .limit(k)
        ).all()
        return [RankedChunk(text=row[0], distance=float(row[2]), metadata=row[1] or {}) for row in rows]

    chunks = db.execute(select(DocumentContext).order_by(DocumentContext.id)).scalars().all()
    ranked = [
        RankedChunk(
            text=chunk.content,
            distance=cosine_distance(vector, chunk.embedding or []),
            metadata=chunk.metadata_ or {},
        )
        for chunk in chunks
    ]
    ranked.sort(key=lambda item: item.distance)
    return ranked[:k]


async def answer_with_embeddings(
    db: Session,
    question: str,
    *,
    provider: BaseProvider | None = None,
    top_k: Optional[int] = None,
) -> dict[str, Any]:
    """Answer *question* from the nearest chunks only."""
    settings = get_settings()
    k = top_k if top_k is not None else settings.rag_top_k
    context = ""

    try:
        question_vector = await embed_text(question, provider=provider)
        chunks = rank_chunks(db, question_vector, k)
        context = CHUNK_SEPARATOR.join(chunk.text for chunk in chunks)
        logger.info("Retrieved %d chunk(s) for question (%d chars of context)", len(chunks), len(context))

        prompt = GROUNDED_ANSWER_PROMPT.format(context=context, question=question)
        config = ai_router.resolve("retrieval", provider=provider)
        result = await config.provider.generate(
            prompt,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout_seconds=config.timeout_seconds,
        )
        log_ai_run(
            db,
            scope="retrieval",
            provider_result=result,
            prompt_text=prompt,
            parsed_output={"chunks": len(chunks)},
        )
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.exception("Vector retrieval failed")
        return {
            "resposta": RETRIEVAL_APOLOGY,
            "contexto_usado": context,
            "error": str(exc),
        }

    return {
        "resposta": result.raw_text,
        "contexto_usado": context,
        "documentos_originais": [
            {"texto": chunk.text, "distancia": chunk.distance} for chunk in chunks
        ],
    }
