import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from invoice_ledger.core.dependencies import get_db
from invoice_ledger.services.ai.query.service import answer_question
from invoice_ledger.services.ai.retrieval.service import answer_with_embeddings

router = APIRouter()
logger = logging.getLogger(__name__)

MISSING_QUESTION_MESSAGE = 'Campo "pergunta" é obrigatório'


class QuestionRequest(BaseModel):
    pergunta: Optional[str] = None


def _missing_question() -> JSONResponse:
    return JSONResponse(status_code=400, content={"sucesso": False, "erro": MISSING_QUESTION_MESSAGE})


@router.post("/consultar")
async def query_ledger(payload: QuestionRequest, db: Session = Depends(get_db)):
    question = (payload.pergunta or "").strip()
    if not question:
        return _missing_question()
    return await answer_question(db, question)


@router.post("/consultar-embedding")
async def query_embeddings(payload: QuestionRequest, db: Session = Depends(get_db)):
    question = (payload.pergunta or "").strip()
    if not question:
        return _missing_question()
    return await answer_with_embeddings(db, question)
