import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from invoice_ledger.core.dependencies import get_db
from invoice_ledger.core.errors import AIConfigurationError
from invoice_ledger.schemas.ledger import (
    ClassificationCreate,
    ClassificationOut,
    ClassificationUpdate,
    DeleteResultOut,
    InstallmentOut,
    InstallmentPaymentRequest,
    MovementOut,
    MovementUpdate,
    PartyCreate,
    PartyOut,
    PartyUpdate,
    UpsertResultOut,
)
from invoice_ledger.services.ai.retrieval.service import rebuild_index, refresh_after_write
from invoice_ledger.services.ai.risk.contracts import RiskAssessment
from invoice_ledger.services.ai.risk.service import analyze_invoice_risk
from invoice_ledger.services.ledger_gateway import (
    ClassificationGateway,
    DeleteResult,
    MovementGateway,
    PartyGateway,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def _user_agent(request: Request) -> Optional[str]:
    return request.headers.get("user-agent")


def _console_actor(request: Request) -> dict:
    return {"actor_type": "CONSOLE", "ip_address": _client_ip(request), "user_agent": _user_agent(request)}


def _delete_response(result: DeleteResult):
    payload = DeleteResultOut(status=result.status, message=result.message).model_dump()
    if not result.ok:
        return JSONResponse(status_code=409, content=payload)
    return payload


def _party_dict(record) -> dict:
    return PartyOut.model_validate(record).model_dump(mode="json")


def _classification_dict(record) -> dict:
    return ClassificationOut.model_validate(record).model_dump(mode="json")


# ---------------------------------------------------------------------------
# Parties
# ---------------------------------------------------------------------------


@router.get("/pessoas", response_model=list[PartyOut])
def list_parties(
    termo: Optional[str] = Query(None),
    tipo: Optional[str] = Query(None),
    todos: bool = Query(False),
    db: Session = Depends(get_db),
):
    return PartyGateway(db).list(term=termo, kind=tipo, include_inactive=todos)


@router.get("/pessoas/{party_id}", response_model=PartyOut)
def get_party(party_id: int, db: Session = Depends(get_db)):
    return PartyGateway(db).get(party_id)


@router.post("/pessoas", response_model=UpsertResultOut)
def create_party(payload: PartyCreate, request: Request, db: Session = Depends(get_db)):
    result = PartyGateway(db, **_console_actor(request)).find_or_create(
        payload.tax_id,
        payload.legal_name,
        role=payload.role,
        trade_name=payload.trade_name,
    )
    return result.as_dict(_party_dict)


@router.put("/pessoas/{party_id}", response_model=PartyOut)
def update_party(party_id: int, payload: PartyUpdate, request: Request, db: Session = Depends(get_db)):
    return PartyGateway(db, **_console_actor(request)).update(party_id, payload.model_dump(exclude_unset=True))


@router.delete("/pessoas/{party_id}", response_model=DeleteResultOut)
def delete_party(party_id: int, request: Request, db: Session = Depends(get_db)):
    return _delete_response(PartyGateway(db, **_console_actor(request)).soft_delete(party_id))


# ---------------------------------------------------------------------------
# Classifications
# ---------------------------------------------------------------------------


@router.get("/classificacoes", response_model=list[ClassificationOut])
def list_classifications(
    termo: Optional[str] = Query(None),
    tipo: Optional[str] = Query(None),
    todos: bool = Query(False),
    db: Session = Depends(get_db),
):
    return ClassificationGateway(db).list(term=termo, kind=tipo, include_inactive=todos)


@router.get("/classificacoes/{classification_id}", response_model=ClassificationOut)
def get_classification(classification_id: int, db: Session = Depends(get_db)):
    return ClassificationGateway(db).get(classification_id)


@router.post("/classificacoes", response_model=UpsertResultOut)
def create_classification(payload: ClassificationCreate, request: Request, db: Session = Depends(get_db)):
    result = ClassificationGateway(db, **_console_actor(request)).find_or_create(
        payload.description,
        payload.kind.value,
    )
    return result.as_dict(_classification_dict)


@router.put("/classificacoes/{classification_id}", response_model=ClassificationOut)
def update_classification(
    classification_id: int,
    payload: ClassificationUpdate,
    request: Request,
    db: Session = Depends(get_db),
):
    return ClassificationGateway(db, **_console_actor(request)).update(
        classification_id,
        payload.model_dump(exclude_unset=True),
    )


@router.delete("/classificacoes/{classification_id}", response_model=DeleteResultOut)
def delete_classification(classification_id: int, request: Request, db: Session = Depends(get_db)):
    return _delete_response(ClassificationGateway(db, **_console_actor(request)).soft_delete(classification_id))


# ---------------------------------------------------------------------------
# Movements (payables) and installments
# ---------------------------------------------------------------------------


@router.get("/contas", response_model=list[MovementOut])
def list_movements(
    termo: Optional[str] = Query(None),
    tipo: Optional[str] = Query(None),
    todos: bool = Query(False),
    db: Session = Depends(get_db),
):
    return MovementGateway(db).list(term=termo, kind=tipo, include_inactive=todos)


@router.get("/contas/{movement_id}", response_model=MovementOut)
def get_movement(movement_id: int, db: Session = Depends(get_db)):
    return MovementGateway(db).get(movement_id)


@router.put("/contas/{movement_id}", response_model=MovementOut)
async def update_movement(movement_id: int, payload: MovementUpdate, request: Request, db: Session = Depends(get_db)):
    movement = MovementGateway(db, **_console_actor(request)).update(movement_id, payload.model_dump(exclude_unset=True))
    await refresh_after_write(db, movement)
    return movement


@router.delete("/contas/{movement_id}", response_model=DeleteResultOut)
def delete_movement(movement_id: int, request: Request, db: Session = Depends(get_db)):
    return _delete_response(MovementGateway(db, **_console_actor(request)).soft_delete(movement_id))


@router.get("/contas/{movement_id}/risco", response_model=RiskAssessment)
async def movement_risk(movement_id: int, db: Session = Depends(get_db)):
    movement = MovementGateway(db).get(movement_id)
    return await analyze_invoice_risk(movement, db)


@router.post("/parcelas/{installment_id}/pagamento")
def pay_installment(
    installment_id: int,
    payload: InstallmentPaymentRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    result = MovementGateway(db, **_console_actor(request)).register_payment(
        installment_id,
        Decimal(str(payload.amount)),
    )
    return {
        "installment": InstallmentOut.model_validate(result.installment).model_dump(mode="json"),
        "movement_status": result.movement_status,
    }


@router.post("/indice/reindexar")
async def reindex(db: Session = Depends(get_db)):
    try:
        report = await rebuild_index(db)
    except AIConfigurationError as exc:
        db.rollback()
        raise HTTPException(503, exc.message) from exc
    return {"total": report.total, "indexed": report.indexed, "failed": report.failed}
