"""Find-or-create persistence gateway for parties, classifications and movements.

Every entity kind exposes the same capability surface (``get``, ``update``,
``soft_delete``, ``list``); parties and classifications add ``find_or_create``
keyed by their natural key, movements add installment-aware creation, the
query read path and payment registration.

Each operation runs in its own transaction: the gateway commits on success
and rolls back on failure, so a find-or-create that loses a uniqueness race
can re-read the winning row and report ``EXISTS``.
"""

from __future__ import annotations

import calendar
import logging
import re
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Mapping, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from invoice_ledger.core.errors import ConflictError, InvalidMovementError, NotFoundError
from invoice_ledger.models.ledger import (
    Classification,
    DocumentContext,
    Installment,
    Movement,
    MovementClassification,
    Party,
)
from invoice_ledger.schemas.ledger import (
    ClassificationKind,
    InstallmentStatus,
    MovementStatus,
    PartyKind,
    RecordStatus,
    UpsertStatus,
)
from invoice_ledger.services.audit import create_audit_log

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
_NON_DIGITS = re.compile(r"\D")


@dataclass
class UpsertResult:
    status: UpsertStatus
    id: Optional[int] = None
    record: Any = None
    message: str = ""

    def as_dict(self, serializer: Callable[[Any], dict] | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": self.status.value, "message": self.message}
        if self.id is not None:
            payload["id"] = self.id
        if self.record is not None and serializer is not None:
            payload["data"] = serializer(self.record)
        return payload


@dataclass
class DeleteResult:
    status: str
    message: str
    references: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "SUCCESS"


@dataclass
class PaymentResult:
    installment: Installment
    movement_status: str


def normalize_tax_id(value: Any) -> str:
    """Strip every non-digit character: ``"18.944.113/0002-91"`` -> ``"18944113000291"``."""
    if value is None:
        return ""
    return _NON_DIGITS.sub("", str(value))


def infer_party_kind(tax_id: str) -> PartyKind:
    # CNPJ has 14 digits, CPF has 11.
    return PartyKind.ORGANIZATION if len(tax_id) > 11 else PartyKind.INDIVIDUAL


def cents_to_amount(value: Any) -> Decimal:
    """Convert an integer-cents value (int, str or float) to a currency amount."""
    if value is None or isinstance(value, bool):
        raise InvalidMovementError("Total amount is missing")
    try:
        cents = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise InvalidMovementError(f"Total amount {value!r} is not a number") from exc
    if not cents.is_finite():
        raise InvalidMovementError(f"Total amount {value!r} is not a number")
    return (cents / 100).quantize(CENTS, rounding=ROUND_HALF_UP)


def add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def split_installments(total: Decimal, count: int, first_due: date) -> list[tuple[str, date, Decimal]]:
    """Split *total* evenly over *count* monthly installments labelled ``k/n``.

    Each share is rounded to cents; the last installment absorbs the rounding
    remainder so the shares always add up to *total*.
    """
    share = (total / count).quantize(CENTS, rounding=ROUND_HALF_UP)
    rows = []
    for index in range(count):
        amount = share if index < count - 1 else total - share * (count - 1)
        rows.append((f"{index + 1}/{count}", add_months(first_due, index), amount))
    return rows


class EntityGateway:
    """Shared get / update / soft-delete / list behaviour for one ORM model."""

    model: Any = None
    entity_name = "entity"
    updatable_fields: tuple[str, ...] = ()
    inactive_status = RecordStatus.INACTIVE.value

    def __init__(
        self,
        db: Session,
        *,
        actor_type: str = "SYSTEM",
        actor_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        self.db = db
        self.actor_type = actor_type
        self.actor_id = actor_id
        self.ip_address = ip_address
        self.user_agent = user_agent

    # -- reads ---------------------------------------------------------------

    def get(self, entity_id: int):
        record = self.db.get(self.model, entity_id)
        if record is None:
            raise NotFoundError(self.entity_name, entity_id)
        return record

    def list(self, *, term: Optional[str] = None, kind: Optional[str] = None, include_inactive: bool = False):
        stmt = select(self.model)
        stmt = self._apply_list_filters(stmt, term=term, kind=kind, include_inactive=include_inactive)
        return list(self.db.execute(stmt).unique().scalars().all())

    def _apply_list_filters(self, stmt, *, term, kind, include_inactive):
        return stmt

    # -- writes --------------------------------------------------------------

    def update(self, entity_id: int, changes: Mapping[str, Any]):
        record = self.get(entity_id)
        clean = {
            key: value
            for key, value in changes.items()
            if key in self.updatable_fields and value is not None
        }
        clean = self._prepare_changes(record, clean)
        old_value = {key: _jsonable(getattr(record, key)) for key in clean}
        for key, value in clean.items():
            setattr(record, key, value)

        self._audit(record, "UPDATED", old_value, {key: _jsonable(value) for key, value in clean.items()})
        try:
            self._commit()
        except IntegrityError as exc:
            logger.info("Update of %s %s rejected: natural key already in use", self.entity_name, entity_id)
            raise ConflictError(
                f"{self.entity_name} {entity_id} update conflicts with an existing {self.entity_name}",
                details={"fields": sorted(clean)},
            ) from exc
        self.db.refresh(record)
        return record

    def _prepare_changes(self, record, changes: dict[str, Any]) -> dict[str, Any]:
        return changes

    def soft_delete(self, entity_id: int) -> DeleteResult:
        record = self.get(entity_id)
        references = self._count_references(record)
        if references:
            logger.info(
                "Refusing to deactivate %s %s: %d dependent movement(s)",
                self.entity_name,
                entity_id,
                references,
            )
            return DeleteResult(
                status="ERROR",
                message=f"{self.entity_name} {entity_id} is referenced by {references} movement(s) and cannot be removed",
                references=references,
            )

        old_status = record.status
        record.status = self.inactive_status
        self._after_soft_delete(record)
        self._audit(record, "DEACTIVATED", {"status": old_status}, {"status": record.status})
        self._commit()
        return DeleteResult(status="SUCCESS", message=f"{self.entity_name} {entity_id} deactivated")

    def _count_references(self, record) -> int:
        return 0

    def _after_soft_delete(self, record) -> None:
        return None

    # -- helpers -------------------------------------------------------------

    def _find_or_create(self, lookup: Callable[[], Any], build: Callable[[], Any]) -> UpsertResult:
        existing = lookup()
        if existing is not None:
            return UpsertResult(UpsertStatus.EXISTS, existing.id, existing, "EXISTS")

        record = build()
        self.db.add(record)
        try:
            self.db.flush()
            self._audit(record, "CREATED", None, self._snapshot(record))
            self.db.commit()
        except IntegrityError:
            # Lost a race against a concurrent insert of the same natural key.
            self.db.rollback()
            existing = lookup()
            if existing is None:
                raise
            logger.info("%s natural key already inserted concurrently; reusing id=%s", self.entity_name, existing.id)
            return UpsertResult(UpsertStatus.EXISTS, existing.id, existing, "EXISTS")

        self.db.refresh(record)
        logger.info("Created %s id=%s", self.entity_name, record.id)
        return UpsertResult(UpsertStatus.CREATED, record.id, record, "NOT FOUND (CREATED NOW)")

    def _snapshot(self, record) -> dict[str, Any]:
        return {}

    def _audit(self, record, verb: str, old_value, new_value) -> None:
        create_audit_log(
            self.db,
            entity_type=self.model.__tablename__,
            entity_id=str(record.id),
            action=f"{self.entity_name.upper()}_{verb}",
            old_value=old_value,
            new_value=new_value,
            actor_type=self.actor_type,
            actor_id=self.actor_id,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
        )

    def _commit(self) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise


class PartyGateway(EntityGateway):
    model = Party
    entity_name = "party"
    updatable_fields = ("legal_name", "trade_name", "tax_id", "kind")

    def find_by_tax_id(self, tax_id: Any) -> Optional[Party]:
        normalized = normalize_tax_id(tax_id)
        if not normalized:
            return None
        return self.db.execute(select(Party).where(Party.tax_id == normalized)).scalar_one_or_none()

    def find_or_create(
        self,
        tax_id: Any,
        legal_name: Optional[str],
        *,
        role: str = "PARTY",
        trade_name: Optional[str] = None,
    ) -> UpsertResult:
        normalized = normalize_tax_id(tax_id)
        legal_name = (legal_name or "").strip()
        if not normalized or not legal_name:
            return UpsertResult(
                UpsertStatus.ERROR_DATA,
                message=f"Insufficient data to find or create {role}",
            )

        def build() -> Party:
            return Party(
                kind=infer_party_kind(normalized).value,
                legal_name=legal_name,
                trade_name=(trade_name or "").strip() or legal_name,
                tax_id=normalized,
                status=RecordStatus.ACTIVE.value,
            )

        return self._find_or_create(lambda: self.find_by_tax_id(normalized), build)

    def _prepare_changes(self, record, changes):
        if "tax_id" in changes:
            normalized = normalize_tax_id(changes["tax_id"])
            if not normalized:
                changes.pop("tax_id")
            else:
                changes["tax_id"] = normalized
                changes.setdefault("kind", infer_party_kind(normalized).value)
        if "kind" in changes:
            changes["kind"] = PartyKind(changes["kind"]).value
        return changes

    def _count_references(self, record) -> int:
        return self.db.execute(
            select(func.count(Movement.id)).where(
                or_(Movement.supplier_id == record.id, Movement.billed_to_id == record.id)
            )
        ).scalar_one()

    def _apply_list_filters(self, stmt, *, term, kind, include_inactive):
        if not include_inactive:
            stmt = stmt.where(Party.status == RecordStatus.ACTIVE.value)
        if kind:
            stmt = stmt.where(Party.kind == kind.upper())
        if term:
            pattern = func.lower(f"%{term}%")
            digits = normalize_tax_id(term)
            clauses = [
                func.lower(Party.legal_name).like(pattern),
                func.lower(Party.trade_name).like(pattern),
            ]
            if digits:
                clauses.append(Party.tax_id.like(f"%{digits}%"))
            stmt = stmt.where(or_(*clauses))
        return stmt.order_by(Party.legal_name)

    def _snapshot(self, record) -> dict[str, Any]:
        return {"legal_name": record.legal_name, "tax_id": record.tax_id, "kind": record.kind}


class ClassificationGateway(EntityGateway):
    model = Classification
    entity_name = "classification"
    updatable_fields = ("description", "kind")

    def find_by_description(self, description: str, kind: str = ClassificationKind.EXPENSE.value) -> Optional[Classification]:
        description = (description or "").strip()
        if not description:
            return None
        return self.db.execute(
            select(Classification).where(
                func.lower(Classification.description) == func.lower(description),
                Classification.kind == kind,
            )
        ).scalar_one_or_none()

    def find_or_create(self, description: Optional[str], kind: str = ClassificationKind.EXPENSE.value) -> UpsertResult:
        description = (description or "").strip()
        if not description:
            return UpsertResult(UpsertStatus.ERROR_DATA, message="Classification description not provided")
        kind = ClassificationKind((kind or ClassificationKind.EXPENSE.value).upper()).value

        def build() -> Classification:
            return Classification(kind=kind, description=description, status=RecordStatus.ACTIVE.value)

        return self._find_or_create(lambda: self.find_by_description(description, kind), build)

    def _prepare_changes(self, record, changes):
        if "kind" in changes:
            changes["kind"] = ClassificationKind(changes["kind"]).value
        if "description" in changes:
            changes["description"] = changes["description"].strip()
            if not changes["description"]:
                changes.pop("description")
        return changes

    def _count_references(self, record) -> int:
        return self.db.execute(
            select(func.count(MovementClassification.id)).where(
                MovementClassification.classification_id == record.id
            )
        ).scalar_one()

    def _apply_list_filters(self, stmt, *, term, kind, include_inactive):
        if not include_inactive:
            stmt = stmt.where(Classification.status == RecordStatus.ACTIVE.value)
        if kind:
            stmt = stmt.where(Classification.kind == kind.upper())
        if term:
            stmt = stmt.where(func.lower(Classification.description).like(func.lower(f"%{term}%")))
        return stmt.order_by(Classification.description)

    def _snapshot(self, record) -> dict[str, Any]:
        return {"description": record.description, "kind": record.kind}


class MovementGateway(EntityGateway):
    model = Movement
    entity_name = "movement"
    updatable_fields = ("invoice_number", "issue_date", "description")
    inactive_status = MovementStatus.INACTIVE.value

    def create_with_installments(
        self,
        *,
        supplier_id: Optional[int],
        billed_to_id: Optional[int],
        classification_ids: list[int],
        total_cents: Any,
        issue_date: Optional[date],
        invoice_number: Optional[str] = None,
        description: Optional[str] = None,
        installment_count: Any = 1,
        due_date: Optional[date] = None,
    ) -> Movement:
        """Create a payable movement with its installments and classification links.

        Raises ``InvalidMovementError`` (nothing is written) when a foreign id is
        missing or the converted total is not positive.
        """
        classification_ids = [cid for cid in classification_ids or [] if cid]
        if not supplier_id or not billed_to_id or not classification_ids:
            raise InvalidMovementError("Movement requires supplier, billed-to and classification ids")

        total = cents_to_amount(total_cents)
        if total <= 0:
            raise InvalidMovementError(f"Total amount must be positive, got {total}")

        try:
            count = int(installment_count or 1)
        except (TypeError, ValueError) as exc:
            raise InvalidMovementError(f"Installment count {installment_count!r} is not an integer") from exc
        if count < 1:
            raise InvalidMovementError(f"Installment count must be at least 1, got {count}")

        today = date.today()
        issue_date = issue_date or today
        first_due = due_date or today

        movement = Movement(
            movement_type="PAYABLE",
            invoice_number=invoice_number,
            issue_date=issue_date,
            description=description or (f"NF {invoice_number}" if invoice_number else None),
            status=MovementStatus.PENDING.value,
            total_amount=total,
            supplier_id=supplier_id,
            billed_to_id=billed_to_id,
        )
        for classification_id in dict.fromkeys(classification_ids):
            movement.classification_links.append(MovementClassification(classification_id=classification_id))
        for label, installment_due, amount in split_installments(total, count, first_due):
            movement.installments.append(
                Installment(
                    label=label,
                    due_date=installment_due,
                    amount=amount,
                    paid_amount=Decimal("0.00"),
                    balance=amount,
                    status=InstallmentStatus.PENDING.value,
                )
            )

        self.db.add(movement)
        try:
            self.db.flush()
            self._audit(
                movement,
                "CREATED",
                None,
                {
                    "invoice_number": invoice_number,
                    "total_amount": float(total),
                    "installments": count,
                    "supplier_id": supplier_id,
                    "billed_to_id": billed_to_id,
                    "classification_ids": list(dict.fromkeys(classification_ids)),
                },
            )
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise InvalidMovementError(f"Movement references unknown records: {exc.orig}") from exc

        self.db.refresh(movement)
        logger.info(
            "Created movement id=%s invoice=%s total=%s installments=%d",
            movement.id,
            invoice_number,
            total,
            count,
        )
        return movement

    def search(self, filters: Mapping[str, Any]) -> list[Movement]:
        """Read path for the natural-language query translator."""
        stmt = select(Movement).join(Party, Movement.supplier_id == Party.id)

        name = filters.get("counterparty_name")
        if name:
            stmt = stmt.where(func.lower(Party.legal_name).like(func.lower(f"%{name}%")))

        tax_id = normalize_tax_id(filters.get("tax_id"))
        if tax_id:
            stmt = stmt.where(Party.tax_id == tax_id)

        if filters.get("date_from"):
            stmt = stmt.where(Movement.issue_date >= filters["date_from"])
        if filters.get("date_to"):
            stmt = stmt.where(Movement.issue_date <= filters["date_to"])

        if filters.get("value_min") is not None:
            stmt = stmt.where(Movement.total_amount >= Decimal(str(filters["value_min"])))
        if filters.get("value_max") is not None:
            stmt = stmt.where(Movement.total_amount <= Decimal(str(filters["value_max"])))

        category = filters.get("category")
        if category:
            stmt = stmt.where(
                Movement.classification_links.any(
                    MovementClassification.classification.has(
                        func.lower(Classification.description).like(func.lower(f"%{category}%"))
                    )
                )
            )

        invoice_number = filters.get("invoice_number")
        if invoice_number:
            stmt = stmt.where(Movement.invoice_number.like(f"%{invoice_number}%"))

        stmt = stmt.order_by(Movement.issue_date.desc(), Movement.id.desc())
        movements = list(self.db.execute(stmt).unique().scalars().all())
        logger.info("Movement search matched %d row(s)", len(movements))
        return movements

    def _after_soft_delete(self, record) -> None:
        # An inactive movement must not be retrievable through the vector index.
        self.db.execute(delete(DocumentContext).where(DocumentContext.movement_id == record.id))

    def list_all(self) -> list[Movement]:
        stmt = select(Movement).order_by(Movement.id)
        return list(self.db.execute(stmt).unique().scalars().all())

    def _apply_list_filters(self, stmt, *, term, kind, include_inactive):
        if not include_inactive:
            stmt = stmt.where(Movement.status == MovementStatus.PENDING.value)
        if kind:
            stmt = stmt.where(Movement.movement_type == kind.upper())
        if term:
            pattern = func.lower(f"%{term}%")
            stmt = stmt.join(Party, Movement.supplier_id == Party.id).where(
                or_(
                    Movement.invoice_number.like(f"%{term}%"),
                    func.lower(Party.legal_name).like(pattern),
                )
            )
        return stmt.order_by(Movement.issue_date.desc(), Movement.id.desc())

    def register_payment(self, installment_id: int, amount: Any) -> PaymentResult:
        installment = self.db.get(Installment, installment_id)
        if installment is None:
            raise NotFoundError("installment", installment_id)

        paid = Decimal(str(amount)).quantize(CENTS, rounding=ROUND_HALF_UP)
        if paid <= 0:
            raise InvalidMovementError(f"Payment amount must be positive, got {paid}")

        old_value = {"balance": float(installment.balance), "status": installment.status}
        installment.paid_amount = Decimal(str(installment.paid_amount or 0)) + paid
        installment.balance = Decimal(str(installment.amount)) - installment.paid_amount
        installment.status = (
            InstallmentStatus.PAID.value if installment.balance <= 0 else InstallmentStatus.PENDING.value
        )

        movement = installment.movement
        if movement.status != MovementStatus.INACTIVE.value:
            all_paid = all(item.status == InstallmentStatus.PAID.value for item in movement.installments)
            movement.status = MovementStatus.PAID.value if all_paid else MovementStatus.PENDING.value

        create_audit_log(
            self.db,
            entity_type="installments",
            entity_id=str(installment.id),
            action="INSTALLMENT_PAYMENT_REGISTERED",
            old_value=old_value,
            new_value={
                "paid": float(paid),
                "balance": float(installment.balance),
                "status": installment.status,
            },
            actor_type=self.actor_type,
            actor_id=self.actor_id,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
        )
        self._commit()
        self.db.refresh(installment)
        return PaymentResult(installment=installment, movement_status=movement.status)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, date):
        return value.isoformat()
    return value
