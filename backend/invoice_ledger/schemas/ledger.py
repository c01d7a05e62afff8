from datetime import date, datetime
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class PartyKind(StrEnum):
    INDIVIDUAL = "INDIVIDUAL"
    ORGANIZATION = "ORGANIZATION"


class RecordStatus(StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class ClassificationKind(StrEnum):
    EXPENSE = "EXPENSE"
    REVENUE = "REVENUE"


class MovementStatus(StrEnum):
    PENDING = "PENDING"
    PAID = "PAID"
    INACTIVE = "INACTIVE"


class InstallmentStatus(StrEnum):
    PENDING = "PENDING"
    PAID = "PAID"


class UpsertStatus(StrEnum):
    EXISTS = "EXISTS"
    CREATED = "CREATED"
    ERROR_DATA = "ERROR_DATA"


# --- Parties ---


class PartyCreate(BaseModel):
    tax_id: str = Field(..., validation_alias="documento", min_length=1, max_length=45)
    legal_name: str = Field(..., validation_alias="razaosocial", min_length=1, max_length=150)
    trade_name: Optional[str] = Field(default=None, validation_alias="fantasia", max_length=150)
    role: str = Field(default="PARTY", validation_alias="tipo")

    model_config = ConfigDict(populate_by_name=True)


class PartyUpdate(BaseModel):
    legal_name: Optional[str] = Field(default=None, max_length=150)
    trade_name: Optional[str] = Field(default=None, max_length=150)
    tax_id: Optional[str] = Field(default=None, max_length=45)
    kind: Optional[PartyKind] = None

    model_config = ConfigDict(extra="ignore")


class PartyOut(BaseModel):
    id: int
    kind: PartyKind
    legal_name: str
    trade_name: Optional[str] = None
    tax_id: str
    status: RecordStatus
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# --- Classifications ---


class ClassificationCreate(BaseModel):
    description: str = Field(..., validation_alias="descricao", min_length=1, max_length=150)
    kind: ClassificationKind = Field(default=ClassificationKind.EXPENSE, validation_alias="tipo")

    model_config = ConfigDict(populate_by_name=True)


class ClassificationUpdate(BaseModel):
    description: Optional[str] = Field(default=None, max_length=150)
    kind: Optional[ClassificationKind] = None

    model_config = ConfigDict(extra="ignore")


class ClassificationOut(BaseModel):
    id: int
    kind: ClassificationKind
    description: str
    status: RecordStatus
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# --- Movements / installments ---


class InstallmentOut(BaseModel):
    id: int
    label: str
    due_date: date
    amount: float
    paid_amount: float
    balance: float
    status: InstallmentStatus

    model_config = ConfigDict(from_attributes=True)


class MovementOut(BaseModel):
    id: int
    movement_type: str
    invoice_number: Optional[str] = None
    issue_date: date
    description: Optional[str] = None
    status: MovementStatus
    total_amount: float
    supplier: PartyOut
    billed_to: PartyOut
    classifications: list[ClassificationOut]
    installments: list[InstallmentOut]

    model_config = ConfigDict(from_attributes=True)


class MovementUpdate(BaseModel):
    invoice_number: Optional[str] = Field(default=None, max_length=50)
    issue_date: Optional[date] = None
    description: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class InstallmentPaymentRequest(BaseModel):
    amount: float = Field(..., gt=0, validation_alias="valor_pago")

    model_config = ConfigDict(populate_by_name=True)


# --- Gateway results ---


class UpsertResultOut(BaseModel):
    status: UpsertStatus
    id: Optional[int] = None
    message: str
    data: Optional[dict[str, Any]] = None


class DeleteResultOut(BaseModel):
    status: str
    message: str
