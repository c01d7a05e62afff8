from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

from invoice_ledger.core.config import get_settings

Base = declarative_base()

JSON_TYPE = JSON().with_variant(JSONB, "postgresql")
EMBEDDING_TYPE = JSON().with_variant(Vector(get_settings().ai_embedding_dimensions), "postgresql")


class Party(Base):
    __tablename__ = "parties"
    __table_args__ = (
        UniqueConstraint("tax_id", name="uq_parties_tax_id"),
        CheckConstraint("kind IN ('INDIVIDUAL','ORGANIZATION')", name="chk_parties_kind"),
        CheckConstraint("status IN ('ACTIVE','INACTIVE')", name="chk_parties_status"),
        Index("idx_parties_legal_name", "legal_name"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(16), nullable=False)
    legal_name = Column(String(150), nullable=False)
    trade_name = Column(String(150))
    tax_id = Column(String(45), nullable=False)
    status = Column(String(16), nullable=False, default="ACTIVE", server_default=text("'ACTIVE'"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class Classification(Base):
    __tablename__ = "classifications"
    __table_args__ = (
        CheckConstraint("kind IN ('EXPENSE','REVENUE')", name="chk_classifications_kind"),
        CheckConstraint("status IN ('ACTIVE','INACTIVE')", name="chk_classifications_status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(16), nullable=False, default="EXPENSE", server_default=text("'EXPENSE'"))
    description = Column(String(150), nullable=False)
    status = Column(String(16), nullable=False, default="ACTIVE", server_default=text("'ACTIVE'"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


Index(
    "uq_classifications_description_kind",
    func.lower(Classification.description),
    Classification.kind,
    unique=True,
)


class Movement(Base):
    __tablename__ = "movements"
    __table_args__ = (
        CheckConstraint("total_amount > 0", name="chk_movements_total_positive"),
        CheckConstraint("movement_type IN ('PAYABLE','RECEIVABLE')", name="chk_movements_type"),
        CheckConstraint("status IN ('PENDING','PAID','INACTIVE')", name="chk_movements_status"),
        Index("idx_movements_supplier", "supplier_id"),
        Index("idx_movements_billed_to", "billed_to_id"),
        Index("idx_movements_issue_date", "issue_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    movement_type = Column(String(16), nullable=False, default="PAYABLE", server_default=text("'PAYABLE'"))
    invoice_number = Column(String(50))
    issue_date = Column(Date, nullable=False)
    description = Column(Text)
    status = Column(String(16), nullable=False, default="PENDING", server_default=text("'PENDING'"))
    total_amount = Column(Numeric(12, 2), nullable=False)
    supplier_id = Column(Integer, ForeignKey("parties.id"), nullable=False)
    billed_to_id = Column(Integer, ForeignKey("parties.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    supplier = relationship("Party", foreign_keys=[supplier_id], lazy="joined")
    billed_to = relationship("Party", foreign_keys=[billed_to_id], lazy="joined")
    classification_links = relationship(
        "MovementClassification",
        back_populates="movement",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    installments = relationship(
        "Installment",
        back_populates="movement",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Installment.id",
        lazy="selectin",
    )

    @property
    def classifications(self) -> list["Classification"]:
        return [link.classification for link in self.classification_links]


class MovementClassification(Base):
    __tablename__ = "movement_classifications"
    __table_args__ = (
        UniqueConstraint("movement_id", "classification_id", name="uq_movement_classification"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    movement_id = Column(Integer, ForeignKey("movements.id", ondelete="CASCADE"), nullable=False)
    classification_id = Column(Integer, ForeignKey("classifications.id"), nullable=False)

    movement = relationship("Movement", back_populates="classification_links")
    classification = relationship("Classification", lazy="joined")


class Installment(Base):
    __tablename__ = "installments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_installments_amount_positive"),
        CheckConstraint("status IN ('PENDING','PAID')", name="chk_installments_status"),
        Index("idx_installments_movement", "movement_id"),
        Index("idx_installments_due_date", "due_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    movement_id = Column(Integer, ForeignKey("movements.id", ondelete="CASCADE"), nullable=False)
    label = Column(String(45), nullable=False)
    due_date = Column(Date, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0, server_default=text("0"))
    balance = Column(Numeric(12, 2), nullable=False)
    status = Column(String(16), nullable=False, default="PENDING", server_default=text("'PENDING'"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    movement = relationship("Movement", back_populates="installments")


class DocumentContext(Base):
    """Derived retrieval chunk: one synthesised text + embedding per movement."""

    __tablename__ = "document_contexts"
    __table_args__ = (UniqueConstraint("movement_id", name="uq_document_contexts_movement"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    movement_id = Column(Integer, ForeignKey("movements.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    embedding = Column(EMBEDDING_TYPE, nullable=False)
    metadata_ = Column("metadata", JSON_TYPE)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_logs_entity", "entity_type", "entity_id"),
        Index("idx_audit_logs_action", "action"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(64), nullable=False)
    action = Column(String(64), nullable=False)
    old_value = Column(JSON_TYPE)
    new_value = Column(JSON_TYPE)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(String(64))
    ip_address = Column(String(45))
    user_agent = Column(Text)
    metadata_ = Column("metadata", JSON_TYPE)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
