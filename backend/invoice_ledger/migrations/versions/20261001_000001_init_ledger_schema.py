"""init ledger schema

Revision ID: 20261001_000001
Revises:
Create Date: 2026-10-01 09:30:00
"""

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261001_000001"
down_revision = None
branch_labels = None
depends_on = None

EMBEDDING_DIMENSIONS = 768


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "parties",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("legal_name", sa.String(length=150), nullable=False),
        sa.Column("trade_name", sa.String(length=150)),
        sa.Column("tax_id", sa.String(length=45), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'ACTIVE'")),
        *_timestamps(),
        sa.UniqueConstraint("tax_id", name="uq_parties_tax_id"),
        sa.CheckConstraint("kind IN ('INDIVIDUAL','ORGANIZATION')", name="chk_parties_kind"),
        sa.CheckConstraint("status IN ('ACTIVE','INACTIVE')", name="chk_parties_status"),
    )
    op.create_index("idx_parties_legal_name", "parties", ["legal_name"])

    op.create_table(
        "classifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("kind", sa.String(length=16), nullable=False, server_default=sa.text("'EXPENSE'")),
        sa.Column("description", sa.String(length=150), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'ACTIVE'")),
        *_timestamps(),
        sa.CheckConstraint("kind IN ('EXPENSE','REVENUE')", name="chk_classifications_kind"),
        sa.CheckConstraint("status IN ('ACTIVE','INACTIVE')", name="chk_classifications_status"),
    )
    op.execute(
        "CREATE UNIQUE INDEX uq_classifications_description_kind "
        "ON classifications (lower(description), kind)"
    )

    op.create_table(
        "movements",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("movement_type", sa.String(length=16), nullable=False, server_default=sa.text("'PAYABLE'")),
        sa.Column("invoice_number", sa.String(length=50)),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("supplier_id", sa.Integer(), sa.ForeignKey("parties.id"), nullable=False),
        sa.Column("billed_to_id", sa.Integer(), sa.ForeignKey("parties.id"), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("total_amount > 0", name="chk_movements_total_positive"),
        sa.CheckConstraint("movement_type IN ('PAYABLE','RECEIVABLE')", name="chk_movements_type"),
        sa.CheckConstraint("status IN ('PENDING','PAID','INACTIVE')", name="chk_movements_status"),
    )
    op.create_index("idx_movements_supplier", "movements", ["supplier_id"])
    op.create_index("idx_movements_billed_to", "movements", ["billed_to_id"])
    op.create_index("idx_movements_issue_date", "movements", ["issue_date"])

    op.create_table(
        "movement_classifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "movement_id",
            sa.Integer(),
            sa.ForeignKey("movements.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("classification_id", sa.Integer(), sa.ForeignKey("classifications.id"), nullable=False),
        sa.UniqueConstraint("movement_id", "classification_id", name="uq_movement_classification"),
    )

    op.create_table(
        "installments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "movement_id",
            sa.Integer(),
            sa.ForeignKey("movements.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("label", sa.String(length=45), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("paid_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("amount > 0", name="chk_installments_amount_positive"),
        sa.CheckConstraint("status IN ('PENDING','PAID')", name="chk_installments_status"),
    )
    op.create_index("idx_installments_movement", "installments", ["movement_id"])
    op.create_index("idx_installments_due_date", "installments", ["due_date"])

    op.create_table(
        "document_contexts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "movement_id",
            sa.Integer(),
            sa.ForeignKey("movements.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("embedding", Vector(EMBEDDING_DIMENSIONS), nullable=False),
        sa.Column("metadata", postgresql.JSONB()),
        *_timestamps(),
        sa.UniqueConstraint("movement_id", name="uq_document_contexts_movement"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("old_value", postgresql.JSONB()),
        sa.Column("new_value", postgresql.JSONB()),
        sa.Column("actor_type", sa.String(length=50), nullable=False),
        sa.Column("actor_id", sa.String(length=64)),
        sa.Column("ip_address", sa.String(length=45)),
        sa.Column("user_agent", sa.Text()),
        sa.Column("metadata", postgresql.JSONB()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("idx_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("idx_audit_logs_action", "audit_logs", ["action"])


def downgrade() -> None:
    op.drop_index("idx_audit_logs_action", table_name="audit_logs")
    op.drop_index("idx_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("document_contexts")
    op.drop_index("idx_installments_due_date", table_name="installments")
    op.drop_index("idx_installments_movement", table_name="installments")
    op.drop_table("installments")
    op.drop_table("movement_classifications")
    op.drop_index("idx_movements_issue_date", table_name="movements")
    op.drop_index("idx_movements_billed_to", table_name="movements")
    op.drop_index("idx_movements_supplier", table_name="movements")
    op.drop_table("movements")
    op.execute("DROP INDEX IF EXISTS uq_classifications_description_kind")
    op.drop_table("classifications")
    op.drop_index("idx_parties_legal_name", table_name="parties")
    op.drop_table("parties")
