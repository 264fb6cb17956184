"""dossier_workflow_core

Creates the dossier workflow tables:
  - products, steps, product_steps          — catalog and per-product step order
  - document_types, step_document_types     — document requirements per step
  - agents                                  — back-office verificateurs / createurs
  - dossiers, step_instances, documents     — client cases and their progress
  - orders                                  — paid purchases that provision dossiers
  - events                                  — append-only outbox for notifications

dossiers.current_step_instance_id ↔ step_instances.dossier_id is a cycle, so the
current-step FK is added after both tables exist.

Revision ID: 3f9c2a7d1b40
Revises:
Create Date: 2026-10-18 09:12:44.203118
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f9c2a7d1b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ── Catalog ───────────────────────────────────────────────────────────
    op.create_table(
        "products",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("dossier_type", sa.String(length=50), nullable=False,
                  server_default="LLC_FORMATION"),
        sa.Column("initial_status", sa.String(length=30), nullable=False,
                  server_default="QUALIFICATION"),
        sa.Column("price_amount", sa.Integer(), nullable=True, comment="Minor units (cents)"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="EUR"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "steps",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("code", sa.String(length=100), nullable=False),
        sa.Column("label", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("step_type", sa.String(length=10), nullable=False, comment="CLIENT | ADMIN"),
        sa.Column("position", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )

    op.create_table(
        "product_steps",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.String(length=36), nullable=False),
        sa.Column("step_id", sa.String(length=36), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("dossier_status_on_approval", sa.String(length=30), nullable=True),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["step_id"], ["steps.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id", "position", name="uq_product_steps_product_position"),
        sa.UniqueConstraint("product_id", "step_id", name="uq_product_steps_product_step"),
    )
    op.create_index("ix_product_steps_product_id", "product_steps", ["product_id"])
    op.create_index("ix_product_steps_step_id", "product_steps", ["step_id"])

    op.create_table(
        "document_types",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("code", sa.String(length=100), nullable=False),
        sa.Column("label", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )

    op.create_table(
        "step_document_types",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("step_id", sa.String(length=36), nullable=False),
        sa.Column("document_type_id", sa.String(length=36), nullable=False),
        sa.ForeignKeyConstraint(["step_id"], ["steps.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["document_type_id"], ["document_types.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("step_id", "document_type_id", name="uq_step_document_types_pair"),
    )
    op.create_index("ix_step_document_types_step_id", "step_document_types", ["step_id"])
    op.create_index("ix_step_document_types_document_type_id", "step_document_types", ["document_type_id"])

    # ── Agents ────────────────────────────────────────────────────────────
    op.create_table(
        "agents",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("agent_type", sa.String(length=20), nullable=False,
                  server_default="VERIFICATEUR", comment="VERIFICATEUR | CREATEUR"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_agents_email", "agents", ["email"], unique=True)

    # ── Dossiers & progress ───────────────────────────────────────────────
    op.create_table(
        "dossiers",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.String(length=36), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="QUALIFICATION"),
        sa.Column("current_step_instance_id", sa.String(length=36), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("is_test", sa.Boolean(), nullable=False, server_default=sa.false(),
                  comment="Excluded from analytics"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "product_id", name="uq_dossiers_user_product"),
    )
    op.create_index("ix_dossiers_user_id", "dossiers", ["user_id"])
    op.create_index("ix_dossiers_product_id", "dossiers", ["product_id"])
    op.create_index("ix_dossiers_status", "dossiers", ["status"])

    op.create_table(
        "step_instances",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("dossier_id", sa.String(length=36), nullable=False),
        sa.Column("step_id", sa.String(length=36), nullable=False),
        sa.Column("assigned_to", sa.String(length=36), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("validation_status", sa.String(length=10), nullable=True,
                  comment="APPROVED | REJECTED"),
        sa.Column("validated_by", sa.String(length=36), nullable=True),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["dossier_id"], ["dossiers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["step_id"], ["steps.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["assigned_to"], ["agents.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["validated_by"], ["agents.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("dossier_id", "step_id", name="uq_step_instances_dossier_step"),
    )
    op.create_index("ix_step_instances_dossier_id", "step_instances", ["dossier_id"])
    op.create_index("ix_step_instances_step_id", "step_instances", ["step_id"])
    op.create_index("ix_step_instances_assigned_to", "step_instances", ["assigned_to"])

    with op.batch_alter_table("dossiers") as batch_op:
        batch_op.create_foreign_key(
            "fk_dossiers_current_step_instance",
            "step_instances",
            ["current_step_instance_id"],
            ["id"],
            ondelete="SET NULL",
        )

    op.create_table(
        "documents",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("dossier_id", sa.String(length=36), nullable=False),
        sa.Column("document_type_id", sa.String(length=36), nullable=False),
        sa.Column("step_instance_id", sa.String(length=36), nullable=True),
        sa.Column("status", sa.String(length=12), nullable=False, server_default="PENDING"),
        sa.Column("source", sa.String(length=10), nullable=False, server_default="CLIENT",
                  comment="CLIENT | ADMIN"),
        sa.Column("current_version_id", sa.String(length=36), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.String(length=36), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["dossier_id"], ["dossiers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["document_type_id"], ["document_types.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["step_instance_id"], ["step_instances.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_documents_dossier_id", "documents", ["dossier_id"])
    op.create_index("ix_documents_document_type_id", "documents", ["document_type_id"])
    op.create_index("ix_documents_step_instance_id", "documents", ["step_instance_id"])
    op.create_index(
        "ix_documents_readiness", "documents",
        ["dossier_id", "document_type_id", "step_instance_id"],
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.String(length=36), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=True, comment="Minor units (cents)"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="EUR"),
        sa.Column("status", sa.String(length=10), nullable=False, server_default="PENDING",
                  comment="PENDING | PAID | FAILED"),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dossier_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["dossier_id"], ["dossiers.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_product_id", "orders", ["product_id"])
    op.create_index("ix_orders_dossier_id", "orders", ["dossier_id"])

    # ── Event outbox ──────────────────────────────────────────────────────
    op.create_table(
        "events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("entity_type", sa.String(length=30), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("dossier_id", sa.String(length=36), nullable=True),
        sa.Column("event_type", sa.String(length=40), nullable=False),
        sa.Column("actor_type", sa.String(length=10), nullable=False, server_default="SYSTEM"),
        sa.Column("actor_id", sa.String(length=255), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_events_entity", "events", ["entity_type", "entity_id"])
    op.create_index("ix_events_outbox", "events", ["published_at", "created_at"])
    op.create_index("ix_events_type", "events", ["event_type"])
    op.create_index("ix_events_dossier", "events", ["dossier_id", "created_at"])


def downgrade():
    op.drop_table("events")
    op.drop_table("orders")
    op.drop_table("documents")
    with op.batch_alter_table("dossiers") as batch_op:
        batch_op.drop_constraint("fk_dossiers_current_step_instance", type_="foreignkey")
    op.drop_table("step_instances")
    op.drop_table("dossiers")
    op.drop_table("agents")
    op.drop_table("step_document_types")
    op.drop_table("document_types")
    op.drop_table("product_steps")
    op.drop_table("steps")
    op.drop_table("products")
