"""init docintake schema

Revision ID: 20261018_000001
Revises: 
Create Date: 2026-10-18 09:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261018_000001"
down_revision = None
branch_labels = None
depends_on = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        nullable=False,
        server_default=sa.text("gen_random_uuid()"),
    )


def _jsonb(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.JSONB(astext_type=sa.Text()), **kwargs)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "audit_logs",
        _id_column(),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        _jsonb("old_value"),
        _jsonb("new_value"),
        sa.Column("actor_type", sa.String(length=50), nullable=False),
        sa.Column("actor_id", sa.String(length=64)),
        _jsonb("metadata"),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("idx_audit_action", "audit_logs", ["action"])

    op.create_table(
        "expense_categories",
        _id_column(),
        sa.Column("company_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("gl_account", sa.String(length=16)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
    )
    op.create_index("idx_category_company", "expense_categories", ["company_id"])

    op.create_table(
        "vendors",
        _id_column(),
        sa.Column("company_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("email", sa.String(length=255)),
        sa.Column("phone", sa.String(length=40)),
        sa.Column("website", sa.String(length=255)),
        _jsonb("address"),
        sa.Column("tax_id", sa.String(length=64)),
        sa.Column("description", sa.Text()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
    )
    op.create_index("idx_vendor_company", "vendors", ["company_id"])

    op.create_table(
        "contacts",
        _id_column(),
        sa.Column("company_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("email", sa.String(length=255)),
        sa.Column("phone", sa.String(length=40)),
        sa.Column("title", sa.String(length=128)),
        sa.Column("company_name", sa.String(length=256)),
        sa.Column("website", sa.String(length=255)),
        sa.Column(
            "vendor_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("vendors.id", ondelete="SET NULL"),
        ),
        _created_at(),
    )
    op.create_index("idx_contact_company", "contacts", ["company_id"])

    op.create_table(
        "expenses",
        _id_column(),
        sa.Column("company_id", sa.String(length=64), nullable=False),
        sa.Column(
            "vendor_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("vendors.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "category_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("expense_categories.id", ondelete="SET NULL"),
        ),
        sa.Column("vendor_name", sa.String(length=256)),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("subtotal", sa.Numeric(12, 2)),
        sa.Column("tax_amount", sa.Numeric(12, 2)),
        sa.Column("currency", sa.String(length=10), nullable=False, server_default=sa.text("'USD'")),
        sa.Column("expense_date", sa.Date()),
        sa.Column("description", sa.Text()),
        sa.Column("invoice_number", sa.String(length=64)),
        sa.Column("gl_account", sa.String(length=16)),
        sa.Column("source_filename", sa.String(length=256)),
        sa.Column("created_by", sa.String(length=64)),
        _created_at(),
        sa.CheckConstraint("amount >= 0", name="chk_expense_amount_non_negative"),
    )
    op.create_index("idx_expense_company", "expenses", ["company_id"])

    op.create_table(
        "suggested_entities",
        _id_column(),
        sa.Column("company_id", sa.String(length=64), nullable=False),
        sa.Column("entity_kind", sa.String(length=16), nullable=False),
        sa.Column("suggested_name", sa.String(length=256), nullable=False),
        sa.Column("normalized_name", sa.String(length=256), nullable=False),
        sa.Column("dedupe_key", sa.String(length=400)),
        sa.Column("confidence", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'pending'")),
        _jsonb("context"),
        _jsonb("enrichment"),
        sa.Column("created_by", sa.String(length=64)),
        sa.Column("reviewed_by", sa.String(length=64)),
        sa.Column("review_notes", sa.Text()),
        sa.Column("created_entity_id", postgresql.UUID(as_uuid=True)),
        sa.Column(
            "merged_into_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("suggested_entities.id", ondelete="SET NULL"),
        ),
        sa.Column("first_suggested_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("last_suggested_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("reviewed_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint(
            "status IN ('pending','approved','rejected','merged')",
            name="chk_suggestion_status",
        ),
        sa.CheckConstraint("entity_kind IN ('vendor','category')", name="chk_suggestion_kind"),
        sa.UniqueConstraint("dedupe_key", name="uniq_suggestion_dedupe_key"),
    )
    op.create_index("idx_suggestion_company_status", "suggested_entities", ["company_id", "status"])

    op.create_table(
        "conversations",
        _id_column(),
        sa.Column("company_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64)),
        sa.Column("status", sa.String(length=24), nullable=False, server_default=sa.text("'active'")),
        sa.Column("context", sa.String(length=64)),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
        sa.CheckConstraint(
            "status IN ('active','waiting_approval','closed')",
            name="chk_conversation_status",
        ),
    )
    op.create_index("idx_conversation_last_activity", "conversations", ["last_activity_at"])

    op.create_table(
        "conversation_messages",
        _id_column(),
        sa.Column(
            "conversation_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        _jsonb("metadata"),
        _created_at(),
        sa.UniqueConstraint("conversation_id", "seq", name="uniq_conversation_message_seq"),
    )

    op.create_table(
        "action_cards",
        _id_column(),
        sa.Column("company_id", sa.String(length=64), nullable=False),
        sa.Column(
            "conversation_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("conversations.id", ondelete="SET NULL"),
        ),
        sa.Column("card_type", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=256), nullable=False),
        _jsonb("data", nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default=sa.text("'medium'")),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("approval_required", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _jsonb("reasons"),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("result_entity_id", postgresql.UUID(as_uuid=True)),
        sa.Column("created_by", sa.String(length=64)),
        sa.Column("decided_by", sa.String(length=64)),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "status IN ('pending','approved','rejected','executing','completed')",
            name="chk_action_card_status",
        ),
    )
    op.create_index("idx_action_card_company_status", "action_cards", ["company_id", "status"])
    op.create_index("idx_action_card_conversation", "action_cards", ["conversation_id"])


def downgrade() -> None:
    op.drop_index("idx_action_card_conversation", table_name="action_cards")
    op.drop_index("idx_action_card_company_status", table_name="action_cards")
    op.drop_table("action_cards")
    op.drop_table("conversation_messages")
    op.drop_index("idx_conversation_last_activity", table_name="conversations")
    op.drop_table("conversations")
    op.drop_index("idx_suggestion_company_status", table_name="suggested_entities")
    op.drop_table("suggested_entities")
    op.drop_index("idx_expense_company", table_name="expenses")
    op.drop_table("expenses")
    op.drop_index("idx_contact_company", table_name="contacts")
    op.drop_table("contacts")
    op.drop_index("idx_vendor_company", table_name="vendors")
    op.drop_table("vendors")
    op.drop_index("idx_category_company", table_name="expense_categories")
    op.drop_table("expense_categories")
    op.drop_index("idx_audit_action", table_name="audit_logs")
    op.drop_index("idx_audit_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
