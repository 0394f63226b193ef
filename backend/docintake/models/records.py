import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from sqlalchemy.types import CHAR, TypeDecorator

Base = declarative_base()


class GUID(TypeDecorator):
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value if dialect.name == "postgresql" else str(value)
        if isinstance(value, str):
            try:
                parsed = uuid.UUID(value)
            except ValueError:
                return value
            return parsed if dialect.name == "postgresql" else str(parsed)
        return value

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(value)
        except ValueError:
            return value


UUID_TYPE = GUID()
JSON_TYPE = JSON().with_variant(JSONB, "postgresql")


def _pk():
    return Column(
        UUID_TYPE,
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
    )

    id = _pk()
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(UUID_TYPE, nullable=False)
    action = Column(String(64), nullable=False)
    old_value = Column(JSON_TYPE)
    new_value = Column(JSON_TYPE)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(String(64))
    audit_meta = Column("metadata", JSON_TYPE, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# --- Reference data ---


class ExpenseCategory(Base):
    __tablename__ = "expense_categories"
    __table_args__ = (Index("idx_category_company", "company_id"),)

    id = _pk()
    company_id = Column(String(64), nullable=False)
    name = Column(String(128), nullable=False)
    description = Column(Text)
    gl_account = Column(String(16))
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Vendor(Base):
    __tablename__ = "vendors"
    __table_args__ = (Index("idx_vendor_company", "company_id"),)

    id = _pk()
    company_id = Column(String(64), nullable=False)
    name = Column(String(256), nullable=False)
    email = Column(String(255))
    phone = Column(String(40))
    website = Column(String(255))
    address = Column(JSON_TYPE)
    tax_id = Column(String(64))
    description = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Contact(Base):
    __tablename__ = "contacts"
    __table_args__ = (Index("idx_contact_company", "company_id"),)

    id = _pk()
    company_id = Column(String(64), nullable=False)
    name = Column(String(256), nullable=False)
    email = Column(String(255))
    phone = Column(String(40))
    title = Column(String(128))
    company_name = Column(String(256))
    website = Column(String(255))
    vendor_id = Column(UUID_TYPE, ForeignKey("vendors.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Expense(Base):
    __tablename__ = "expenses"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="chk_expense_amount_non_negative"),
        Index("idx_expense_company", "company_id"),
    )

    id = _pk()
    company_id = Column(String(64), nullable=False)
    vendor_id = Column(UUID_TYPE, ForeignKey("vendors.id", ondelete="SET NULL"))
    category_id = Column(UUID_TYPE, ForeignKey("expense_categories.id", ondelete="SET NULL"))
    vendor_name = Column(String(256))
    amount = Column(Numeric(12, 2), nullable=False)
    subtotal = Column(Numeric(12, 2))
    tax_amount = Column(Numeric(12, 2))
    currency = Column(String(10), nullable=False, default="USD", server_default=text("'USD'"))
    expense_date = Column(Date)
    description = Column(Text)
    invoice_number = Column(String(64))
    gl_account = Column(String(16))
    source_filename = Column(String(256))
    created_by = Column(String(64))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# --- Suggestion queue ---


class SuggestedEntity(Base):
    __tablename__ = "suggested_entities"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','approved','rejected','merged')",
            name="chk_suggestion_status",
        ),
        CheckConstraint("entity_kind IN ('vendor','category')", name="chk_suggestion_kind"),
        UniqueConstraint("dedupe_key", name="uniq_suggestion_dedupe_key"),
        Index("idx_suggestion_company_status", "company_id", "status"),
    )

    id = _pk()
    company_id = Column(String(64), nullable=False)
    entity_kind = Column(String(16), nullable=False)
    suggested_name = Column(String(256), nullable=False)
    normalized_name = Column(String(256), nullable=False)
    # Held only while pending so a rejected name can be proposed again.
    dedupe_key = Column(String(400))
    confidence = Column(Float, nullable=False, default=0.0)
    usage_count = Column(Integer, nullable=False, default=1, server_default=text("1"))
    status = Column(String(16), nullable=False, default="pending", server_default=text("'pending'"))
    context = Column(JSON_TYPE)
    enrichment = Column(JSON_TYPE)
    created_by = Column(String(64))
    reviewed_by = Column(String(64))
    review_notes = Column(Text)
    created_entity_id = Column(UUID_TYPE)
    merged_into_id = Column(UUID_TYPE, ForeignKey("suggested_entities.id", ondelete="SET NULL"))
    first_suggested_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_suggested_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    reviewed_at = Column(DateTime(timezone=True))


# --- Action cards ---


class ActionCardRecord(Base):
    __tablename__ = "action_cards"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','approved','rejected','executing','completed')",
            name="chk_action_card_status",
        ),
        Index("idx_action_card_company_status", "company_id", "status"),
        Index("idx_action_card_conversation", "conversation_id"),
    )

    id = _pk()
    company_id = Column(String(64), nullable=False)
    conversation_id = Column(UUID_TYPE, ForeignKey("conversations.id", ondelete="SET NULL"))
    card_type = Column(String(32), nullable=False)
    title = Column(String(256), nullable=False)
    data = Column(JSON_TYPE, nullable=False)
    confidence = Column(Float, nullable=False)
    priority = Column(String(16), nullable=False, default="medium")
    status = Column(String(16), nullable=False, default="pending", server_default=text("'pending'"))
    approval_required = Column(Boolean, nullable=False, default=True)
    reasons = Column(JSON_TYPE)
    expires_at = Column(DateTime(timezone=True))
    result_entity_id = Column(UUID_TYPE)
    created_by = Column(String(64))
    decided_by = Column(String(64))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# --- Conversations ---


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        CheckConstraint(
            "status IN ('active','waiting_approval','closed')",
            name="chk_conversation_status",
        ),
        Index("idx_conversation_last_activity", "last_activity_at"),
    )

    id = _pk()
    company_id = Column(String(64), nullable=False)
    user_id = Column(String(64))
    status = Column(String(24), nullable=False, default="active", server_default=text("'active'"))
    context = Column(String(64))
    last_activity_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class ConversationMessage(Base):
    __tablename__ = "conversation_messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "seq", name="uniq_conversation_message_seq"),
    )

    id = _pk()
    conversation_id = Column(
        UUID_TYPE,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    seq = Column(Integer, nullable=False)
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    message_meta = Column("metadata", JSON_TYPE)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
