"""Conversation transcripts behind an injectable store."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional, Protocol

from sqlalchemy import func
from sqlalchemy.orm import Session

from docintake.core.errors import EntityNotFound, StateTransitionError
from docintake.models.records import Conversation, ConversationMessage
from docintake.schemas.conversation import (
    ConversationContext,
    ConversationMessageOut,
    ConversationStatus,
    MessageRole,
)
from docintake.utils.clock import as_aware, db_now

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    ConversationStatus.ACTIVE: [ConversationStatus.WAITING_APPROVAL, ConversationStatus.CLOSED],
    ConversationStatus.WAITING_APPROVAL: [ConversationStatus.ACTIVE, ConversationStatus.CLOSED],
    ConversationStatus.CLOSED: [],
}


class ConversationStore(Protocol):
    def create(self, company_id: str, *, user_id: Optional[str] = None, context: Optional[str] = None) -> ConversationContext: ...

    def get(self, conversation_id: str, *, company_id: str) -> ConversationContext: ...

    def append(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        *,
        company_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ConversationMessageOut: ...

    def set_status(self, conversation_id: str, status: ConversationStatus, *, company_id: str) -> bool: ...

    def expire_idle(self) -> int: ...


class SqlConversationStore:
    """Writes are flushed; the caller owns the transaction."""

    def __init__(self, db: Session, *, idle_timeout_minutes: int = 30) -> None:
        self.db = db
        self.idle_timeout = timedelta(minutes=idle_timeout_minutes)

    def _row(self, conversation_id: str, company_id: str) -> Conversation:
        row = (
            self.db.query(Conversation)
            .filter(Conversation.id == conversation_id, Conversation.company_id == company_id)
            .populate_existing()
            .one_or_none()
        )
        if row is None:
            raise EntityNotFound("conversation", conversation_id)
        return row

    def _context(self, row: Conversation) -> ConversationContext:
        messages = (
            self.db.query(ConversationMessage)
            .filter(ConversationMessage.conversation_id == row.id)
            .order_by(ConversationMessage.seq.asc())
            .all()
        )
        return ConversationContext(
            id=str(row.id),
            company_id=row.company_id,
            user_id=row.user_id,
            status=ConversationStatus(row.status),
            context=row.context,
            last_activity_at=as_aware(row.last_activity_at),
            messages=[
                ConversationMessageOut(
                    seq=message.seq,
                    role=MessageRole(message.role),
                    content=message.content,
                    metadata=message.message_meta,
                    created_at=as_aware(message.created_at),
                )
                for message in messages
            ],
        )

    def create(self, company_id: str, *, user_id: Optional[str] = None, context: Optional[str] = None) -> ConversationContext:
        row = Conversation(
            company_id=company_id,
            user_id=user_id,
            context=context,
            status=ConversationStatus.ACTIVE.value,
            last_activity_at=db_now(self.db),
        )
        self.db.add(row)
        self.db.flush()
        return self._context(row)

    def get(self, conversation_id: str, *, company_id: str) -> ConversationContext:
        return self._context(self._row(conversation_id, company_id))

    def append(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        *,
        company_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ConversationMessageOut:
        row = self._row(conversation_id, company_id)
        if row.status == ConversationStatus.CLOSED.value:
            raise StateTransitionError("conversation", row.status, "append")

        last_seq = (
            self.db.query(func.max(ConversationMessage.seq))
            .filter(ConversationMessage.conversation_id == row.id)
            .scalar()
        )
        now = db_now(self.db)
        message = ConversationMessage(
            conversation_id=row.id,
            seq=(last_seq or 0) + 1,
            role=role.value,
            content=content,
            message_meta=metadata,
            created_at=now,
        )
        self.db.add(message)
        row.last_activity_at = now
        self.db.flush()
        return ConversationMessageOut(
            seq=message.seq,
            role=role,
            content=content,
            metadata=metadata,
            created_at=as_aware(now),
        )

    def set_status(self, conversation_id: str, status: ConversationStatus, *, company_id: str) -> bool:
        row = self._row(conversation_id, company_id)
        current = ConversationStatus(row.status)
        if current == status:
            return False
        if status not in ALLOWED_TRANSITIONS[current]:
            raise StateTransitionError("conversation", current.value, status.value)
        row.status = status.value
        row.last_activity_at = db_now(self.db)
        self.db.flush()
        return True

    def expire_idle(self) -> int:
        """Close active conversations idle past the timeout.

        Conversations waiting on an approval are left open.
        """
        cutoff = db_now(self.db) - self.idle_timeout
        expired = (
            self.db.query(Conversation)
            .filter(
                Conversation.status == ConversationStatus.ACTIVE.value,
                Conversation.last_activity_at < cutoff,
            )
            .update({Conversation.status: ConversationStatus.CLOSED.value}, synchronize_session=False)
        )
        if expired:
            logger.info("Closed %d idle conversation(s)", expired)
        return expired
