from datetime import datetime
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, Field

from docintake.schemas.actions import ActionCard


class ConversationStatus(StrEnum):
    ACTIVE = "active"
    WAITING_APPROVAL = "waiting_approval"
    CLOSED = "closed"


class MessageRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class IntentType(StrEnum):
    PROCESS_DOCUMENT = "process_document"
    CREATE_EXPENSE = "create_expense"
    ADD_CONTACT = "add_contact"
    FIND_VENDOR = "find_vendor"
    APPROVE_ACTION = "approve_action"
    REJECT_ACTION = "reject_action"
    MODIFY_DATA = "modify_data"
    GET_HELP = "get_help"
    ASK_QUESTION = "ask_question"


class IntentEntity(BaseModel):
    type: str
    value: str
    confidence: float
    start: int
    end: int


class DetectedIntent(BaseModel):
    primary: IntentType
    confidence: float = Field(ge=0.0, le=1.0)
    entities: list[IntentEntity] = Field(default_factory=list)
    context: Optional[str] = None
    source: str = "rules"


class ConversationMessageOut(BaseModel):
    seq: int
    role: MessageRole
    content: str
    metadata: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None


class ConversationContext(BaseModel):
    id: str
    company_id: str
    user_id: Optional[str] = None
    status: ConversationStatus
    context: Optional[str] = None
    last_activity_at: datetime
    messages: list[ConversationMessageOut] = Field(default_factory=list)


class PipelineResponse(BaseModel):
    """Shared response shape of document processing and conversation turns."""

    message: str
    action_cards: list[ActionCard] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    needs_approval: bool
    conversation_id: Optional[str] = None
    intent: Optional[DetectedIntent] = None
    document_type: Optional[str] = None
    extracted_data: dict[str, Any] = Field(default_factory=dict)
    warnings: list[dict[str, str]] = Field(default_factory=list)
    redacted_fields: list[str] = Field(default_factory=list)


class CreateConversationRequest(BaseModel):
    context: Optional[str] = Field(default=None, max_length=64)


class ConversationMessageRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=4000)
    context: Optional[str] = Field(default=None, max_length=64)
    conversation_id: Optional[str] = None


class ExpireConversationsResponse(BaseModel):
    expired: int
