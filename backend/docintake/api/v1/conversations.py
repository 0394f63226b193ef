import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from docintake.core.auth import CurrentUser, get_current_user, require_roles
from docintake.core.config import get_settings
from docintake.core.dependencies import get_conversation_store, get_db, get_pipeline
from docintake.schemas.conversation import (
    ConversationContext,
    ConversationMessageRequest,
    CreateConversationRequest,
    ExpireConversationsResponse,
    PipelineResponse,
)
from docintake.services.conversation.store import SqlConversationStore
from docintake.services.documents.pipeline import DocumentPipeline

logger = logging.getLogger(__name__)

router = APIRouter()


def _ensure_conversation_enabled() -> None:
    if not get_settings().enable_conversation:
        raise HTTPException(404, "Not found")


@router.post("/conversations", response_model=ConversationContext, status_code=201)
async def create_conversation(
    payload: CreateConversationRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    conversations: SqlConversationStore = Depends(get_conversation_store),
):
    _ensure_conversation_enabled()
    conversation = conversations.create(current_user.company_id, user_id=current_user.id, context=payload.context)
    db.commit()
    return conversation


@router.get("/conversations/{conversation_id}", response_model=ConversationContext)
async def get_conversation(
    conversation_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    conversations: SqlConversationStore = Depends(get_conversation_store),
):
    _ensure_conversation_enabled()
    return conversations.get(conversation_id, company_id=current_user.company_id)


async def _handle(
    payload: ConversationMessageRequest,
    conversation_id: str | None,
    current_user: CurrentUser,
    db: Session,
    pipeline: DocumentPipeline,
) -> PipelineResponse:
    _ensure_conversation_enabled()
    response = await pipeline.handle_conversation(
        payload.text,
        payload.context,
        conversation_id,
        company_id=current_user.company_id,
        security=current_user.security,
        actor_id=current_user.id,
    )
    db.commit()
    return response


@router.post("/conversations/messages", response_model=PipelineResponse)
async def post_message(
    payload: ConversationMessageRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    pipeline: DocumentPipeline = Depends(get_pipeline),
):
    return await _handle(payload, payload.conversation_id, current_user, db, pipeline)


@router.post("/conversations/{conversation_id}/messages", response_model=PipelineResponse)
async def post_conversation_message(
    conversation_id: str,
    payload: ConversationMessageRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    pipeline: DocumentPipeline = Depends(get_pipeline),
):
    return await _handle(payload, conversation_id, current_user, db, pipeline)


@router.post("/admin/conversations/expire", response_model=ExpireConversationsResponse)
async def expire_conversations(
    current_user: CurrentUser = Depends(require_roles("ADMIN")),
    db: Session = Depends(get_db),
    conversations: SqlConversationStore = Depends(get_conversation_store),
):
    expired = conversations.expire_idle()
    db.commit()
    logger.info("Idle expiry by %s closed %d conversation(s)", current_user.id, expired)
    return ExpireConversationsResponse(expired=expired)
