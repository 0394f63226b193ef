from datetime import datetime
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, Field

from docintake.schemas.documents import EntityKind


class SuggestionStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    MERGED = "merged"


class SuggestedEntityOut(BaseModel):
    id: str
    company_id: str
    entity_kind: EntityKind
    suggested_name: str
    confidence: float
    usage_count: int
    status: SuggestionStatus
    created_by: Optional[str] = None
    created_entity_id: Optional[str] = None
    enrichment: Optional[dict[str, Any]] = None
    context: Optional[dict[str, Any]] = None
    first_suggested_at: Optional[datetime] = None
    last_suggested_at: Optional[datetime] = None


class SuggestionListResponse(BaseModel):
    items: list[SuggestedEntityOut]


class ApproveSuggestionRequest(BaseModel):
    overrides: dict[str, Any] = Field(default_factory=dict)


class ApproveSuggestionResponse(BaseModel):
    suggestion_id: str
    entity_id: str


class RejectSuggestionRequest(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=2000)


class RejectSuggestionResponse(BaseModel):
    suggestion_id: str
    rejected: bool


class MergeSuggestionsRequest(BaseModel):
    primary_id: str
    merged_ids: list[str] = Field(..., min_length=1)
    overrides: dict[str, Any] = Field(default_factory=dict)


class MergeSuggestionsResponse(BaseModel):
    primary_id: str
    entity_id: str
    merged_ids: list[str]


class TopSuggestion(BaseModel):
    id: str
    name: str
    entity_kind: EntityKind
    count: int


class SuggestionStats(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int
    merged: int
    top_pending: list[TopSuggestion]
