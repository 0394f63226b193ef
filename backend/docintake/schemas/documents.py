from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DocumentType(StrEnum):
    RECEIPT = "receipt"
    INVOICE = "invoice"
    BUSINESS_CARD = "business_card"
    QUOTE = "quote"
    CONTRACT = "contract"
    UNKNOWN = "unknown"


class FieldSource(StrEnum):
    STRUCTURED = "structured"
    PATTERN = "pattern"
    DEFAULT = "default"


class MatchType(StrEnum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    SEMANTIC = "semantic"
    NEW = "new"
    WEB_ENRICHED = "web_enriched"


class EntityKind(StrEnum):
    VENDOR = "vendor"
    CATEGORY = "category"


# Highest confidence a field may carry for each provenance.
SOURCE_CONFIDENCE_CEILING: dict[FieldSource, float] = {
    FieldSource.STRUCTURED: 1.0,
    FieldSource.PATTERN: 0.9,
    FieldSource.DEFAULT: 0.5,
}


@dataclass(frozen=True)
class DocumentUpload:
    content: bytes
    mime_type: str
    filename: str = ""


class FieldCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    value: Any
    confidence: float = Field(ge=0.0, le=1.0)


class ExtractedTable(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = "line_items"
    columns: tuple[str, ...] = ()
    rows: tuple[tuple[Any, ...], ...] = ()


class RawExtraction(BaseModel):
    """Provider-neutral output of one extraction call."""

    model_config = ConfigDict(frozen=True)

    text: str = ""
    confidence: float = Field(ge=0.0, le=1.0)
    field_candidates: tuple[FieldCandidate, ...] = ()
    tables: Optional[tuple[ExtractedTable, ...]] = None
    provider: str = ""
    model: str = ""

    def candidate(self, name: str) -> Optional[FieldCandidate]:
        for item in self.field_candidates:
            if item.name == name:
                return item
        return None


class ExtractedField(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    value: Any = None
    confidence: float = Field(ge=0.0, le=1.0)
    source: FieldSource

    @model_validator(mode="after")
    def _confidence_within_source_ceiling(self):
        ceiling = SOURCE_CONFIDENCE_CEILING[self.source]
        if self.confidence > ceiling:
            raise ValueError(f"{self.source} field confidence cannot exceed {ceiling}")
        return self

    def capped(self, ceiling: float) -> "ExtractedField":
        if self.confidence <= ceiling:
            return self
        return self.model_copy(update={"confidence": ceiling})


class EntityMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_kind: EntityKind
    entity_id: Optional[str] = None
    entity_name: str
    confidence: float = Field(ge=0.0, le=1.0)
    match_type: MatchType
    reason: str
    needs_approval: bool
    similarity: Optional[float] = None
    candidate_name: str = ""
    enrichment: Optional[dict[str, Any]] = None
    suggestion_id: Optional[str] = None

    @model_validator(mode="after")
    def _approval_follows_match_type(self):
        if self.match_type == MatchType.EXACT and self.needs_approval:
            raise ValueError("exact matches never need approval")
        if self.match_type in (MatchType.SEMANTIC, MatchType.NEW, MatchType.WEB_ENRICHED) and not self.needs_approval:
            raise ValueError(f"{self.match_type} matches always need approval")
        return self

    @property
    def is_proposal(self) -> bool:
        return self.match_type in (MatchType.NEW, MatchType.WEB_ENRICHED)


class DocumentAnalysis(BaseModel):
    document_type: DocumentType
    extracted_data: dict[str, ExtractedField] = Field(default_factory=dict)
    confidence: float = Field(ge=0.0, le=1.0)
    suggestions: list[str] = Field(default_factory=list)
    web_enrichment: Optional[dict[str, Any]] = None
    tables: list[ExtractedTable] = Field(default_factory=list)
    warnings: list[dict[str, str]] = Field(default_factory=list)
    redacted_fields: list[str] = Field(default_factory=list)
    provider: str = ""
    degraded: bool = False

    def value(self, name: str, default: Any = None) -> Any:
        field = self.extracted_data.get(name)
        if field is None or field.value is None:
            return default
        return field.value

    def field_confidence(self, name: str) -> float:
        field = self.extracted_data.get(name)
        return field.confidence if field is not None else 0.0


class ExtractedFieldOut(BaseModel):
    value: Any = None
    confidence: float
    source: FieldSource

    @field_validator("value", mode="before")
    @classmethod
    def _jsonable(cls, v):
        # Dates and decimals are rendered as strings for the API.
        if v is None or isinstance(v, (str, int, float, bool, list, dict)):
            return v
        return str(v)
