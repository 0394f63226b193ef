"""Shape of a classifier answer."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from docintake.schemas.conversation import IntentType

VALID_INTENTS = frozenset(item.value for item in IntentType)


class AIIntentEntity(BaseModel):
    type: str
    value: str

    @field_validator("value", mode="before")
    @classmethod
    def stringify(cls, value: object) -> object:
        # Models often return amounts as JSON numbers.
        return str(value) if isinstance(value, (int, float)) else value


class AIIntentResult(BaseModel):
    intent: str
    confidence: float = Field(ge=0.0, le=1.0)
    entities: list[AIIntentEntity] = Field(default_factory=list)
    fallback: bool = False

    @field_validator("intent")
    @classmethod
    def known_intent(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in VALID_INTENTS:
            raise ValueError(f"unknown intent {value!r}")
        return value
