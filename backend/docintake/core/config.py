from functools import lru_cache
import json
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_ALLOWED_MIME_TYPES = (
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/gif",
    "image/tiff",
    "image/heic",
    "application/pdf",
    "text/plain",
)


def _parse_list_value(value: str) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if raw == "":
            return []
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        except ValueError:
            pass
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="forbid",
        validate_by_name=True,
        populate_by_name=True,
    )
    supabase_url: str = ""
    supabase_jwt_secret: str = ""
    supabase_jwt_audience: str = ""
    database_url: str = ""

    docs_enabled: bool = True
    openapi_enabled: bool = True
    expose_error_details: bool = False

    cors_allow_origins_raw: str = Field(
        default="",
        validation_alias=AliasChoices("CORS_ALLOW_ORIGINS"),
    )

    # --- Feature flags ---
    enable_document_intake: bool = True
    enable_conversation: bool = True
    enable_suggestion_review: bool = True
    enable_ai_intent: bool = False
    enable_ai_responses: bool = False
    enable_web_enrichment: bool = True
    enable_ai_overrides: bool = False

    # --- Input limits ---
    max_document_bytes: int = 10 * 1024 * 1024
    allowed_document_mime_types_raw: str = Field(
        default=",".join(DEFAULT_ALLOWED_MIME_TYPES),
        validation_alias=AliasChoices("ALLOWED_DOCUMENT_MIME_TYPES"),
    )

    # --- Extraction ---
    extraction_providers_raw: str = Field(
        default="vision_model,document_ai,plain_text",
        validation_alias=AliasChoices("EXTRACTION_PROVIDERS"),
    )
    extraction_timeout_seconds: float = 20.0
    extraction_vision_model: str = "gpt-4o"
    vision_max_image_edge: int = 2048
    google_document_ai_endpoint: str = ""
    google_document_ai_token: str = ""

    # --- AI providers ---
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    ai_allowed_providers_raw: str = Field(
        default="mock",
        validation_alias=AliasChoices("AI_ALLOWED_PROVIDERS"),
    )
    ai_allowed_models_raw: str = Field(
        default="",
        validation_alias=AliasChoices("AI_ALLOWED_MODELS"),
    )
    ai_intent_provider: str = "mock"
    ai_intent_model: str = ""
    ai_intent_timeout_seconds: float = 1.2
    ai_intent_budget_seconds: float = 2.0
    ai_intent_max_retries: int = 1
    ai_response_provider: str = "mock"
    ai_response_model: str = ""
    ai_response_timeout_seconds: float = 6.0
    ai_timeout_seconds: float = 8.0
    ai_temperature: float = 0.3
    ai_max_tokens: int = 1024
    ai_debug_store_raw: bool = False

    # --- Entity resolution ---
    exact_match_confidence: float = 0.95
    fuzzy_match_threshold: float = 0.80
    fuzzy_auto_accept_threshold: float = 0.90
    semantic_match_confidence: float = 0.85
    semantic_alias_similarity: float = 0.8
    new_entity_confidence: float = 0.5
    web_enriched_confidence: float = 0.7
    web_enrichment_providers_raw: str = Field(
        default="directory",
        validation_alias=AliasChoices("WEB_ENRICHMENT_PROVIDERS"),
    )
    web_enrichment_timeout_seconds: float = 5.0

    # --- Validation ---
    amount_tolerance: float = 0.01
    large_amount_threshold: float = 10000.0
    date_day_first: bool = False
    default_currency: str = "USD"

    # --- Action cards ---
    action_approval_confidence: float = 0.8
    action_card_ttl_hours: int = 24
    sensitive_action_types_raw: str = Field(
        default="create_expense",
        validation_alias=AliasChoices("SENSITIVE_ACTION_TYPES"),
    )

    conversation_idle_timeout_minutes: int = 30

    pii_redaction_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("PII_REDACTION_ENABLED"),
    )
    pii_redaction_fields_raw: str = Field(
        default="phone,email,address,tax_id,card_number,iban,account_number",
        validation_alias=AliasChoices("PII_REDACTION_FIELDS"),
    )

    @property
    def cors_allow_origins(self) -> list[str]:
        return _parse_list_value(self.cors_allow_origins_raw)

    @property
    def allowed_document_mime_types(self) -> list[str]:
        return [item.lower() for item in _parse_list_value(self.allowed_document_mime_types_raw)]

    @property
    def extraction_providers(self) -> list[str]:
        return [item.lower() for item in _parse_list_value(self.extraction_providers_raw)]

    @property
    def web_enrichment_providers(self) -> list[str]:
        return [item.lower() for item in _parse_list_value(self.web_enrichment_providers_raw)]

    @property
    def sensitive_action_types(self) -> list[str]:
        return [item.lower() for item in _parse_list_value(self.sensitive_action_types_raw)]

    @property
    def pii_redaction_fields(self) -> list[str]:
        return _parse_list_value(self.pii_redaction_fields_raw)

    @property
    def ai_allowed_providers(self) -> list[str]:
        """Allowlisted provider names; ``mock`` is always allowed."""
        providers = [item.lower() for item in _parse_list_value(self.ai_allowed_providers_raw)]
        if "mock" not in providers:
            providers.append("mock")
        return providers

    @property
    def ai_allowed_models(self) -> dict[str, list[str]]:
        raw = self.ai_allowed_models_raw.strip()
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except ValueError:
            return {}
        if not isinstance(parsed, dict):
            return {}
        return {
            str(provider).lower(): _parse_list_value(models) if isinstance(models, str) else [str(m) for m in models]
            for provider, models in parsed.items()
            if isinstance(models, (str, list))
        }

@lru_cache

def get_settings() -> Settings:
    return Settings()
