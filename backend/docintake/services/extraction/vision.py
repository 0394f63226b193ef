"""Vision-language model extractor (OpenAI chat completions with an image part)."""

from __future__ import annotations

import logging
from typing import Any

from docintake.core.config import Settings
from docintake.core.image_processing import is_image, prepare_for_vision
from docintake.schemas.documents import DocumentUpload, ExtractedTable, FieldCandidate, RawExtraction
from docintake.services.ai.common import router as ai_router
from docintake.services.ai.common.json_tools import coerce_confidence, extract_json_object
from docintake.services.ai.common.providers import ImageInput, MockProvider

from .base import BaseExtractor, ProviderUnavailable

logger = logging.getLogger(__name__)

VISION_SYSTEM_PROMPT = (
    "You read photographed or scanned business documents: receipts, invoices, bills and "
    "business cards. Extract every visible value exactly as printed. Use null for anything "
    "that is not visible. Never invent values."
)

VISION_PROMPT = """Return ONLY a JSON object with these keys:
{
  "document_type": "receipt|invoice|business_card|quote|contract|other",
  "vendor_name": "business name as printed",
  "vendor_address": "address if visible",
  "vendor_phone": "phone if visible",
  "vendor_website": "website if visible",
  "transaction_date": "YYYY-MM-DD",
  "subtotal": 0.0,
  "tax_amount": 0.0,
  "tax_rate": "rate in percent if printed",
  "tip_amount": 0.0,
  "total_amount": 0.0,
  "currency_code": "ISO 4217 code if printed or obvious",
  "invoice_number": "invoice or receipt number",
  "description": "short description of the purchase",
  "person_name": "business card holder",
  "job_title": "business card title",
  "company_name": "business card company",
  "email": "email if visible",
  "line_items": [{"description": "", "quantity": 1, "unit_price": 0.0, "total_price": 0.0}],
  "confidence_scores": {"vendor_name": 0.0, "total_amount": 0.0, "date": 0.0, "tax_amount": 0.0},
  "overall_confidence": 0.0,
  "ocr_raw_text": "all visible text"
}
Numbers carry no currency symbols. Rate each confidence 0.0-1.0 by legibility."""

# Model JSON key -> (canonical field name, key in confidence_scores)
FIELD_MAP: dict[str, tuple[str, str]] = {
    "vendor_name": ("vendor_name", "vendor_name"),
    "vendor_address": ("vendor_address", "vendor_address"),
    "vendor_phone": ("vendor_phone", "vendor_phone"),
    "vendor_website": ("vendor_website", "vendor_website"),
    "transaction_date": ("expense_date", "date"),
    "subtotal": ("subtotal", "subtotal"),
    "tax_amount": ("tax_amount", "tax_amount"),
    "tax_rate": ("tax_rate", "tax_rate"),
    "tip_amount": ("tip_amount", "tip_amount"),
    "total_amount": ("total_amount", "total_amount"),
    "currency_code": ("currency", "currency_code"),
    "invoice_number": ("invoice_number", "invoice_number"),
    "description": ("description", "description"),
    "person_name": ("contact_name", "person_name"),
    "job_title": ("job_title", "job_title"),
    "company_name": ("company_name", "company_name"),
    "email": ("email", "email"),
    "document_type": ("document_type", "document_type"),
}

DEFAULT_FIELD_CONFIDENCE = 0.8
UNPARSEABLE_CONFIDENCE = 0.2
LINE_ITEM_COLUMNS = ("description", "quantity", "unit_price", "total_price")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() in ("", "null", "None"))


def parse_vision_payload(payload: dict[str, Any], *, raw_text: str = "") -> tuple[str, float, tuple[FieldCandidate, ...], tuple[ExtractedTable, ...]]:
    """Map the model's JSON into (text, overall confidence, candidates, tables)."""
    scores = payload.get("confidence_scores") or {}
    if not isinstance(scores, dict):
        scores = {}

    candidates: list[FieldCandidate] = []
    for key, (name, score_key) in FIELD_MAP.items():
        value = payload.get(key)
        if _is_blank(value):
            continue
        confidence = coerce_confidence(scores.get(score_key), DEFAULT_FIELD_CONFIDENCE)
        candidates.append(FieldCandidate(name=name, value=value, confidence=confidence))

    rows: list[tuple[Any, ...]] = []
    for item in payload.get("line_items") or []:
        if isinstance(item, dict) and not _is_blank(item.get("description")):
            rows.append(tuple(item.get(col) for col in LINE_ITEM_COLUMNS))
    tables = (ExtractedTable(name="line_items", columns=LINE_ITEM_COLUMNS, rows=tuple(rows)),) if rows else ()

    if "overall_confidence" in payload:
        overall = coerce_confidence(payload.get("overall_confidence"), DEFAULT_FIELD_CONFIDENCE)
    elif candidates:
        overall = sum(c.confidence for c in candidates) / len(candidates)
    else:
        overall = UNPARSEABLE_CONFIDENCE

    text = payload.get("ocr_raw_text")
    if not isinstance(text, str) or not text.strip():
        text = raw_text
    return text, overall, tuple(candidates), tables


class VisionModelExtractor(BaseExtractor):
    name = "vision_model"

    def __init__(self, settings: Settings) -> None:
        self._max_edge = settings.vision_max_image_edge

    def supports(self, mime_type: str) -> bool:
        return is_image(mime_type)

    async def extract(self, upload: DocumentUpload) -> RawExtraction:
        config = ai_router.resolve("extraction")
        if isinstance(config.provider, MockProvider) or not config.provider.supports_images:
            raise ProviderUnavailable("No vision-capable provider configured")

        image = prepare_for_vision(upload.content, upload.mime_type, max_edge=self._max_edge)
        result = await config.provider.generate(
            VISION_PROMPT,
            system_prompt=VISION_SYSTEM_PROMPT,
            images=[ImageInput(mime_type=image.mime_type, data_base64=image.as_base64())],
            model=config.model,
            temperature=0.1,
            max_tokens=max(config.max_tokens, 2048),
            timeout_seconds=config.timeout_seconds,
        )

        payload = extract_json_object(result.raw_text)
        if payload is None:
            # Readable answer without JSON: keep the text, trust it little.
            logger.warning("Vision model returned no JSON object (%d chars)", len(result.raw_text))
            return RawExtraction(
                text=result.raw_text.strip(),
                confidence=UNPARSEABLE_CONFIDENCE,
                provider=self.name,
                model=result.model,
            )

        text, overall, candidates, tables = parse_vision_payload(payload, raw_text=result.raw_text)
        return RawExtraction(
            text=text,
            confidence=overall,
            field_candidates=candidates,
            tables=tables or None,
            provider=self.name,
            model=result.model,
        )
