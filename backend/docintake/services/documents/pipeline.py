"""Document and conversation entry points.

Stages run strictly in order: input checks, classification, extraction,
normalization, categorization, entity resolution, validation, card
generation, reply.  Only the input checks may raise (``InputError``); every
later stage degrades to a deterministic fallback so a response is always
returned.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, assert_never

from sqlalchemy.orm import Session

from docintake.core.auth import Capability, SecurityContext
from docintake.core.config import Settings
from docintake.core.errors import DocIntakeError, ExtractionError, InputError
from docintake.models.records import ActionCardRecord
from docintake.schemas.actions import ActionCard, ActionCardStatus
from docintake.schemas.conversation import (
    ConversationContext,
    ConversationStatus,
    DetectedIntent,
    IntentType,
    MessageRole,
    PipelineResponse,
)
from docintake.schemas.documents import (
    DocumentAnalysis,
    DocumentType,
    DocumentUpload,
    EntityMatch,
    ExtractedField,
    ExtractedFieldOut,
    FieldSource,
    RawExtraction,
)
from docintake.services.actions.generator import ActionCardGenerator
from docintake.services.actions.lifecycle import approve_card, reject_card, save_cards
from docintake.services.ai.common.audit import log_ai_run
from docintake.services.ai.common.providers.base import ProviderResult
from docintake.services.audit_log import create_audit_log
from docintake.services.conversation.guardrails import redact
from docintake.services.conversation.intent import detect_intent_with_ai
from docintake.services.conversation.responder import compose_reply
from docintake.services.conversation.store import ConversationStore
from docintake.services.extraction.chain import ExtractionChain, build_extraction_chain
from docintake.services.extraction.vision import VISION_PROMPT
from docintake.services.reference_store import ReferenceDataStore
from docintake.services.resolution.resolver import EntityResolver, build_category_resolver, build_vendor_resolver
from docintake.services.suggestions import propose_suggestion
from docintake.utils.clock import utc_now

from .categorization import categorize
from .classifier import classify_filename, classify_text, refine_document_type
from .parser import normalize, parse_amount, parse_date_value
from .validation import validate

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.5
CONVERSATION_FIELD_CONFIDENCE = 0.7
GL_FIELDS = ("gl_account", "gl_name")

KEY_FIELDS: dict[DocumentType, tuple[str, ...]] = {
    DocumentType.RECEIPT: ("total_amount", "vendor_name", "expense_date"),
    DocumentType.INVOICE: ("total_amount", "vendor_name", "expense_date"),
    DocumentType.UNKNOWN: ("total_amount", "vendor_name", "expense_date"),
    DocumentType.BUSINESS_CARD: ("contact_name", "email", "phone"),
    DocumentType.QUOTE: ("vendor_name", "total_amount"),
    DocumentType.CONTRACT: ("vendor_name",),
}

_VENDOR_PHRASE_RE = re.compile(r"\b(?:at|from|to|vendor)\s+([A-Z0-9][\w&'.\-]*(?:\s+[A-Z0-9][\w&'.\-]*)*)")
_PERSON_RE = re.compile(r"\b(?:contact|add)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)+)")


def normalize_mime(mime_type: str) -> str:
    return (mime_type or "").split(";", 1)[0].strip().lower()


def fallback_fields(default_currency: str) -> dict[str, ExtractedField]:
    """Zeroed amounts for a document nothing could read."""
    fields = {
        name: ExtractedField(name=name, value=0.0, confidence=0.0, source=FieldSource.DEFAULT)
        for name in ("total_amount", "subtotal", "tax_amount")
    }
    fields["currency"] = ExtractedField(name="currency", value=default_currency, confidence=0.0, source=FieldSource.DEFAULT)
    return fields


def overall_confidence(raw_confidence: float, fields: dict[str, ExtractedField], document_type: DocumentType) -> float:
    """Mean of the extraction confidence and the mean key-field confidence; a missing key field counts as zero."""
    names = KEY_FIELDS[document_type]
    field_mean = sum(fields[name].confidence if name in fields else 0.0 for name in names) / len(names)
    return round((raw_confidence + field_mean) / 2, 4)


@dataclass
class StageResult:
    analysis: DocumentAnalysis
    matches: list[EntityMatch]
    raw: Optional[RawExtraction] = None


class DocumentPipeline:
    def __init__(
        self,
        db: Session,
        settings: Settings,
        *,
        store: ReferenceDataStore,
        conversations: ConversationStore,
        chain: Optional[ExtractionChain] = None,
        vendor_resolver: Optional[EntityResolver] = None,
        category_resolver: Optional[EntityResolver] = None,
        generator: Optional[ActionCardGenerator] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        self.settings = settings
        self.store = store
        self.conversations = conversations
        self.chain = chain or build_extraction_chain(settings)
        self.vendor_resolver = vendor_resolver or build_vendor_resolver(settings)
        self.category_resolver = category_resolver or build_category_resolver(settings)
        self.generator = generator or ActionCardGenerator(settings)
        self.clock = clock

    # --- input ---

    def check_input(self, upload: DocumentUpload, company_id: str, actor_id: Optional[str] = None) -> DocumentUpload:
        mime_type = normalize_mime(upload.mime_type)
        error: Optional[InputError] = None
        if not upload.content:
            error = InputError("Document is empty", status_code=400, code="EMPTY_DOCUMENT")
        elif len(upload.content) > self.settings.max_document_bytes:
            error = InputError(
                f"Document exceeds {self.settings.max_document_bytes} bytes",
                status_code=413,
                code="DOCUMENT_TOO_LARGE",
            )
        elif mime_type not in self.settings.allowed_document_mime_types or not self.chain.supports(mime_type):
            error = InputError(f"Unsupported document type: {mime_type or 'unknown'}", status_code=415, code="UNSUPPORTED_MEDIA_TYPE")

        if error is not None:
            logger.warning("Document rejected for company %s: %s", company_id, error.code)
            create_audit_log(
                self.db,
                entity_type="document",
                entity_id=None,
                action="DOCUMENT_INPUT_REJECTED",
                new_value={"code": error.code, "mime_type": mime_type, "size": len(upload.content)},
                actor_id=actor_id,
                company_id=company_id,
            )
            raise error
        return DocumentUpload(content=upload.content, mime_type=mime_type, filename=upload.filename)

    # --- stages ---

    async def _extract(self, upload: DocumentUpload, company_id: str, actor_id: Optional[str]) -> Optional[RawExtraction]:
        try:
            return await self.chain.extract(upload)
        except ExtractionError as exc:
            logger.warning("Extraction exhausted for company %s: %s", company_id, exc)
            attempts = exc.attempts
        except Exception as exc:
            logger.exception("Extraction stage failed unexpectedly")
            attempts = [{"provider": "chain", "error": type(exc).__name__}]
        create_audit_log(
            self.db,
            entity_type="document",
            entity_id=None,
            action="EXTRACTION_PROVIDERS_EXHAUSTED",
            new_value={"attempts": attempts},
            actor_id=actor_id,
            company_id=company_id,
            metadata={"mime_type": upload.mime_type},
        )
        return None

    def _normalize(self, raw: RawExtraction, document_type: DocumentType) -> dict[str, ExtractedField]:
        try:
            return normalize(
                raw,
                document_type,
                default_currency=self.settings.default_currency,
                day_first=self.settings.date_day_first,
            )
        except Exception:
            logger.exception("Normalization failed - continuing without fields")
            return {}

    def _categorize(self, fields: dict[str, ExtractedField], document_type: DocumentType) -> dict[str, ExtractedField]:
        if document_type not in (DocumentType.RECEIPT, DocumentType.INVOICE, DocumentType.UNKNOWN):
            return fields
        try:
            vendor = fields["vendor_name"].value if "vendor_name" in fields else None
            description = fields["description"].value if "description" in fields else None
            suggestion = categorize(vendor, description)
        except Exception:
            logger.exception("Categorization failed")
            return fields
        if suggestion is None or "category" in fields:
            return fields
        enriched = dict(fields)
        for name, value in (
            ("category", suggestion.category),
            ("gl_account", suggestion.gl_account),
            ("gl_name", suggestion.gl_name),
        ):
            enriched[name] = ExtractedField(name=name, value=value, confidence=suggestion.confidence, source=FieldSource.PATTERN)
        return enriched

    async def _resolve_one(
        self,
        resolver: EntityResolver,
        candidate: Optional[str],
        existing_loader: Callable[[str], Sequence[Any]],
        company_id: str,
        context: dict[str, Any],
        actor_id: Optional[str],
    ) -> Optional[EntityMatch]:
        if not candidate or not str(candidate).strip():
            return None
        try:
            existing = existing_loader(company_id)
            match = await resolver.resolve(str(candidate), existing, company_id, context)
        except Exception:
            logger.exception("%s resolution failed", resolver.kind)
            return None

        if match.is_proposal and match.entity_name:
            try:
                suggestion_id = propose_suggestion(
                    self.db,
                    company_id=company_id,
                    kind=resolver.kind,
                    name=match.entity_name,
                    confidence=match.confidence,
                    context=context,
                    enrichment=match.enrichment,
                    created_by=actor_id,
                )
                match = match.model_copy(update={"suggestion_id": suggestion_id})
            except Exception:
                logger.exception("Could not record %s suggestion", resolver.kind)
        return match

    async def _resolve(
        self,
        fields: dict[str, ExtractedField],
        document_type: DocumentType,
        company_id: str,
        actor_id: Optional[str],
        filename: str,
    ) -> list[EntityMatch]:
        def value(name: str) -> Any:
            return fields[name].value if name in fields else None

        matches: list[EntityMatch] = []
        vendor_candidate = value("vendor_name") or value("company_name")
        vendor = await self._resolve_one(
            self.vendor_resolver,
            vendor_candidate,
            self.store.list_vendors,
            company_id,
            {"document_type": document_type.value, "filename": filename},
            actor_id,
        )
        if vendor is not None:
            matches.append(vendor)

        if document_type in (DocumentType.RECEIPT, DocumentType.INVOICE, DocumentType.UNKNOWN):
            context = {"document_type": document_type.value, "filename": filename}
            if value("gl_account"):
                context["gl_account"] = value("gl_account")
            category = await self._resolve_one(
                self.category_resolver,
                value("category"),
                self.store.list_categories,
                company_id,
                context,
                actor_id,
            )
            if category is not None:
                matches.append(category)
        return matches

    def _validate(self, fields: dict[str, ExtractedField], matches: Sequence[EntityMatch]):
        try:
            result = validate(fields, matches, now=self.clock(), settings=self.settings)
        except Exception:
            logger.exception("Validation failed - fields left unadjusted")
            return fields, []
        return result.fields, [warning.to_dict() for warning in result.warnings]

    def _redact(self, analysis: DocumentAnalysis, security: Optional[SecurityContext]) -> DocumentAnalysis:
        if security is None or security.can(Capability.VIEW_GL_ACCOUNTS):
            return analysis
        present = [name for name in GL_FIELDS if name in analysis.extracted_data]
        if not present:
            return analysis
        fields = dict(analysis.extracted_data)
        for name in present:
            fields[name] = fields[name].model_copy(update={"value": None})
        return analysis.model_copy(update={"extracted_data": fields, "redacted_fields": present})

    def _cards(
        self,
        analysis: DocumentAnalysis,
        matches: Sequence[EntityMatch],
        security: Optional[SecurityContext],
        filename: Optional[str],
    ) -> list[ActionCard]:
        try:
            return self.generator.generate(analysis, matches, now=self.clock(), security=security, source_filename=filename)
        except Exception:
            logger.exception("Action card generation failed")
            return []

    async def _finish(
        self,
        fields: dict[str, ExtractedField],
        document_type: DocumentType,
        raw_confidence: float,
        company_id: str,
        *,
        security: Optional[SecurityContext],
        actor_id: Optional[str],
        filename: str = "",
        degraded: bool = False,
        provider: str = "",
        tables: Sequence[Any] = (),
    ) -> StageResult:
        """Resolution, validation and confidence scoring shared by documents and conversation turns."""
        fields = self._categorize(fields, document_type)
        matches = [] if degraded else await self._resolve(fields, document_type, company_id, actor_id, filename)
        fields, warnings = self._validate(fields, matches)
        confidence = FALLBACK_CONFIDENCE if degraded else overall_confidence(raw_confidence, fields, document_type)
        analysis = DocumentAnalysis(
            document_type=document_type,
            extracted_data=fields,
            confidence=confidence,
            suggestions=[match.suggestion_id for match in matches if match.suggestion_id],
            web_enrichment=next((match.enrichment for match in matches if match.enrichment), None),
            tables=list(tables),
            warnings=warnings,
            provider=provider,
            degraded=degraded,
        )
        return StageResult(analysis=self._redact(analysis, security), matches=matches)

    async def analyze(
        self,
        upload: DocumentUpload,
        company_id: str,
        *,
        security: Optional[SecurityContext] = None,
        actor_id: Optional[str] = None,
    ) -> StageResult:
        document_type = classify_filename(upload.filename)
        raw = await self._extract(upload, company_id, actor_id)
        if raw is None:
            result = await self._finish(
                fallback_fields(self.settings.default_currency),
                DocumentType.RECEIPT,
                FALLBACK_CONFIDENCE,
                company_id,
                security=security,
                actor_id=actor_id,
                filename=upload.filename,
                degraded=True,
            )
            return result

        label = raw.candidate("document_type")
        document_type = refine_document_type(document_type, raw.text, label.value if label else None)
        fields = self._normalize(raw, document_type)
        result = await self._finish(
            fields,
            document_type,
            raw.confidence,
            company_id,
            security=security,
            actor_id=actor_id,
            filename=upload.filename,
            provider=raw.provider,
            tables=raw.tables or (),
        )
        result.raw = raw
        return result

    # --- entry points ---

    async def process_document(
        self,
        upload: DocumentUpload,
        company_id: str,
        security: Optional[SecurityContext] = None,
        *,
        conversation_id: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> PipelineResponse:
        upload = self.check_input(upload, company_id, actor_id)
        conversation = self.conversations.get(conversation_id, company_id=company_id) if conversation_id else None

        result = await self.analyze(upload, company_id, security=security, actor_id=actor_id)
        analysis = result.analysis
        cards = self._cards(analysis, result.matches, security, upload.filename)
        save_cards(
            self.db,
            cards,
            company_id=company_id,
            conversation_id=conversation.id if conversation else None,
            created_by=actor_id,
        )

        message = await compose_reply(
            None,
            analysis,
            cards,
            db=self.db,
            use_ai=self.settings.enable_ai_responses,
            actor_id=actor_id,
        )
        needs_approval = self._needs_approval(analysis, result.matches, cards)

        if conversation is not None:
            self._record_turn(
                conversation,
                f"[document] {upload.filename or upload.mime_type}",
                message,
                cards,
                {"document_type": analysis.document_type.value},
            )

        self._audit_processed(upload, analysis, cards, company_id, actor_id)
        if result.raw is not None and result.raw.provider == "vision_model":
            self._audit_vision(result.raw, actor_id)

        return self._response(
            message,
            cards,
            analysis.confidence,
            needs_approval,
            conversation_id=conversation.id if conversation else None,
            analysis=analysis,
        )

    async def handle_conversation(
        self,
        text: str,
        context: Optional[str] = None,
        conversation_id: Optional[str] = None,
        *,
        company_id: str,
        security: Optional[SecurityContext] = None,
        actor_id: Optional[str] = None,
    ) -> PipelineResponse:
        text = (text or "").strip()
        if not text:
            raise InputError("Message is empty", code="EMPTY_MESSAGE")

        conversation = None
        if conversation_id:
            conversation = self.conversations.get(conversation_id, company_id=company_id)
            if conversation.status == ConversationStatus.CLOSED:
                logger.info("Conversation %s is closed - starting a new one", conversation_id)
                conversation = None
        if conversation is None:
            conversation = self.conversations.create(company_id, user_id=actor_id, context=context)
        context = context or conversation.context
        history = [(item.role.value, item.content) for item in conversation.messages]

        intent = await detect_intent_with_ai(text, self.db, self.settings, context=context, actor_id=actor_id)
        self.conversations.append(
            conversation.id,
            MessageRole.USER,
            text,
            company_id=company_id,
            metadata={"intent": intent.primary.value, "confidence": intent.confidence},
        )

        analysis: Optional[DocumentAnalysis] = None
        matches: list[EntityMatch] = []
        cards: list[ActionCard] = []
        notes: list[str] = []

        primary = intent.primary
        match primary:
            case IntentType.CREATE_EXPENSE | IntentType.PROCESS_DOCUMENT | IntentType.ADD_CONTACT:
                fields, document_type = self._fields_from_message(text, intent)
                if fields:
                    result = await self._finish(
                        fields,
                        document_type,
                        intent.confidence,
                        company_id,
                        security=security,
                        actor_id=actor_id,
                        filename="",
                    )
                    analysis, matches = result.analysis, result.matches
                    cards = self._cards(analysis, matches, security, None)
                    save_cards(self.db, cards, company_id=company_id, conversation_id=conversation.id, created_by=actor_id)
            case IntentType.APPROVE_ACTION | IntentType.REJECT_ACTION:
                cards, notes = self._decide_pending(conversation.id, company_id, primary, security, actor_id)
            case IntentType.FIND_VENDOR:
                notes = self._find_vendor(text, company_id)
            case IntentType.MODIFY_DATA | IntentType.GET_HELP | IntentType.ASK_QUESTION:
                pass
            case _:
                assert_never(primary)

        if notes:
            message = redact(" ".join(notes))
        else:
            message = await compose_reply(
                intent,
                analysis,
                cards,
                db=self.db,
                use_ai=self.settings.enable_ai_responses,
                message=text,
                history=history,
                actor_id=actor_id,
            )

        self.conversations.append(
            conversation.id,
            MessageRole.ASSISTANT,
            message,
            company_id=company_id,
            metadata={"action_card_ids": [card.id for card in cards]},
        )
        self._sync_status(conversation.id, company_id)

        confidence = analysis.confidence if analysis is not None else intent.confidence
        needs_approval = self._needs_approval(analysis, matches, cards) if analysis is not None else False
        return self._response(
            message,
            cards,
            confidence,
            needs_approval,
            conversation_id=conversation.id,
            analysis=analysis,
            intent=intent,
        )

    # --- conversation helpers ---

    def _fields_from_message(self, text: str, intent: DetectedIntent) -> tuple[dict[str, ExtractedField], DocumentType]:
        def field(name: str, value: Any, confidence: float = CONVERSATION_FIELD_CONFIDENCE) -> ExtractedField:
            return ExtractedField(name=name, value=value, confidence=confidence, source=FieldSource.PATTERN)

        by_type: dict[str, list[str]] = {}
        for entity in intent.entities:
            by_type.setdefault(entity.type, []).append(entity.value)

        if intent.primary == IntentType.ADD_CONTACT:
            fields: dict[str, ExtractedField] = {}
            if "email" in by_type:
                fields["email"] = field("email", by_type["email"][0], 0.9)
            if "phone" in by_type:
                fields["phone"] = field("phone", by_type["phone"][0], 0.85)
            person = _PERSON_RE.search(text)
            if person:
                fields["contact_name"] = field("contact_name", person.group(1))
            return fields, DocumentType.BUSINESS_CARD

        amounts = [parse_amount(value) for value in by_type.get("amount", [])]
        amounts = [amount for amount in amounts if amount is not None]
        if not amounts:
            return {}, DocumentType.RECEIPT
        fields = {
            "total_amount": field("total_amount", max(amounts)),
            "currency": ExtractedField(
                name="currency",
                value=self.settings.default_currency,
                confidence=FALLBACK_CONFIDENCE,
                source=FieldSource.DEFAULT,
            ),
        }
        for raw_date in by_type.get("date", []):
            parsed = parse_date_value(raw_date, day_first=self.settings.date_day_first)
            if parsed is not None:
                fields["expense_date"] = field("expense_date", parsed.value.isoformat(), min(parsed.confidence, 0.8))
                break
        vendor = _VENDOR_PHRASE_RE.search(text)
        if vendor:
            fields["vendor_name"] = field("vendor_name", vendor.group(1).strip(" .,"), 0.6)
        document_type = classify_text(text)
        if document_type not in (DocumentType.RECEIPT, DocumentType.INVOICE):
            document_type = DocumentType.RECEIPT
        return fields, document_type

    def _decide_pending(
        self,
        conversation_id: str,
        company_id: str,
        intent: IntentType,
        security: Optional[SecurityContext],
        actor_id: Optional[str],
    ) -> tuple[list[ActionCard], list[str]]:
        pending = (
            self.db.query(ActionCardRecord.id)
            .filter(
                ActionCardRecord.conversation_id == conversation_id,
                ActionCardRecord.company_id == company_id,
                ActionCardRecord.status == ActionCardStatus.PENDING.value,
            )
            .order_by(ActionCardRecord.created_at.asc(), ActionCardRecord.id.asc())
            .all()
        )
        if not pending:
            return [], []

        decided: list[ActionCard] = []
        notes: list[str] = []
        for (card_id,) in pending:
            card_id = str(card_id)
            try:
                if intent == IntentType.APPROVE_ACTION:
                    card = approve_card(
                        self.db,
                        card_id,
                        company_id=company_id,
                        store=self.store,
                        actor_id=actor_id,
                        security=security,
                    )
                    decided.append(card)
                    notes.append(f"Done: {card.title}.")
                else:
                    reject_card(self.db, card_id, company_id=company_id, actor_id=actor_id, reason="Rejected in conversation")
                    notes.append("Rejected the pending proposal.")
            except DocIntakeError as exc:
                logger.warning("Could not decide action card %s: %s", card_id, exc)
                notes.append(f"I could not complete one of the actions ({exc}).")
            except Exception as exc:
                logger.warning("Action card %s failed in conversation: %s", card_id, type(exc).__name__)
                notes.append("One of the actions failed and is still pending.")
        return decided, notes

    def _find_vendor(self, text: str, company_id: str) -> list[str]:
        found = _VENDOR_PHRASE_RE.search(text)
        name = found.group(1).strip(" .,?") if found else ""
        if not name:
            return ["Which vendor should I look for?"]
        try:
            match = self.vendor_resolver.match_existing(name, self.store.list_vendors(company_id))
        except Exception:
            logger.exception("Vendor lookup failed")
            return ["I could not search your vendors right now."]
        if match is None:
            return [f'I could not find a vendor matching "{name}".']
        return [f'"{name}" matches your vendor {match.entity_name} ({match.match_type.value}, {round(match.confidence * 100)}% confidence).']

    def _record_turn(
        self,
        conversation: ConversationContext,
        user_text: str,
        reply: str,
        cards: Sequence[ActionCard],
        metadata: dict[str, Any],
    ) -> None:
        if conversation.status == ConversationStatus.CLOSED:
            return
        self.conversations.append(conversation.id, MessageRole.USER, user_text, company_id=conversation.company_id, metadata=metadata)
        self.conversations.append(
            conversation.id,
            MessageRole.ASSISTANT,
            reply,
            company_id=conversation.company_id,
            metadata={"action_card_ids": [card.id for card in cards]},
        )
        self._sync_status(conversation.id, conversation.company_id)

    def _sync_status(self, conversation_id: str, company_id: str) -> None:
        waiting = (
            self.db.query(ActionCardRecord.id)
            .filter(
                ActionCardRecord.conversation_id == conversation_id,
                ActionCardRecord.status == ActionCardStatus.PENDING.value,
                ActionCardRecord.approval_required.is_(True),
            )
            .first()
            is not None
        )
        target = ConversationStatus.WAITING_APPROVAL if waiting else ConversationStatus.ACTIVE
        self.conversations.set_status(conversation_id, target, company_id=company_id)

    # --- output ---

    def _needs_approval(
        self,
        analysis: DocumentAnalysis,
        matches: Sequence[EntityMatch],
        cards: Sequence[ActionCard],
    ) -> bool:
        return (
            analysis.degraded
            or analysis.confidence < self.settings.action_approval_confidence
            or any(match.needs_approval for match in matches)
            or any(card.approval_required for card in cards)
        )

    def _response(
        self,
        message: str,
        cards: Sequence[ActionCard],
        confidence: float,
        needs_approval: bool,
        *,
        conversation_id: Optional[str],
        analysis: Optional[DocumentAnalysis] = None,
        intent: Optional[DetectedIntent] = None,
    ) -> PipelineResponse:
        extracted: dict[str, Any] = {}
        if analysis is not None:
            extracted = {
                name: ExtractedFieldOut(value=item.value, confidence=item.confidence, source=item.source).model_dump(mode="json")
                for name, item in analysis.extracted_data.items()
            }
        return PipelineResponse(
            message=message,
            action_cards=list(cards),
            confidence=max(0.0, min(confidence, 1.0)),
            needs_approval=needs_approval,
            conversation_id=conversation_id,
            intent=intent,
            document_type=analysis.document_type.value if analysis is not None else None,
            extracted_data=extracted,
            warnings=list(analysis.warnings) if analysis is not None else [],
            redacted_fields=list(analysis.redacted_fields) if analysis is not None else [],
        )

    def _audit_processed(
        self,
        upload: DocumentUpload,
        analysis: DocumentAnalysis,
        cards: Sequence[ActionCard],
        company_id: str,
        actor_id: Optional[str],
    ) -> None:
        create_audit_log(
            self.db,
            entity_type="document",
            entity_id=None,
            action="DOCUMENT_PROCESSED",
            new_value={
                "document_type": analysis.document_type.value,
                "confidence": analysis.confidence,
                "degraded": analysis.degraded,
                "action_cards": [card.type.value for card in cards],
                "warnings": [warning["code"] for warning in analysis.warnings],
            },
            actor_id=actor_id,
            company_id=company_id,
            metadata={
                "provider": analysis.provider,
                "mime_type": upload.mime_type,
                "size": len(upload.content),
            },
        )

    def _audit_vision(self, raw: RawExtraction, actor_id: Optional[str]) -> None:
        log_ai_run(
            self.db,
            scope="extraction",
            provider_result=ProviderResult(raw_text=raw.text, model=raw.model, provider="openai"),
            prompt_text=VISION_PROMPT,
            parsed_output={"confidence": raw.confidence, "fields": [item.name for item in raw.field_candidates]},
            actor_id=actor_id,
        )
