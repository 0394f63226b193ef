"""End-to-end pipeline runs against an in-memory database."""

import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from docintake.core.auth import SecurityContext
from docintake.core.errors import EntityNotFound, InputError
from docintake.models.records import ActionCardRecord, AuditLog, Expense, SuggestedEntity
from docintake.schemas.actions import ActionCardStatus, ActionType
from docintake.schemas.conversation import ConversationStatus, IntentType
from docintake.schemas.documents import DocumentUpload
from docintake.services.conversation.store import SqlConversationStore
from docintake.services.documents.pipeline import DocumentPipeline
from docintake.services.extraction.base import BaseExtractor
from docintake.services.extraction.chain import ExtractionChain
from docintake.services.extraction.text import PlainTextExtractor
from docintake.services.reference_store import SqlReferenceStore
from docintake.utils.clock import utc_now

from conftest import COMPANY_ID, make_settings

ACTOR = "user-1"


def _recent_date():
    return (utc_now() - timedelta(days=5)).date().isoformat()


def _hst_receipt():
    return (
        "CORNER DELI\n"
        "123 Main St\n"
        f"Date: {_recent_date()}\n"
        "Subtotal 100.00\n"
        "HST 13% 13.00\n"
        "Total 113.00\n"
    ).encode()


class _BrokenExtractor(BaseExtractor):
    name = "broken"

    def supports(self, mime_type):
        return mime_type.startswith("image/")

    async def extract(self, upload):
        raise ConnectionError("provider offline")


def _pipeline(db, settings=None, **kwargs):
    settings = settings or make_settings()
    return DocumentPipeline(
        db,
        settings,
        store=SqlReferenceStore(db),
        conversations=SqlConversationStore(db),
        **kwargs,
    )


# ── documents ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_text_receipt_end_to_end(db):
    pipeline = _pipeline(db)
    upload = DocumentUpload(content=_hst_receipt(), mime_type="text/plain; charset=utf-8", filename="deli_receipt.txt")

    response = await pipeline.process_document(upload, COMPANY_ID, actor_id=ACTOR)
    db.commit()

    assert response.document_type == "receipt"
    assert response.extracted_data["total_amount"]["value"] == pytest.approx(113.0)
    assert response.extracted_data["tax_amount"]["value"] == pytest.approx(13.0)
    assert response.extracted_data["currency"]["value"] == "CAD"
    assert response.needs_approval is True
    assert [card.type for card in response.action_cards] == [ActionType.CREATE_VENDOR, ActionType.CREATE_EXPENSE]
    assert response.action_cards[0].data.name == "Corner Deli"
    assert "CORNER DELI for 113.00 CAD" in response.message
    assert any(w["code"] == "NEW_ENTITY" for w in response.warnings)
    assert not any(w["code"] == "AMOUNT_MISMATCH" for w in response.warnings)

    suggestion = db.query(SuggestedEntity).one()
    assert suggestion.suggested_name == "Corner Deli"
    assert response.action_cards[0].data.suggestion_id == str(suggestion.id)
    assert db.query(ActionCardRecord).count() == 2
    assert db.query(AuditLog).filter(AuditLog.action == "DOCUMENT_PROCESSED").count() == 1


@pytest.mark.asyncio
async def test_unsupported_type_is_rejected_before_extraction(db):
    chain = ExtractionChain([PlainTextExtractor()], timeout_seconds=1.0)
    pipeline = _pipeline(db, chain=chain)
    upload = DocumentUpload(content=b"PK\x03\x04", mime_type="application/zip", filename="receipts.zip")

    with patch.object(chain, "extract", new=AsyncMock()) as extract:
        with pytest.raises(InputError) as excinfo:
            await pipeline.process_document(upload, COMPANY_ID, actor_id=ACTOR)

    extract.assert_not_called()
    assert excinfo.value.status_code == 415
    db.commit()
    assert db.query(AuditLog).filter(AuditLog.action == "DOCUMENT_INPUT_REJECTED").count() == 1


@pytest.mark.asyncio
async def test_empty_and_oversized_documents_are_rejected(db):
    pipeline = _pipeline(db, make_settings(max_document_bytes=10))

    with pytest.raises(InputError) as empty:
        await pipeline.process_document(DocumentUpload(content=b"", mime_type="text/plain"), COMPANY_ID)
    with pytest.raises(InputError) as large:
        await pipeline.process_document(DocumentUpload(content=b"x" * 11, mime_type="text/plain"), COMPANY_ID)

    assert empty.value.status_code == 400
    assert large.value.status_code == 413


@pytest.mark.asyncio
async def test_exhausted_extractors_degrade_to_fallback(db):
    chain = ExtractionChain([_BrokenExtractor(), PlainTextExtractor()], timeout_seconds=1.0)
    pipeline = _pipeline(db, chain=chain)
    upload = DocumentUpload(content=b"\x89PNG", mime_type="image/png", filename="photo.png")

    response = await pipeline.process_document(upload, COMPANY_ID, actor_id=ACTOR)
    db.commit()

    assert response.document_type == "receipt"
    assert response.confidence == pytest.approx(0.5)
    assert response.needs_approval is True
    assert response.extracted_data["total_amount"] == {"value": 0.0, "confidence": 0.0, "source": "default"}
    assert response.extracted_data["currency"]["value"] == "USD"
    assert "could not read" in response.message
    assert db.query(SuggestedEntity).count() == 0
    exhausted = db.query(AuditLog).filter(AuditLog.action == "EXTRACTION_PROVIDERS_EXHAUSTED").one()
    assert exhausted.new_value == {"attempts": [{"provider": "broken", "error": "ConnectionError"}]}


@pytest.mark.asyncio
async def test_gl_fields_are_redacted_without_capability(db):
    text = f"STARBUCKS #123\nDate: {_recent_date()}\nLatte 5.00\nTotal 5.65\n".encode()
    upload = DocumentUpload(content=text, mime_type="text/plain", filename="receipt.txt")

    member = await _pipeline(db).process_document(upload, COMPANY_ID, SecurityContext.for_role("MEMBER"), actor_id=ACTOR)
    admin = await _pipeline(db).process_document(upload, COMPANY_ID, SecurityContext.for_role("ADMIN"), actor_id=ACTOR)

    assert member.extracted_data["gl_account"]["value"] is None
    assert member.redacted_fields == ["gl_account", "gl_name"]
    assert [card.type for card in member.action_cards] == [ActionType.CREATE_EXPENSE]
    assert member.action_cards[0].data.gl_account is None

    assert admin.extracted_data["gl_account"]["value"] == "6020"
    assert admin.redacted_fields == []
    assert admin.action_cards[-1].data.gl_account == "6020"


@pytest.mark.asyncio
async def test_document_turn_is_recorded_in_conversation(db):
    conversations = SqlConversationStore(db)
    pipeline = DocumentPipeline(db, make_settings(), store=SqlReferenceStore(db), conversations=conversations)
    conversation_id = conversations.create(COMPANY_ID, user_id=ACTOR).id

    upload = DocumentUpload(content=_hst_receipt(), mime_type="text/plain", filename="deli_receipt.txt")
    response = await pipeline.process_document(upload, COMPANY_ID, conversation_id=conversation_id, actor_id=ACTOR)
    db.commit()

    assert response.conversation_id == conversation_id
    loaded = conversations.get(conversation_id, company_id=COMPANY_ID)
    assert [m.content for m in loaded.messages][0] == "[document] deli_receipt.txt"
    assert loaded.status == ConversationStatus.WAITING_APPROVAL


# ── conversation ─────────────────────────────────────────────────────


def _reference_data(db):
    store = SqlReferenceStore(db)
    vendor_id = store.create_vendor(COMPANY_ID, "Staples")
    category_id = store.create_category(COMPANY_ID, "Office Supplies", gl_account="6010")
    db.commit()
    return vendor_id, category_id


@pytest.mark.asyncio
async def test_expense_message_then_approval(db):
    vendor_id, category_id = _reference_data(db)
    pipeline = _pipeline(db)

    proposed = await pipeline.handle_conversation("I spent $45.50 at Staples yesterday", company_id=COMPANY_ID, actor_id=ACTOR)
    db.commit()

    assert proposed.intent.primary == IntentType.CREATE_EXPENSE
    assert len(proposed.action_cards) == 1
    card = proposed.action_cards[0]
    assert card.data.amount == pytest.approx(45.50)
    assert card.data.vendor_id == vendor_id
    assert card.data.category_id == category_id
    assert card.approval_required is True
    assert SqlConversationStore(db).get(proposed.conversation_id, company_id=COMPANY_ID).status == ConversationStatus.WAITING_APPROVAL

    approved = await pipeline.handle_conversation(
        "yes", conversation_id=proposed.conversation_id, company_id=COMPANY_ID, actor_id=ACTOR
    )
    db.commit()

    assert approved.conversation_id == proposed.conversation_id
    assert approved.message.startswith("Done: Create expense 45.50 USD")
    assert approved.action_cards[0].status == ActionCardStatus.COMPLETED
    expense = db.query(Expense).one()
    assert str(expense.vendor_id) == vendor_id
    assert SqlConversationStore(db).get(proposed.conversation_id, company_id=COMPANY_ID).status == ConversationStatus.ACTIVE


@pytest.mark.asyncio
async def test_reject_message_rejects_pending_cards(db):
    _reference_data(db)
    pipeline = _pipeline(db)
    proposed = await pipeline.handle_conversation("I paid 20.00 at Staples", company_id=COMPANY_ID, actor_id=ACTOR)

    rejected = await pipeline.handle_conversation("no", conversation_id=proposed.conversation_id, company_id=COMPANY_ID, actor_id=ACTOR)
    db.commit()

    assert rejected.message == "Rejected the pending proposal."
    record = db.query(ActionCardRecord).one()
    assert record.status == ActionCardStatus.REJECTED.value
    assert db.query(Expense).count() == 0


@pytest.mark.asyncio
async def test_approve_with_nothing_pending_uses_template(db):
    response = await _pipeline(db).handle_conversation("yes", company_id=COMPANY_ID)

    assert response.action_cards == []
    assert response.needs_approval is False
    assert "nothing waiting" in response.message


@pytest.mark.asyncio
async def test_find_vendor_reports_existing_match(db):
    _reference_data(db)
    response = await _pipeline(db).handle_conversation("find vendor Staples", company_id=COMPANY_ID)

    assert response.intent.primary == IntentType.FIND_VENDOR
    assert "matches your vendor Staples" in response.message


@pytest.mark.asyncio
async def test_note_replies_pass_through_guardrails(db):
    pipeline = _pipeline(db)

    lookup = await pipeline.handle_conversation("find vendor ACME 4111 1111 1111 1111", company_id=COMPANY_ID)
    assert "4111" not in lookup.message
    assert "[REDACTED_CARD]" in lookup.message

    proposed = await pipeline.handle_conversation("add contact bob@acme.com", company_id=COMPANY_ID, actor_id=ACTOR)
    done = await pipeline.handle_conversation(
        "yes", conversation_id=proposed.conversation_id, company_id=COMPANY_ID, actor_id=ACTOR
    )
    db.commit()

    assert done.message.startswith("Done:")
    assert "bob@acme.com" not in done.message
    assert "[REDACTED_EMAIL]" in done.message


@pytest.mark.asyncio
async def test_closed_conversation_starts_a_new_one(db):
    conversations = SqlConversationStore(db)
    closed = conversations.create(COMPANY_ID)
    conversations.set_status(closed.id, ConversationStatus.CLOSED, company_id=COMPANY_ID)
    db.commit()

    response = await _pipeline(db).handle_conversation("help me", conversation_id=closed.id, company_id=COMPANY_ID)

    assert response.conversation_id != closed.id
    assert len(conversations.get(response.conversation_id, company_id=COMPANY_ID).messages) == 2


@pytest.mark.asyncio
async def test_unknown_conversation_and_empty_message(db):
    pipeline = _pipeline(db)

    with pytest.raises(EntityNotFound):
        await pipeline.handle_conversation("help", conversation_id=str(uuid.uuid4()), company_id=COMPANY_ID)
    with pytest.raises(InputError):
        await pipeline.handle_conversation("   ", company_id=COMPANY_ID)
