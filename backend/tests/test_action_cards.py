"""Action card generation and the approve/execute state machine."""

from datetime import date, timedelta

import pytest

from docintake.core.auth import SecurityContext
from docintake.core.errors import EntityNotFound, PermissionDenied, StateTransitionError
from docintake.models.records import ActionCardRecord, AuditLog, Expense, SuggestedEntity, Vendor
from docintake.schemas.actions import ActionCardStatus, ActionPriority, ActionType
from docintake.schemas.documents import (
    DocumentAnalysis,
    DocumentType,
    EntityKind,
    EntityMatch,
    ExtractedField,
    FieldSource,
    MatchType,
)
from docintake.schemas.suggestions import SuggestionStatus
from docintake.services.actions.generator import ActionCardGenerator
from docintake.services.actions.lifecycle import apply_card_transition, approve_card, get_card, reject_card, save_cards
from docintake.services.reference_store import SqlReferenceStore
from docintake.services.suggestions import propose_suggestion
from docintake.utils.clock import utc_now

from conftest import COMPANY_ID, OTHER_COMPANY_ID, make_settings

ACTOR = "user-1"


def _analysis(document_type=DocumentType.RECEIPT, confidence=0.9, **values):
    fields = {
        name: ExtractedField(name=name, value=value, confidence=0.85, source=FieldSource.PATTERN)
        for name, value in values.items()
    }
    return DocumentAnalysis(document_type=document_type, extracted_data=fields, confidence=confidence)


def _receipt(**overrides):
    values = {
        "vendor_name": "JOE'S BAKERY",
        "total_amount": 113.0,
        "subtotal": 100.0,
        "tax_amount": 13.0,
        "currency": "CAD",
        "expense_date": date(2026, 3, 15),
    }
    values.update(overrides)
    return _analysis(**values)


def _new_vendor(name="Joe's Bakery", suggestion_id=None):
    return EntityMatch(
        entity_kind=EntityKind.VENDOR,
        entity_name=name,
        confidence=0.5,
        match_type=MatchType.NEW,
        reason=f'No vendor on file matches "{name}"',
        needs_approval=True,
        suggestion_id=suggestion_id,
    )


def _exact_vendor():
    return EntityMatch(
        entity_kind=EntityKind.VENDOR,
        entity_id="9b2f0c7e-7a1d-4a57-9d4e-2f1f4f6e0a11",
        entity_name="Staples",
        confidence=0.95,
        match_type=MatchType.EXACT,
        reason="Exact name match",
        needs_approval=False,
    )


# ── generation ───────────────────────────────────────────────────────


def test_receipt_with_new_vendor_yields_vendor_and_expense_cards():
    cards = ActionCardGenerator(make_settings()).generate(_receipt(), [_new_vendor()], now=utc_now())

    assert [card.type for card in cards] == [ActionType.CREATE_VENDOR, ActionType.CREATE_EXPENSE]
    vendor_card, expense_card = cards
    assert vendor_card.data.name == "Joe's Bakery"
    assert vendor_card.approval_required is True
    assert expense_card.data.amount == pytest.approx(113.0)
    assert expense_card.data.vendor_name == "Joe's Bakery"
    assert expense_card.data.vendor_id is None
    assert expense_card.approval_required is True
    assert any("sensitive" in reason for reason in expense_card.reasons)


def test_confident_exact_match_needs_no_approval_when_not_sensitive():
    generator = ActionCardGenerator(make_settings(sensitive_action_types_raw=""))
    cards = generator.generate(_receipt(vendor_name="Staples"), [_exact_vendor()], now=utc_now())

    assert [card.type for card in cards] == [ActionType.CREATE_EXPENSE]
    assert cards[0].approval_required is False
    assert cards[0].reasons == []
    assert cards[0].data.vendor_id == _exact_vendor().entity_id


def test_low_confidence_requires_approval():
    generator = ActionCardGenerator(make_settings(sensitive_action_types_raw=""))
    cards = generator.generate(_receipt(), [_exact_vendor()], now=utc_now())
    low = generator.generate(_analysis(confidence=0.5, total_amount=20.0), [_exact_vendor()], now=utc_now())

    assert cards[0].approval_required is False
    assert low[0].approval_required is True
    assert "below" in low[0].reasons[0]


def test_cards_outside_capabilities_are_dropped():
    cards = ActionCardGenerator(make_settings()).generate(
        _receipt(), [_new_vendor()], now=utc_now(), security=SecurityContext.for_role("MEMBER")
    )
    assert [card.type for card in cards] == [ActionType.CREATE_EXPENSE]


def test_business_card_yields_contact_card():
    analysis = _analysis(
        DocumentType.BUSINESS_CARD,
        contact_name="Jane Smith",
        job_title="Account Manager",
        company_name="Acme Solutions Inc",
        email="jane.smith@acme.com",
    )
    cards = ActionCardGenerator(make_settings()).generate(analysis, [], now=utc_now())

    assert [card.type for card in cards] == [ActionType.CREATE_CONTACT]
    assert cards[0].priority == ActionPriority.LOW
    assert cards[0].description == "Account Manager at Acme Solutions Inc"


def test_large_amount_is_high_priority():
    cards = ActionCardGenerator(make_settings()).generate(_receipt(total_amount=25000.0), [_exact_vendor()], now=utc_now())
    assert cards[-1].priority == ActionPriority.HIGH


def test_unknown_document_without_amount_yields_nothing():
    analysis = _analysis(DocumentType.UNKNOWN, vendor_name="Somewhere")
    assert ActionCardGenerator(make_settings()).generate(analysis, [], now=utc_now()) == []


def test_cards_expire_after_ttl():
    now = utc_now()
    cards = ActionCardGenerator(make_settings(action_card_ttl_hours=2)).generate(_receipt(), [], now=now)
    assert cards[0].expires_at == now + timedelta(hours=2)


# ── lifecycle ────────────────────────────────────────────────────────


def _saved_expense_card(db, *, now=None, settings=None):
    generator = ActionCardGenerator(settings or make_settings())
    cards = generator.generate(_receipt(vendor_name="Staples"), [], now=now or utc_now())
    save_cards(db, cards, company_id=COMPANY_ID, created_by=ACTOR)
    db.commit()
    return cards[0].id


class _FailingStore(SqlReferenceStore):
    def create_expense(self, company_id, *, amount, created_by=None, **details):
        raise RuntimeError("ledger unavailable")


def test_approve_executes_and_completes(db):
    card_id = _saved_expense_card(db)

    card = approve_card(db, card_id, company_id=COMPANY_ID, store=SqlReferenceStore(db), actor_id=ACTOR)
    db.commit()

    assert card.status == ActionCardStatus.COMPLETED
    expense = db.get(Expense, card.result_entity_id)
    assert float(expense.amount) == pytest.approx(113.0)
    assert expense.currency == "CAD"
    assert expense.expense_date == date(2026, 3, 15)
    assert expense.created_by == ACTOR
    changes = db.query(AuditLog).filter(AuditLog.action == "ACTION_CARD_STATUS_CHANGE").count()
    assert changes == 3


def test_approving_completed_card_is_a_no_op(db):
    card_id = _saved_expense_card(db)
    store = SqlReferenceStore(db)
    first = approve_card(db, card_id, company_id=COMPANY_ID, store=store, actor_id=ACTOR)
    db.commit()

    second = approve_card(db, card_id, company_id=COMPANY_ID, store=store, actor_id=ACTOR)
    db.commit()

    assert second.result_entity_id == first.result_entity_id
    assert db.query(Expense).count() == 1


def test_completed_card_cannot_go_back_to_executing(db):
    card_id = _saved_expense_card(db)
    approve_card(db, card_id, company_id=COMPANY_ID, store=SqlReferenceStore(db), actor_id=ACTOR)
    db.commit()

    record = get_card(db, card_id, company_id=COMPANY_ID)
    with pytest.raises(StateTransitionError):
        apply_card_transition(db, record, ActionCardStatus.EXECUTING, actor_id=ACTOR)


def test_reject_pending_card(db):
    card_id = _saved_expense_card(db)

    assert reject_card(db, card_id, company_id=COMPANY_ID, actor_id=ACTOR, reason="duplicate") is True
    db.commit()
    assert reject_card(db, card_id, company_id=COMPANY_ID, actor_id=ACTOR) is False

    with pytest.raises(StateTransitionError):
        approve_card(db, card_id, company_id=COMPANY_ID, store=SqlReferenceStore(db), actor_id=ACTOR)
    assert db.query(Expense).count() == 0


def test_expired_card_cannot_be_approved(db):
    card_id = _saved_expense_card(db, now=utc_now() - timedelta(hours=48))

    with pytest.raises(StateTransitionError):
        approve_card(db, card_id, company_id=COMPANY_ID, store=SqlReferenceStore(db), actor_id=ACTOR)
    db.commit()

    assert get_card(db, card_id, company_id=COMPANY_ID).status == ActionCardStatus.PENDING.value


def test_execution_failure_returns_card_to_pending(db):
    card_id = _saved_expense_card(db)

    with pytest.raises(RuntimeError):
        approve_card(db, card_id, company_id=COMPANY_ID, store=_FailingStore(db), actor_id=ACTOR)
    db.commit()

    assert get_card(db, card_id, company_id=COMPANY_ID).status == ActionCardStatus.PENDING.value
    assert db.query(AuditLog).filter(AuditLog.action == "ACTION_CARD_STATUS_CHANGE").count() == 0
    failures = db.query(AuditLog).filter(AuditLog.action == "ACTION_CARD_EXECUTION_FAILED").all()
    assert len(failures) == 1
    assert failures[0].audit_meta == {"error": "RuntimeError"}

    # The card can be retried once the store recovers.
    card = approve_card(db, card_id, company_id=COMPANY_ID, store=SqlReferenceStore(db), actor_id=ACTOR)
    assert card.status == ActionCardStatus.COMPLETED


def test_member_cannot_execute_vendor_card(db):
    cards = ActionCardGenerator(make_settings()).generate(_receipt(), [_new_vendor()], now=utc_now())
    save_cards(db, cards, company_id=COMPANY_ID)
    db.commit()

    with pytest.raises(PermissionDenied):
        approve_card(
            db,
            cards[0].id,
            company_id=COMPANY_ID,
            store=SqlReferenceStore(db),
            actor_id=ACTOR,
            security=SecurityContext.for_role("MEMBER"),
        )
    db.commit()

    assert db.query(Vendor).count() == 0
    assert get_card(db, cards[0].id, company_id=COMPANY_ID).status == ActionCardStatus.PENDING.value


def test_vendor_card_approves_its_suggestion(db):
    suggestion_id = propose_suggestion(db, company_id=COMPANY_ID, kind="vendor", name="Joe's Bakery", confidence=0.5)
    cards = ActionCardGenerator(make_settings()).generate(_receipt(), [_new_vendor(suggestion_id=suggestion_id)], now=utc_now())
    save_cards(db, cards, company_id=COMPANY_ID)
    db.commit()

    card = approve_card(db, cards[0].id, company_id=COMPANY_ID, store=SqlReferenceStore(db), actor_id=ACTOR)
    db.commit()

    suggestion = db.get(SuggestedEntity, suggestion_id)
    assert suggestion.status == SuggestionStatus.APPROVED.value
    assert str(suggestion.created_entity_id) == card.result_entity_id
    assert db.query(Vendor).count() == 1


def test_cards_are_scoped_to_company(db):
    card_id = _saved_expense_card(db)

    with pytest.raises(EntityNotFound):
        get_card(db, card_id, company_id=OTHER_COMPANY_ID)
    assert db.query(ActionCardRecord).count() == 1
