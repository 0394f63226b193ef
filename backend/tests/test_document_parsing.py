"""Classification, field normalization, currency inference and categorization."""

from datetime import date

import pytest

from docintake.schemas.documents import DocumentType, FieldCandidate, FieldSource, RawExtraction
from docintake.services.documents.categorization import categorize
from docintake.services.documents.classifier import classify_filename, classify_text, refine_document_type
from docintake.services.documents.currency import effective_rate, infer_currency, rate_band
from docintake.services.documents.parser import normalize, parse_amount, parse_date_value

HST_RECEIPT = """CORNER DELI
123 Main St
Date: 03/15/2026
Subtotal 100.00
HST 13% 13.00
Total 113.00
"""


def _text(body: str) -> RawExtraction:
    return RawExtraction(text=body, confidence=0.7, provider="plain_text")


# ── classification ───────────────────────────────────────────────────


@pytest.mark.parametrize(
    "filename, expected",
    [
        ("IMG_receipt_01.jpg", DocumentType.RECEIPT),
        ("vendor_bill.pdf", DocumentType.INVOICE),
        ("business_card_jane.png", DocumentType.BUSINESS_CARD),
        ("Estimate-2026.pdf", DocumentType.QUOTE),
        ("service_agreement.pdf", DocumentType.CONTRACT),
        ("scan.png", DocumentType.UNKNOWN),
        (None, DocumentType.UNKNOWN),
    ],
)
def test_classify_filename(filename, expected):
    assert classify_filename(filename) == expected


def test_classify_text_cues():
    assert classify_text("INVOICE\nBill To: Acme\nAmount Due 50.00") == DocumentType.INVOICE
    assert classify_text("Jane Smith\njane@acme.com\n416-555-0199") == DocumentType.BUSINESS_CARD
    assert classify_text("Coffee 4.50\nSubtotal 4.50\nThank you") == DocumentType.RECEIPT
    assert classify_text("") == DocumentType.UNKNOWN


def test_refine_keeps_filename_decision_then_trusts_model_label():
    assert refine_document_type(DocumentType.RECEIPT, "INVOICE\nAmount Due 5.00", "invoice") == DocumentType.RECEIPT
    assert refine_document_type(DocumentType.UNKNOWN, "", "Business Card") == DocumentType.BUSINESS_CARD
    assert refine_document_type(DocumentType.UNKNOWN, "Quotation valid until May", "other") == DocumentType.QUOTE


# ── amounts and dates ────────────────────────────────────────────────


def test_parse_amount_formats():
    assert parse_amount("$1,234.50") == pytest.approx(1234.50)
    assert parse_amount("1.234,50") == pytest.approx(1234.50)
    assert parse_amount(12) == pytest.approx(12.0)
    assert parse_amount(None) is None
    assert parse_amount("n/a") is None


def test_parse_date_disambiguates_by_token_above_twelve():
    parsed = parse_date_value("15/04/2026")
    assert parsed.value == date(2026, 4, 15)
    assert parsed.ambiguous is False

    parsed = parse_date_value("04/15/2026")
    assert parsed.value == date(2026, 4, 15)


def test_parse_date_ambiguous_uses_configured_order():
    month_first = parse_date_value("04/05/2026")
    day_first = parse_date_value("04/05/2026", day_first=True)

    assert month_first.value == date(2026, 4, 5)
    assert day_first.value == date(2026, 5, 4)
    assert month_first.ambiguous and day_first.ambiguous
    assert month_first.confidence == pytest.approx(0.6)


def test_parse_date_iso_and_month_names():
    assert parse_date_value("2026-03-01").value == date(2026, 3, 1)
    assert parse_date_value("March 5, 2026").value == date(2026, 3, 5)
    assert parse_date_value("5th Mar 2026").value == date(2026, 3, 5)
    assert parse_date_value("no date here") is None


# ── normalization ────────────────────────────────────────────────────


def test_hst_receipt_infers_cad_with_trusted_tax():
    fields = normalize(_text(HST_RECEIPT), DocumentType.RECEIPT)

    assert fields["total_amount"].value == pytest.approx(113.00)
    assert fields["subtotal"].value == pytest.approx(100.00)
    assert fields["tax_amount"].value == pytest.approx(13.00)
    assert fields["tax_amount"].confidence >= 0.85
    assert fields["tax_rate"].value == pytest.approx(13.0)
    assert fields["currency"].value == "CAD"
    assert fields["vendor_name"].value == "CORNER DELI"
    assert fields["expense_date"].value == date(2026, 3, 15)
    assert all(field.source == FieldSource.PATTERN for field in fields.values())


def test_tax_derived_from_printed_rate():
    fields = normalize(_text("Subtotal 100.00\nGST 5%\nTotal 105.00"), DocumentType.RECEIPT)

    assert fields["tax_amount"].value == pytest.approx(5.00)
    assert fields["tax_amount"].confidence == pytest.approx(0.9)
    assert fields["currency"].value == "CAD"


def test_implausible_tax_ratio_is_capped():
    fields = normalize(_text("Subtotal 100.00\nTax 40.00\nTotal 140.00"), DocumentType.RECEIPT)
    assert fields["tax_amount"].confidence <= 0.6


def test_derived_tax_outside_known_bands_is_capped():
    # total - subtotal agrees with the printed rate, but 35% is no known jurisdiction.
    fields = normalize(_text("SHOP\nSubtotal 100.00\nTax 35%\nTotal 135.00"), DocumentType.RECEIPT)

    assert fields["tax_amount"].value == pytest.approx(35.00)
    assert fields["tax_amount"].confidence <= 0.6


def test_unlabeled_amounts_take_largest_with_low_confidence():
    fields = normalize(_text("Coffee 4.50\nMuffin 3.25"), DocumentType.UNKNOWN)

    assert fields["total_amount"].value == pytest.approx(4.50)
    assert fields["total_amount"].confidence == pytest.approx(0.4)
    assert fields["currency"].source == FieldSource.DEFAULT


def test_structured_candidates_win_over_patterns():
    raw = RawExtraction(
        text="Total 99.99",
        confidence=0.9,
        field_candidates=(
            FieldCandidate(name="total_amount", value="$45.50", confidence=0.95),
            FieldCandidate(name="vendor_name", value="Starbucks", confidence=0.9),
            FieldCandidate(name="expense_date", value="2026-03-01", confidence=0.9),
            FieldCandidate(name="currency", value="usd", confidence=0.8),
        ),
        provider="vision_model",
    )
    fields = normalize(raw, DocumentType.RECEIPT)

    assert fields["total_amount"].value == pytest.approx(45.50)
    assert fields["total_amount"].source == FieldSource.STRUCTURED
    assert fields["currency"].value == "USD"
    assert fields["expense_date"].value == date(2026, 3, 1)


def test_business_card_fields():
    card = """Jane Smith
Senior Account Manager
Acme Solutions Inc
jane.smith@acme.com
(416) 555-0199
www.acme.com
"""
    fields = normalize(_text(card), DocumentType.BUSINESS_CARD)

    assert fields["contact_name"].value == "Jane Smith"
    assert fields["job_title"].value == "Senior Account Manager"
    assert fields["company_name"].value == "Acme Solutions Inc"
    assert fields["email"].value == "jane.smith@acme.com"
    assert fields["phone"].value == "(416) 555-0199"
    assert fields["website"].value == "www.acme.com"
    assert "total_amount" not in fields


def test_invoice_number_and_description():
    text = "ACME SUPPLY\nInvoice #: INV-2041\nDescription: Printer toner\nTotal 80.00"
    fields = normalize(_text(text), DocumentType.INVOICE)

    assert fields["invoice_number"].value == "INV-2041"
    assert fields["description"].value == "Printer toner"


# ── currency ─────────────────────────────────────────────────────────


def test_currency_priority_order():
    assert infer_currency("TOTAL 20.00 EUR\nHST 13%").currency == "EUR"
    assert infer_currency("VAT 20% 4.00").currency == "GBP"
    assert infer_currency("", tax=20.0, subtotal=100.0).currency == "GBP"
    assert infer_currency("", vendor_name="Tim Hortons #42").currency == "CAD"


def test_dollar_sign_alone_falls_back_to_default():
    inference = infer_currency("Total $45.00", default_currency="usd")

    assert inference.currency == "USD"
    assert inference.defaulted is True
    assert inference.confidence == pytest.approx(0.5)


def test_us_sales_tax_band_gives_no_currency():
    assert rate_band(8.0).currency is None
    assert infer_currency("", tax=8.0, subtotal=100.0, default_currency="CAD").currency == "CAD"


def test_effective_rate():
    assert effective_rate(13.0, 100.0, None) == pytest.approx(13.0)
    assert effective_rate(13.0, None, 113.0) == pytest.approx(13.0)
    assert effective_rate(None, 100.0, 113.0) is None


# ── categorization ───────────────────────────────────────────────────


def test_vendor_keyword_categorizes_with_gl_account():
    suggestion = categorize("Starbucks #123")

    assert suggestion.category == "Travel & Entertainment"
    assert suggestion.subcategory == "Meals"
    assert suggestion.gl_account == "6020"
    assert suggestion.confidence == pytest.approx(0.8)


def test_description_keyword_scores_lower():
    suggestion = categorize("Corner Deli", "restaurant order")

    assert suggestion.gl_account == "6020"
    assert suggestion.confidence == pytest.approx(0.7)


def test_keywords_match_whole_words_only():
    # "pen" must not match inside "Penske".
    assert categorize("Penske") is None
