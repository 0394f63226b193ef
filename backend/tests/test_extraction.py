"""Extraction backends and the ordered fallback chain."""

import asyncio
import io
import json
import unittest
from unittest.mock import patch

import httpx
from PIL import Image

from docintake.core.errors import ExtractionError
from docintake.schemas.documents import DocumentUpload, RawExtraction
from docintake.services.ai.common.providers import BaseProvider, ProviderResult
from docintake.services.ai.common.router import ResolvedConfig
from docintake.services.extraction.base import BaseExtractor, ProviderUnavailable
from docintake.services.extraction.chain import ExtractionChain, build_extraction_chain
from docintake.services.extraction.document_ai import DocumentAIExtractor, parse_document_ai_response
from docintake.services.extraction.text import PlainTextExtractor
from docintake.services.extraction.vision import VisionModelExtractor, parse_vision_payload

from conftest import make_settings


def _png_bytes(size=(40, 20)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color=(255, 255, 255)).save(buf, format="PNG")
    return buf.getvalue()


class _StubExtractor(BaseExtractor):
    def __init__(self, name, *, result=None, error=None, delay=0.0, mime_types=("image/png",)):
        self.name = name
        self.result = result
        self.error = error
        self.delay = delay
        self.mime_types = mime_types
        self.calls = 0

    def supports(self, mime_type):
        return mime_type in self.mime_types

    async def extract(self, upload):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class _VisionProvider(BaseProvider):
    name = "openai"
    supports_images = True

    def __init__(self, text):
        self.text = text
        self.images = []

    async def generate(self, prompt, *, system_prompt=None, images=(), model="", **kwargs):
        self.images.extend(images)
        return ProviderResult(raw_text=self.text, model=model or "vision-test", provider=self.name)


class ExtractionChainTests(unittest.TestCase):
    upload = DocumentUpload(content=b"img", mime_type="image/png", filename="receipt.png")

    def test_first_success_wins(self):
        first = _StubExtractor("first", result=RawExtraction(text="A", confidence=0.9))
        second = _StubExtractor("second", result=RawExtraction(text="B", confidence=0.9))
        chain = ExtractionChain([first, second], timeout_seconds=1.0)

        result = asyncio.run(chain.extract(self.upload))

        self.assertEqual(result.text, "A")
        self.assertEqual(result.provider, "first")
        self.assertEqual(second.calls, 0)

    def test_failures_fall_through_to_next_provider(self):
        broken = _StubExtractor("broken", error=httpx.ConnectError("refused"))
        missing = _StubExtractor("missing", error=ProviderUnavailable("no key"))
        working = _StubExtractor("working", result=RawExtraction(text="ok", confidence=0.7, provider="working"))
        chain = ExtractionChain([broken, missing, working], timeout_seconds=1.0)

        result = asyncio.run(chain.extract(self.upload))

        self.assertEqual(result.provider, "working")
        self.assertEqual(broken.calls, 1)
        self.assertEqual(missing.calls, 1)

    def test_timeout_moves_on(self):
        slow = _StubExtractor("slow", result=RawExtraction(text="late", confidence=0.9), delay=1.0)
        fast = _StubExtractor("fast", result=RawExtraction(text="fast", confidence=0.6))
        chain = ExtractionChain([slow, fast], timeout_seconds=0.01)

        result = asyncio.run(chain.extract(self.upload))
        self.assertEqual(result.text, "fast")

    def test_all_failures_raise_with_attempts(self):
        chain = ExtractionChain(
            [
                _StubExtractor("a", error=RuntimeError("boom")),
                _StubExtractor("b", error=ProviderUnavailable("no endpoint")),
            ],
            timeout_seconds=1.0,
        )

        with self.assertRaises(ExtractionError) as ctx:
            asyncio.run(chain.extract(self.upload))

        self.assertEqual(
            ctx.exception.attempts,
            [{"provider": "a", "error": "RuntimeError"}, {"provider": "b", "error": "unavailable"}],
        )

    def test_unsupported_mime_type_is_not_attempted(self):
        extractor = _StubExtractor("images", result=RawExtraction(text="x", confidence=0.9))
        chain = ExtractionChain([extractor], timeout_seconds=1.0)
        upload = DocumentUpload(content=b"PK", mime_type="application/zip")

        self.assertFalse(chain.supports("application/zip"))
        with self.assertRaises(ExtractionError) as ctx:
            asyncio.run(chain.extract(upload))
        self.assertEqual(ctx.exception.attempts, [])
        self.assertEqual(extractor.calls, 0)

    def test_build_chain_follows_configured_order_and_keeps_text_fallback(self):
        chain = build_extraction_chain(make_settings(extraction_providers_raw="document_ai,bogus"))
        self.assertEqual([e.name for e in chain.extractors], ["document_ai", "plain_text"])


class PlainTextExtractorTests(unittest.TestCase):
    def test_decodes_and_normalizes_newlines(self):
        upload = DocumentUpload(content=b"CORNER DELI\r\nTotal 4.50\r\n", mime_type="text/plain")
        result = asyncio.run(PlainTextExtractor().extract(upload))

        self.assertEqual(result.text, "CORNER DELI\nTotal 4.50")
        self.assertAlmostEqual(result.confidence, 0.7)

    def test_empty_body_has_low_confidence(self):
        result = asyncio.run(PlainTextExtractor().extract(DocumentUpload(content=b"  ", mime_type="text/plain")))
        self.assertAlmostEqual(result.confidence, 0.1)


DOCUMENT_AI_RESPONSE = {
    "document": {
        "text": "STAPLES\nTotal $54.23",
        "entities": [
            {"type": "supplier_name", "mentionText": "STAPLES", "confidence": 0.92},
            {
                "type": "total_amount",
                "mentionText": "$54.23",
                "confidence": 0.88,
                "normalizedValue": {"moneyValue": {"currencyCode": "CAD", "units": "54", "nanos": 230000000}},
            },
            {
                "type": "receipt_date",
                "mentionText": "Mar 1, 2026",
                "confidence": 0.8,
                "normalizedValue": {"dateValue": {"year": 2026, "month": 3, "day": 1}},
            },
            {
                "type": "line_item",
                "properties": [
                    {"type": "line_item/description", "mentionText": "Printer paper"},
                    {"type": "line_item/quantity", "mentionText": "2"},
                    {
                        "type": "line_item/amount",
                        "normalizedValue": {"moneyValue": {"units": "24", "nanos": 0}},
                    },
                ],
            },
        ],
    }
}


class DocumentAIExtractorTests(unittest.TestCase):
    def test_parse_maps_entities_to_fields(self):
        result = parse_document_ai_response(DOCUMENT_AI_RESPONSE)

        self.assertEqual(result.candidate("vendor_name").value, "STAPLES")
        self.assertAlmostEqual(result.candidate("total_amount").value, 54.23)
        self.assertEqual(result.candidate("expense_date").value, "2026-03-01")
        self.assertEqual(result.candidate("currency").value, "CAD")
        self.assertEqual(result.tables[0].rows, (("Printer paper", "2", None, 24.0),))

    def test_text_only_response(self):
        result = parse_document_ai_response({"document": {"text": "some text"}})
        self.assertEqual(result.field_candidates, ())
        self.assertAlmostEqual(result.confidence, 0.6)
        self.assertIsNone(result.tables)

    def test_unconfigured_endpoint_is_unavailable(self):
        extractor = DocumentAIExtractor(make_settings())
        with self.assertRaises(ProviderUnavailable):
            asyncio.run(extractor.extract(DocumentUpload(content=b"%PDF", mime_type="application/pdf")))

    def test_posts_base64_document_with_bearer_token(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=DOCUMENT_AI_RESPONSE)

        settings = make_settings(
            google_document_ai_endpoint="https://documentai.example/v1/processors/p:process",
            google_document_ai_token="token-1",
        )
        extractor = DocumentAIExtractor(settings, transport=httpx.MockTransport(handler))
        result = asyncio.run(extractor.extract(DocumentUpload(content=b"%PDF", mime_type="application/pdf")))

        self.assertEqual(seen["auth"], "Bearer token-1")
        self.assertEqual(seen["body"]["rawDocument"], {"content": "JVBERg==", "mimeType": "application/pdf"})
        self.assertEqual(result.provider, "document_ai")

    def test_http_error_propagates_for_chain_fallback(self):
        settings = make_settings(google_document_ai_endpoint="https://documentai.example/p:process", google_document_ai_token="t")
        transport = httpx.MockTransport(lambda request: httpx.Response(429, json={"error": "quota"}))
        extractor = DocumentAIExtractor(settings, transport=transport)

        with self.assertRaises(httpx.HTTPStatusError):
            asyncio.run(extractor.extract(DocumentUpload(content=b"%PDF", mime_type="application/pdf")))


class VisionModelExtractorTests(unittest.TestCase):
    def test_mock_provider_is_unavailable(self):
        extractor = VisionModelExtractor(make_settings())
        upload = DocumentUpload(content=_png_bytes(), mime_type="image/png")

        with self.assertRaises(ProviderUnavailable):
            asyncio.run(extractor.extract(upload))

    def test_rejects_non_images(self):
        extractor = VisionModelExtractor(make_settings())
        self.assertFalse(extractor.supports("application/pdf"))
        self.assertTrue(extractor.supports("image/heic"))

    def test_model_json_becomes_candidates(self):
        payload = {
            "document_type": "receipt",
            "vendor_name": "Starbucks",
            "transaction_date": "2026-03-01",
            "total_amount": 45.5,
            "tax_amount": None,
            "currency_code": "USD",
            "line_items": [{"description": "Latte", "quantity": 2, "unit_price": 5.0, "total_price": 10.0}],
            "confidence_scores": {"vendor_name": 0.95, "total_amount": 0.9, "date": 0.85},
            "overall_confidence": 0.9,
            "ocr_raw_text": "STARBUCKS\nTotal 45.50",
        }
        provider = _VisionProvider(json.dumps(payload))
        config = ResolvedConfig(provider=provider, model="gpt-4o", temperature=0.1, max_tokens=1024, timeout_seconds=5.0)

        with patch("docintake.services.extraction.vision.ai_router.resolve", return_value=config):
            result = asyncio.run(
                VisionModelExtractor(make_settings()).extract(DocumentUpload(content=_png_bytes(), mime_type="image/png"))
            )

        self.assertEqual(result.text, "STARBUCKS\nTotal 45.50")
        self.assertAlmostEqual(result.confidence, 0.9)
        self.assertAlmostEqual(result.candidate("vendor_name").confidence, 0.95)
        self.assertIsNone(result.candidate("tax_amount"))
        self.assertEqual(result.candidate("document_type").value, "receipt")
        self.assertEqual(result.tables[0].rows, (("Latte", 2, 5.0, 10.0),))
        self.assertEqual(len(provider.images), 1)

    def test_answer_without_json_is_kept_with_low_confidence(self):
        provider = _VisionProvider("I can see a receipt from a bakery.")
        config = ResolvedConfig(provider=provider, model="gpt-4o", temperature=0.1, max_tokens=1024, timeout_seconds=5.0)

        with patch("docintake.services.extraction.vision.ai_router.resolve", return_value=config):
            result = asyncio.run(
                VisionModelExtractor(make_settings()).extract(DocumentUpload(content=_png_bytes(), mime_type="image/png"))
            )

        self.assertEqual(result.field_candidates, ())
        self.assertAlmostEqual(result.confidence, 0.2)

    def test_payload_without_scores_uses_default_confidence(self):
        _text, overall, candidates, tables = parse_vision_payload({"vendor_name": "Shell"}, raw_text="SHELL")

        self.assertAlmostEqual(overall, 0.8)
        self.assertEqual([c.name for c in candidates], ["vendor_name"])
        self.assertEqual(tables, ())
