"""Plain-text extractor: the document body already is the text."""

from __future__ import annotations

from docintake.schemas.documents import DocumentUpload, RawExtraction

from .base import BaseExtractor

# Text input carries no OCR uncertainty, but nothing is structured yet either.
PLAIN_TEXT_CONFIDENCE = 0.7
EMPTY_TEXT_CONFIDENCE = 0.1


class PlainTextExtractor(BaseExtractor):
    name = "plain_text"

    def supports(self, mime_type: str) -> bool:
        return (mime_type or "").lower() == "text/plain"

    async def extract(self, upload: DocumentUpload) -> RawExtraction:
        text = upload.content.decode("utf-8", errors="replace").replace("\r\n", "\n").strip()
        return RawExtraction(
            text=text,
            confidence=PLAIN_TEXT_CONFIDENCE if text else EMPTY_TEXT_CONFIDENCE,
            provider=self.name,
        )
