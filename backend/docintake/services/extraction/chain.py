"""Ordered extractor chain: first backend that succeeds wins."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence

from docintake.core.config import Settings
from docintake.core.errors import ExtractionError
from docintake.schemas.documents import DocumentUpload, RawExtraction

from .base import BaseExtractor, ProviderUnavailable
from .document_ai import DocumentAIExtractor
from .text import PlainTextExtractor
from .vision import VisionModelExtractor

logger = logging.getLogger(__name__)


class ExtractionChain:
    """Try each extractor in preference order, bounded by a per-call timeout."""

    def __init__(self, extractors: Sequence[BaseExtractor], *, timeout_seconds: float) -> None:
        self.extractors = list(extractors)
        self.timeout_seconds = timeout_seconds

    def supports(self, mime_type: str) -> bool:
        return any(extractor.supports(mime_type) for extractor in self.extractors)

    async def extract(self, upload: DocumentUpload) -> RawExtraction:
        attempts: list[dict] = []

        for extractor in self.extractors:
            if not extractor.supports(upload.mime_type):
                continue

            t0 = time.monotonic()
            try:
                result = await asyncio.wait_for(extractor.extract(upload), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning("Extractor %s timed out after %.1fs", extractor.name, self.timeout_seconds)
                attempts.append({"provider": extractor.name, "error": "timeout"})
                continue
            except ProviderUnavailable as exc:
                logger.info("Extractor %s unavailable: %s", extractor.name, exc)
                attempts.append({"provider": extractor.name, "error": "unavailable"})
                continue
            except Exception as exc:
                logger.warning("Extractor %s failed: %s", extractor.name, exc)
                attempts.append({"provider": extractor.name, "error": type(exc).__name__})
                continue

            elapsed_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.info(
                "Extractor %s succeeded in %.0fms (confidence %.2f)",
                extractor.name,
                elapsed_ms,
                result.confidence,
            )
            if not result.provider:
                result = result.model_copy(update={"provider": extractor.name})
            return result

        if not attempts:
            raise ExtractionError(f"No extractor supports {upload.mime_type}", attempts=attempts)
        raise ExtractionError("All extraction providers failed", attempts=attempts)


EXTRACTOR_FACTORIES = {
    "vision_model": VisionModelExtractor,
    "document_ai": DocumentAIExtractor,
    "plain_text": lambda settings: PlainTextExtractor(),
}


def build_extraction_chain(settings: Settings) -> ExtractionChain:
    extractors: list[BaseExtractor] = []
    for name in settings.extraction_providers:
        factory = EXTRACTOR_FACTORIES.get(name)
        if factory is None:
            logger.warning("Unknown extraction provider %r - skipped", name)
            continue
        extractors.append(factory(settings))
    if not any(isinstance(extractor, PlainTextExtractor) for extractor in extractors):
        extractors.append(PlainTextExtractor())
    return ExtractionChain(extractors, timeout_seconds=settings.extraction_timeout_seconds)
