"""Extractor strategy contract shared by every document-understanding backend."""

from __future__ import annotations

import abc

from docintake.schemas.documents import DocumentUpload, RawExtraction


class ProviderUnavailable(RuntimeError):
    """The backend is not configured (missing key or endpoint) for this process."""


class BaseExtractor(abc.ABC):
    """One interchangeable extraction backend.

    ``extract`` raises on provider failure (timeout, auth, quota, bad
    payload) so the chain can move on to the next backend.  Poor document
    quality is not a failure: it lowers ``RawExtraction.confidence``.
    """

    name: str = "base"

    @abc.abstractmethod
    def supports(self, mime_type: str) -> bool:
        """Return True when this backend can read documents of *mime_type*."""

    @abc.abstractmethod
    async def extract(self, upload: DocumentUpload) -> RawExtraction:
        """Read *upload* and return a provider-neutral extraction."""
