import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.orm import Session

from docintake.core.auth import CurrentUser, get_current_user
from docintake.core.config import get_settings
from docintake.core.dependencies import get_db, get_pipeline
from docintake.core.errors import InputError
from docintake.schemas.conversation import PipelineResponse
from docintake.schemas.documents import DocumentUpload
from docintake.services.documents.pipeline import DocumentPipeline

logger = logging.getLogger(__name__)

router = APIRouter()


def _ensure_document_intake_enabled() -> None:
    if not get_settings().enable_document_intake:
        raise HTTPException(404, "Not found")


@router.post("/documents/process", response_model=PipelineResponse)
async def process_document(
    file: UploadFile = File(...),
    conversation_id: Optional[str] = Form(None),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    pipeline: DocumentPipeline = Depends(get_pipeline),
):
    _ensure_document_intake_enabled()
    settings = get_settings()

    # Read one byte past the limit so oversize uploads are detected without buffering them whole.
    content = await file.read(settings.max_document_bytes + 1)
    upload = DocumentUpload(
        content=content,
        mime_type=file.content_type or "application/octet-stream",
        filename=file.filename or "",
    )
    try:
        response = await pipeline.process_document(
            upload,
            current_user.company_id,
            current_user.security,
            conversation_id=conversation_id,
            actor_id=current_user.id,
        )
    except InputError:
        db.commit()
        raise
    db.commit()
    return response
