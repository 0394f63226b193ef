import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from docintake.api.v1.actions import router as actions_router
from docintake.api.v1.conversations import router as conversations_router
from docintake.api.v1.documents import router as documents_router
from docintake.api.v1.suggestions import router as suggestions_router
from docintake.core.config import get_settings
from docintake.core.errors import (
    EntityNotFound,
    InputError,
    PermissionDenied,
    StateTransitionError,
    SuggestionConflict,
)

settings = get_settings()

logger = logging.getLogger(__name__)

app = FastAPI(
    title="DocIntake API",
    version="1.0.0",
    docs_url="/docs" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.openapi_enabled else None,
)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type"],
    )

app.include_router(documents_router, prefix="/api/v1", tags=["documents"])
app.include_router(conversations_router, prefix="/api/v1", tags=["conversations"])
app.include_router(suggestions_router, prefix="/api/v1", tags=["suggestions"])
app.include_router(actions_router, prefix="/api/v1", tags=["action-cards"])


@app.get("/api/v1/health")
async def health():
    return {"status": "ok"}


@app.exception_handler(InputError)
async def _input_error_handler(request: Request, exc: InputError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


@app.exception_handler(PermissionDenied)
async def _permission_denied_handler(request: Request, exc: PermissionDenied):
    return JSONResponse(status_code=403, content={"detail": str(exc), "capability": exc.capability})


@app.exception_handler(EntityNotFound)
async def _not_found_handler(request: Request, exc: EntityNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(StateTransitionError)
async def _state_transition_handler(request: Request, exc: StateTransitionError):
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "current": exc.current, "requested": exc.requested},
    )


@app.exception_handler(SuggestionConflict)
async def _suggestion_conflict_handler(request: Request, exc: SuggestionConflict):
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "suggestion_id": exc.suggestion_id, "entity_id": exc.entity_id},
    )


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Hide internal details for 5xx in production unless explicitly enabled.
    if exc.status_code >= 500 and not settings.expose_error_details:
        return JSONResponse(status_code=exc.status_code, content={"detail": "Internal error"})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    if settings.expose_error_details:
        return JSONResponse(status_code=500, content={"detail": str(exc)})
    return JSONResponse(status_code=500, content={"detail": "Internal error"})
