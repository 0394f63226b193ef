import logging
import threading
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException
from jwt import PyJWKClient

from docintake.core.config import get_settings

logger = logging.getLogger(__name__)

ALLOWED_ROLES = {"ADMIN", "ACCOUNTANT", "MEMBER"}


class Capability(StrEnum):
    CREATE_EXPENSE = "create_expense"
    CREATE_VENDOR = "create_vendor"
    CREATE_CONTACT = "create_contact"
    CREATE_CATEGORY = "create_category"
    VIEW_GL_ACCOUNTS = "view_gl_accounts"
    REVIEW_SUGGESTIONS = "review_suggestions"


ROLE_CAPABILITIES: dict[str, frozenset[Capability]] = {
    "ADMIN": frozenset(Capability),
    "ACCOUNTANT": frozenset(Capability),
    "MEMBER": frozenset({Capability.CREATE_EXPENSE, Capability.CREATE_CONTACT}),
}


@dataclass(frozen=True)
class SecurityContext:
    """Opaque capability set handed to the pipeline."""

    capabilities: frozenset[str] = field(default_factory=frozenset)

    def can(self, capability: str) -> bool:
        return str(capability) in self.capabilities

    @classmethod
    def unrestricted(cls) -> "SecurityContext":
        return cls(frozenset(c.value for c in Capability))

    @classmethod
    def for_role(cls, role: str) -> "SecurityContext":
        return cls(frozenset(c.value for c in ROLE_CAPABILITIES.get(role, frozenset())))


@dataclass
class CurrentUser:
    id: str
    role: str
    company_id: str
    email: Optional[str] = None
    capabilities: Optional[frozenset[str]] = None

    @property
    def security(self) -> SecurityContext:
        if self.capabilities is not None:
            return SecurityContext(frozenset(self.capabilities))
        return SecurityContext.for_role(self.role)


def _extract_role(payload: dict) -> Optional[str]:
    # Role, company and capabilities come only from server-managed app_metadata;
    # user_metadata is user-editable and cannot be trusted.
    app_meta = payload.get("app_metadata") or {}
    raw = app_meta.get("role")
    if raw is None:
        return None
    role = str(raw).strip().upper()
    if role not in ALLOWED_ROLES:
        return None
    return role


def _extract_capabilities(payload: dict) -> Optional[frozenset[str]]:
    app_meta = payload.get("app_metadata") or {}
    raw = app_meta.get("capabilities")
    if not isinstance(raw, list):
        return None
    known = {c.value for c in Capability}
    return frozenset(str(item) for item in raw if str(item) in known)


class _JwksCache:
    """One PyJWKClient per JWKS URL for the process lifetime; PyJWT caches the keys."""

    def __init__(self) -> None:
        self._clients: dict[str, PyJWKClient] = {}
        self._lock = threading.Lock()

    def get(self, jwks_url: str) -> PyJWKClient:
        with self._lock:
            client = self._clients.get(jwks_url)
            if client is None:
                client = self._clients[jwks_url] = PyJWKClient(jwks_url, cache_keys=True, lifespan=3600)
            return client


_jwks = _JwksCache()


def _decode(token: str, key, algorithm: str, audience: str) -> dict:
    return jwt.decode(
        token,
        key,
        algorithms=[algorithm],
        audience=audience or None,
        options={"verify_aud": bool(audience)},
    )


def _verify(token: str, settings) -> Optional[dict]:
    """Try the shared-secret (HS256) and JWKS (ES256) keys, header algorithm first."""
    audience = (settings.supabase_jwt_audience or "").strip()
    base_url = (settings.supabase_url or "").rstrip("/")

    def hs256() -> Optional[dict]:
        if not settings.supabase_jwt_secret:
            return None
        try:
            return _decode(token, settings.supabase_jwt_secret, "HS256", audience)
        except jwt.InvalidTokenError:
            return None

    def es256() -> Optional[dict]:
        if not base_url:
            return None
        try:
            signing_key = _jwks.get(f"{base_url}/auth/v1/.well-known/jwks.json").get_signing_key_from_jwt(token)
            return _decode(token, signing_key.key, "ES256", audience)
        except (jwt.InvalidTokenError, jwt.PyJWKClientError) as exc:
            logger.debug("ES256 verification failed: %s", exc)
            return None

    try:
        alg = jwt.get_unverified_header(token).get("alg", "")
    except jwt.DecodeError:
        return None
    for attempt in (es256, hs256) if alg == "ES256" else (hs256, es256):
        payload = attempt()
        if payload is not None:
            return payload
    return None


def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CurrentUser:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Missing bearer token")

    settings = get_settings()
    if not settings.supabase_jwt_secret and not settings.supabase_url:
        raise HTTPException(500, "SUPABASE_JWT_SECRET is not configured")

    payload = _verify(authorization.split(" ", 1)[1].strip(), settings)
    if payload is None or not payload.get("sub"):
        raise HTTPException(401, "Invalid token")

    role = _extract_role(payload)
    if not role:
        raise HTTPException(403, "Missing role")

    company_id = str((payload.get("app_metadata") or {}).get("company_id") or "").strip()
    if not company_id:
        raise HTTPException(403, "Missing company")

    return CurrentUser(
        id=payload["sub"],
        role=role,
        company_id=company_id,
        email=payload.get("email"),
        capabilities=_extract_capabilities(payload),
    )


def require_roles(*roles: str):
    def _dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise HTTPException(403, "Forbidden")
        return user

    return _dependency
