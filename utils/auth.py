from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from utils.config import Settings
from utils.errors import Misconfigured, Unauthorized, UpstreamFailure

JWKS_CACHE_TTL_SECONDS = 3600

security = HTTPBearer(auto_error=False)

_jwks_cache: Dict[str, Dict[str, Any]] = {}
_jwks_cache_expires_at: Dict[str, float] = {}
_jwks_cache_lock = threading.Lock()


@dataclass
class AuthContext:
    token: str
    payload: Dict[str, Any]
    user_id: str
    email: Optional[str]


def _fetch_jwks(jwks_url: str) -> Dict[str, Any]:
    try:
        response = httpx.get(jwks_url, timeout=10.0)
        response.raise_for_status()
    except httpx.HTTPError as exc:  # pragma: no cover - network failure path
        raise UpstreamFailure("Unable to fetch signing keys.", status_code=503) from exc
    return response.json()


def _get_jwks(jwks_url: str, force_refresh: bool = False) -> Dict[str, Any]:
    now = time.monotonic()
    if force_refresh or jwks_url not in _jwks_cache or now >= _jwks_cache_expires_at.get(jwks_url, 0.0):
        with _jwks_cache_lock:
            now = time.monotonic()
            if force_refresh or jwks_url not in _jwks_cache or now >= _jwks_cache_expires_at.get(jwks_url, 0.0):
                _jwks_cache[jwks_url] = _fetch_jwks(jwks_url)
                _jwks_cache_expires_at[jwks_url] = now + JWKS_CACHE_TTL_SECONDS
    return _jwks_cache[jwks_url]


def _find_jwk(jwks: Dict[str, Any], kid: Optional[str]) -> Optional[Dict[str, Any]]:
    return next((key for key in jwks.get("keys", []) if key.get("kid") == kid), None)


def _decode_options(settings: Settings) -> Dict[str, Any]:
    return {
        "audience": settings.auth_jwt_audience,
        "issuer": settings.auth_issuer,
        "options": {"verify_aud": bool(settings.auth_jwt_audience), "verify_iss": bool(settings.auth_issuer)},
    }


def decode_token(token: str, settings: Settings) -> Dict[str, Any]:
    """Verify a bearer JWT from the hosted identity provider.

    A shared ``AUTH_JWT_SECRET`` means HS256 tokens; otherwise the token's ``kid``
    is resolved against the JWKS document at ``AUTH_JWKS_URL``.
    """
    if settings.auth_jwt_secret:
        try:
            return jwt.decode(token, settings.auth_jwt_secret, algorithms=["HS256"], **_decode_options(settings))
        except JWTError as exc:
            raise Unauthorized("Invalid or expired token.") from exc

    if not settings.auth_jwks_url:
        raise Misconfigured("Authentication is not configured.")

    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise Unauthorized("Invalid token header.") from exc

    jwks = _get_jwks(settings.auth_jwks_url)
    jwk_key = _find_jwk(jwks, unverified_header.get("kid"))
    if jwk_key is None:
        jwks = _get_jwks(settings.auth_jwks_url, force_refresh=True)
        jwk_key = _find_jwk(jwks, unverified_header.get("kid"))
    if jwk_key is None:
        raise Unauthorized("Invalid token header.")

    algorithm = jwk_key.get("alg") or "RS256"
    try:
        return jwt.decode(token, jwk_key, algorithms=[algorithm], **_decode_options(settings))
    except JWTError as exc:
        raise Unauthorized("Invalid or expired token.") from exc


def get_auth_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthContext:
    if credentials is None or not credentials.credentials:
        raise Unauthorized()

    settings: Settings = request.app.state.settings
    token = credentials.credentials
    payload = decode_token(token, settings)
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Token payload is missing subject.")

    return AuthContext(token=token, payload=payload, user_id=user_id, email=payload.get("email"))
