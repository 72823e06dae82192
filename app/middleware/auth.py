"""
Admin authentication for privileged donation endpoints

Bearer tokens are Supabase-issued JWTs verified against the project's JWKS;
the caller must carry the admin role in `app_metadata.role` or `role`.
"""
import os
import time
import logging
from typing import Optional

import httpx
from fastapi import Header, HTTPException
from jose import jwk, jwt

from app.config import ADMIN_ROLE

logger = logging.getLogger(__name__)

_jwks_cache: Optional[dict] = None
_jwks_cache_time: float = 0
JWKS_CACHE_DURATION = 60 * 60  # 1 hour

JWT_AUDIENCE = "authenticated"


def get_supabase_url() -> str:
    url = os.getenv("SUPABASE_URL")
    if not url:
        raise HTTPException(status_code=500, detail="Authentication is not properly configured")
    return url.rstrip("/")


async def get_jwks() -> dict:
    """Fetch the JWKS, reusing the cached copy for an hour (or longer if a refresh fails)"""
    global _jwks_cache, _jwks_cache_time

    now = time.time()
    if _jwks_cache and (now - _jwks_cache_time) < JWKS_CACHE_DURATION:
        return _jwks_cache

    jwks_url = f"{get_supabase_url()}/auth/v1/.well-known/jwks.json"
    logger.info(f"Fetching JWKS from Supabase: {jwks_url}")

    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(jwks_url, timeout=10.0)
            response.raise_for_status()
            _jwks_cache = response.json()
            _jwks_cache_time = now
            return _jwks_cache
    except httpx.HTTPError as e:
        logger.error(f"Failed to fetch JWKS: {e}")
        if _jwks_cache:
            logger.warning("Using expired JWKS cache due to fetch failure")
            return _jwks_cache
        raise HTTPException(status_code=500, detail="Failed to fetch authentication keys")


def reset_jwks_cache() -> None:
    global _jwks_cache, _jwks_cache_time
    _jwks_cache = None
    _jwks_cache_time = 0


async def verify_token(token: str) -> dict:
    """
    Verify a Supabase JWT (ES256 or RS256) and return its claims.

    Raises HTTPException(401) if verification fails.
    """
    jwks = await get_jwks()

    try:
        header = jwt.get_unverified_header(token)
        kid = header.get("kid")
        if not kid:
            raise HTTPException(status_code=401, detail="Token missing key ID (kid)")

        key_data = next((k for k in jwks.get("keys", []) if k.get("kid") == kid), None)
        if not key_data:
            raise HTTPException(status_code=401, detail=f"Key with ID '{kid}' not found in JWKS")

        return jwt.decode(
            token,
            jwk.construct(key_data),
            algorithms=["ES256", "RS256"],
            audience=JWT_AUDIENCE,
            issuer=f"{get_supabase_url()}/auth/v1",
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.JWTClaimsError as e:
        raise HTTPException(status_code=401, detail=f"Token validation failed: {str(e)}")
    except jwt.JWTError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {str(e)}")


def get_role_from_payload(payload: dict) -> Optional[str]:
    """Role claim; app_metadata is authoritative since users cannot edit it"""
    app_metadata = payload.get("app_metadata") or {}
    return app_metadata.get("role") or payload.get("role")


def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header missing")
    try:
        scheme, token = authorization.split(" ", 1)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid authorization header format. Expected 'Bearer <token>'")
    if scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid authorization scheme. Expected 'Bearer'")
    return token


async def require_admin(authorization: Optional[str] = Header(None)) -> str:
    """
    FastAPI dependency for privileged endpoints.
    Returns the admin's user ID.
    """
    payload = await verify_token(extract_bearer_token(authorization))

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token: no user ID")

    if get_role_from_payload(payload) != ADMIN_ROLE:
        logger.warning(f"User {user_id} denied access to privileged endpoint")
        raise HTTPException(status_code=403, detail="Admin access required")

    return user_id
