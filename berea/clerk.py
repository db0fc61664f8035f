import os
import time

import jwt
import requests

from berea.cache import cache_get, cache_set
from berea.events import log_api_event

CLERK_SECRET_KEY = os.getenv("CLERK_SECRET_KEY", "")
CLERK_API_URL = os.getenv("CLERK_API_URL", "https://api.clerk.com/v1").rstrip("/")
CLERK_JWT_KEY = os.getenv("CLERK_JWT_KEY", "")
CLERK_JWKS_URL = os.getenv("CLERK_JWKS_URL", "")
CLERK_ISSUER = os.getenv("CLERK_ISSUER", "")
CLERK_AUTHORIZED_PARTIES = [
    p.strip() for p in os.getenv("CLERK_AUTHORIZED_PARTIES", "").split(",") if p.strip()
]
CLERK_TIMEOUT_SEC = float(os.getenv("CLERK_TIMEOUT_SEC", "5"))
CLERK_LEEWAY_SEC = int(os.getenv("CLERK_LEEWAY_SEC", "5"))
USER_NAME_CACHE_TTL_SEC = int(os.getenv("USER_NAME_CACHE_TTL_SEC", "3600"))

_JWK_CLIENT = None


def _get_jwk_client():
    global _JWK_CLIENT
    if _JWK_CLIENT is None and CLERK_JWKS_URL:
        _JWK_CLIENT = jwt.PyJWKClient(CLERK_JWKS_URL, cache_keys=True)
    return _JWK_CLIENT


def _signing_key(token: str):
    if CLERK_JWT_KEY:
        return CLERK_JWT_KEY.replace("\\n", "\n")
    client = _get_jwk_client()
    if client is None:
        return None
    return client.get_signing_key_from_jwt(token).key


def verify_session_token(token: str) -> dict | None:
    """Verify a Clerk session JWT (RS256) and return its claims."""
    try:
        key = _signing_key(token)
        if key is None:
            return None
        options = {"verify_aud": False, "require": ["exp", "sub"]}
        payload = jwt.decode(
            token,
            key,
            algorithms=["RS256"],
            issuer=CLERK_ISSUER or None,
            options=options,
            leeway=CLERK_LEEWAY_SEC,
        )
    except jwt.PyJWTError:
        return None
    if CLERK_AUTHORIZED_PARTIES:
        azp = payload.get("azp")
        if azp and azp not in CLERK_AUTHORIZED_PARTIES:
            return None
    return payload


def fetch_clerk_user(user_id: str) -> dict | None:
    if not CLERK_SECRET_KEY:
        return None
    start = time.perf_counter()
    try:
        res = requests.get(
            f"{CLERK_API_URL}/users/{user_id}",
            headers={"Authorization": f"Bearer {CLERK_SECRET_KEY}"},
            timeout=CLERK_TIMEOUT_SEC,
        )
        res.raise_for_status()
        data = res.json()
    except (requests.RequestException, ValueError):
        log_api_event("clerk_user_error", {"user_id": user_id})
        return None
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log_api_event("clerk_user_fetch", {"user_id": user_id, "elapsed_ms": elapsed_ms})
    return data


def primary_email(clerk_user: dict | None) -> str | None:
    if not clerk_user:
        return None
    addresses = clerk_user.get("email_addresses") or []
    primary_id = clerk_user.get("primary_email_address_id")
    for address in addresses:
        if primary_id and address.get("id") == primary_id:
            return address.get("email_address")
    if addresses:
        return addresses[0].get("email_address")
    return None


def format_display_name(first_name: str | None, last_name: str | None) -> str:
    first = (first_name or "").strip() or "Unknown"
    last = (last_name or "").strip()
    if last:
        return f"{first} {last[0].upper()}."
    return first


def get_formatted_user_name(user_id: str) -> str:
    """Return "First L." for a Clerk user, cached."""
    cached = cache_get("user_name", user_id)
    if cached:
        return cached
    clerk_user = fetch_clerk_user(user_id)
    if not clerk_user:
        return "Unknown User"
    name = format_display_name(clerk_user.get("first_name"), clerk_user.get("last_name"))
    cache_set("user_name", user_id, name, USER_NAME_CACHE_TTL_SEC)
    return name


def get_formatted_user_names(user_ids) -> dict:
    names = {}
    for user_id in user_ids:
        if user_id and user_id not in names:
            names[user_id] = get_formatted_user_name(user_id)
    return names
