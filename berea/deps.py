from fastapi import Request

from berea.clerk import verify_session_token
from berea.errors import api_error


def _get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header:
        # Clerk's browser SDK sends the session token as a cookie
        return request.cookies.get("__session") or None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def _user_from_token(token: str) -> dict | None:
    payload = verify_session_token(token)
    if not payload:
        return None
    user_id = payload.get("sub")
    if not user_id:
        return None
    return {"user_id": user_id, "session_id": payload.get("sid")}


def require_user(request: Request) -> dict:
    token = _get_bearer_token(request)
    if not token:
        raise api_error(401, "unauthorized", "Sign in to continue.")
    user = _user_from_token(token)
    if not user:
        raise api_error(401, "unauthorized", "Invalid or expired session.")
    return user


def get_optional_user(request: Request) -> dict | None:
    token = _get_bearer_token(request)
    if not token:
        return None
    user = _user_from_token(token)
    if not user:
        raise api_error(401, "unauthorized", "Invalid or expired session.")
    return user

