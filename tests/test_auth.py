import pytest
from fastapi import HTTPException

import berea.clerk as clerk_mod
import berea.deps as deps_mod


class FakeRequest:
    def __init__(self, headers=None, cookies=None):
        self.headers = headers or {}
        self.cookies = cookies or {}


@pytest.mark.parametrize(
    "first,last,expected",
    [("Ruth", "Moabite", "Ruth M."), ("Ruth", None, "Ruth"), (None, "Smith", "Unknown S."), ("  ", "", "Unknown")],
)
def test_format_display_name(first, last, expected):
    assert clerk_mod.format_display_name(first, last) == expected


def test_primary_email_prefers_primary_id():
    user = {
        "primary_email_address_id": "e2",
        "email_addresses": [{"id": "e1", "email_address": "old@example.com"}, {"id": "e2", "email_address": "new@example.com"}],
    }
    assert clerk_mod.primary_email(user) == "new@example.com"
    assert clerk_mod.primary_email({"email_addresses": [{"id": "e1", "email_address": "a@b.c"}]}) == "a@b.c"
    assert clerk_mod.primary_email(None) is None


def test_user_names_are_deduplicated(monkeypatch):
    calls = []
    monkeypatch.setattr(clerk_mod, "get_formatted_user_name", lambda uid: calls.append(uid) or uid.upper())
    assert clerk_mod.get_formatted_user_names(["a", "b", "a", None]) == {"a": "A", "b": "B"}
    assert calls == ["a", "b"]


def test_unknown_user_without_clerk(monkeypatch):
    monkeypatch.setattr(clerk_mod, "cache_get", lambda *_args: None)
    monkeypatch.setattr(clerk_mod, "CLERK_SECRET_KEY", "")
    assert clerk_mod.get_formatted_user_name("user_1") == "Unknown User"


def test_verify_session_token_without_keys(monkeypatch):
    monkeypatch.setattr(clerk_mod, "CLERK_JWT_KEY", "")
    monkeypatch.setattr(clerk_mod, "CLERK_JWKS_URL", "")
    monkeypatch.setattr(clerk_mod, "_JWK_CLIENT", None)
    assert clerk_mod.verify_session_token("abc.def.ghi") is None


def test_require_user_needs_token():
    with pytest.raises(HTTPException) as exc:
        deps_mod.require_user(FakeRequest())
    assert exc.value.status_code == 401
    assert exc.value.detail["error"] == "unauthorized"


def test_require_user_reads_bearer_and_cookie(monkeypatch):
    seen = []

    def fake_verify(token):
        seen.append(token)
        return {"sub": "user_1", "sid": "sess_1"}

    monkeypatch.setattr(deps_mod, "verify_session_token", fake_verify)
    user = deps_mod.require_user(FakeRequest(headers={"Authorization": "Bearer tok1"}))
    assert user == {"user_id": "user_1", "session_id": "sess_1"}
    deps_mod.require_user(FakeRequest(cookies={"__session": "tok2"}))
    assert seen == ["tok1", "tok2"]


def test_invalid_token_is_unauthorized(monkeypatch):
    monkeypatch.setattr(deps_mod, "verify_session_token", lambda _token: None)
    with pytest.raises(HTTPException) as exc:
        deps_mod.require_user(FakeRequest(headers={"Authorization": "Bearer bad"}))
    assert exc.value.status_code == 401
    assert deps_mod.get_optional_user(FakeRequest()) is None

