import pytest
from fastapi import HTTPException

import berea.permissions as perm_mod


SETTINGS = {
    "alice": {"share_progress": True, "share_reflections": True, "share_verses": False, "share_prayers": True},
    "bob": {"share_progress": False, "share_reflections": False, "share_verses": True, "share_prayers": False},
}


@pytest.fixture
def privacy(monkeypatch):
    calls = []

    def fake_settings(_conn, _circle_id, user_id):
        calls.append(user_id)
        return SETTINGS.get(user_id, {flag: False for flag in perm_mod.SHARE_FLAGS})

    monkeypatch.setattr(perm_mod, "get_member_privacy_settings", fake_settings)
    return calls


def test_filter_visible_reflections_hides_private_authors(privacy):
    items = [
        {"id": "r1", "user_id": "alice"},
        {"id": "r2", "user_id": "bob"},
        {"id": "r3", "user_id": "carol"},
    ]
    visible = perm_mod.filter_visible_reflections(None, items, "c1", "carol")
    assert [i["id"] for i in visible] == ["r1", "r3"]


def test_author_always_sees_own_items(privacy):
    items = [{"id": "r2", "user_id": "bob"}]
    assert perm_mod.filter_visible_reflections(None, items, "c1", "bob") == items
    assert privacy == []


def test_filter_checks_each_author_once(privacy):
    items = [{"id": f"v{i}", "user_id": "bob"} for i in range(4)]
    visible = perm_mod.filter_visible_verses(None, items, "c1", "alice")
    assert len(visible) == 4
    assert privacy == ["bob"]


def test_prayer_and_progress_flags(privacy):
    assert perm_mod.can_view_prayers(None, "c1", "alice", "bob") is True
    assert perm_mod.can_view_prayers(None, "c1", "bob", "alice") is False
    assert perm_mod.can_view_progress(None, "c1", "bob", "alice") is False


def test_require_circle_member_rejects_outsiders(monkeypatch):
    monkeypatch.setattr(perm_mod, "verify_circle_member", lambda *_args: None)
    with pytest.raises(HTTPException) as exc:
        perm_mod.require_circle_member(None, "c1", "mallory")
    assert exc.value.status_code == 403
    assert exc.value.detail["error"] == "forbidden"


def test_admin_and_owner_checks(monkeypatch):
    roles = {"o": "owner", "a": "admin", "m": "member"}
    monkeypatch.setattr(perm_mod, "verify_circle_member", lambda _conn, _cid, uid: {"role": roles[uid]} if uid in roles else None)
    assert [bool(perm_mod.verify_circle_admin(None, "c1", uid)) for uid in ("o", "a", "m", "x")] == [True, True, False, False]
    assert [bool(perm_mod.verify_circle_owner(None, "c1", uid)) for uid in ("o", "a", "m", "x")] == [True, False, False, False]
