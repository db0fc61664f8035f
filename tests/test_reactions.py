import pytest

from berea.reactions import REACTION_TABLES, allowed_reactions, summarize_reactions, toggle_reaction


class ReactionCursor:
    """Keeps reactions in a set and answers the DELETE/INSERT/SELECT statements."""

    def __init__(self, rows=None):
        self.rows = set(rows or [])
        self._result = []

    def execute(self, query, params=None):
        sql = " ".join(str(query).split())
        if sql.startswith("DELETE"):
            key = tuple(params)
            if key in self.rows:
                self.rows.discard(key)
                self._result = [{"id": "x"}]
            else:
                self._result = []
        elif sql.startswith("INSERT"):
            _id, entity_id, user_id, reaction_type = params
            self.rows.add((entity_id, user_id, reaction_type))
            self._result = []
        else:
            ids = set(params[0])
            self._result = [
                {"entity_id": e, "user_id": u, "reaction_type": t}
                for (e, u, t) in sorted(self.rows)
                if e in ids
            ]

    def fetchone(self):
        return self._result[0] if self._result else None

    def fetchall(self):
        return list(self._result)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeConn:
    def __init__(self, cursor):
        self._cursor = cursor

    def cursor(self, cursor_factory=None):
        return self._cursor

    def commit(self):
        return None


def test_toggle_twice_removes_and_third_time_readds():
    cur = ReactionCursor()
    conn = FakeConn(cur)
    assert toggle_reaction(conn, "reflection_reaction", "r1", "u1", "amen") is True
    assert ("r1", "u1", "amen") in cur.rows
    assert toggle_reaction(conn, "reflection_reaction", "r1", "u1", "amen") is False
    assert cur.rows == set()
    assert toggle_reaction(conn, "reflection_reaction", "r1", "u1", "amen") is True
    assert len(cur.rows) == 1


def test_different_types_are_independent():
    cur = ReactionCursor()
    conn = FakeConn(cur)
    toggle_reaction(conn, "verse_reaction", "v1", "u1", "amen")
    toggle_reaction(conn, "verse_reaction", "v1", "u1", "saved")
    assert len(cur.rows) == 2


def test_summarize_reactions_counts_and_mine():
    cur = ReactionCursor(
        [
            ("h1", "u1", "amen"),
            ("h1", "u2", "amen"),
            ("h1", "u2", "insightful"),
        ]
    )
    summary = summarize_reactions(FakeConn(cur), "highlight_reaction", ["h1", "h2"], "u2")
    assert summary["h1"]["counts"] == {"amen": 2, "insightful": 1, "saved": 0}
    assert sorted(summary["h1"]["mine"]) == ["amen", "insightful"]
    assert summary["h2"]["counts"]["amen"] == 0


def test_summarize_reactions_empty_ids_skips_query():
    assert summarize_reactions(None, "verse_reaction", [], "u1") == {}


@pytest.mark.parametrize(
    "table,expected",
    [
        ("verse_reaction", ("amen", "saved", "memorizing")),
        ("encouragement_reaction", ("amen", "encouraging", "blessed")),
    ],
)
def test_allowed_reactions(table, expected):
    assert allowed_reactions(table) == expected
    assert table in REACTION_TABLES
