from typing import List

from psycopg2.extras import RealDictCursor

from berea.db import new_id

# reaction table -> (entity column, allowed reaction types)
REACTION_TABLES = {
    "verse_reaction": ("verse_id", ("amen", "saved", "memorizing")),
    "highlight_reaction": ("highlight_id", ("amen", "insightful", "saved")),
    "reflection_reaction": ("reflection_id", ("amen", "praying", "insightful", "encouraging")),
    "encouragement_reaction": ("response_id", ("amen", "encouraging", "blessed")),
}


def allowed_reactions(table: str) -> tuple:
    return REACTION_TABLES[table][1]


def toggle_reaction(conn, table: str, entity_id: str, user_id: str, reaction_type: str) -> bool:
    """Add the reaction, or remove it when the user already gave it.

    Returns True when the reaction is now present. The caller commits.
    """
    column, _types = REACTION_TABLES[table]
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            DELETE FROM {table}
            WHERE {column} = %s AND user_id = %s AND reaction_type = %s
            RETURNING id
            """,
            (entity_id, user_id, reaction_type),
        )
        removed = cur.fetchone()
        if removed:
            return False
        cur.execute(
            f"""
            INSERT INTO {table} (id, {column}, user_id, reaction_type)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT DO NOTHING
            """,
            (new_id(), entity_id, user_id, reaction_type),
        )
    return True


def summarize_reactions(conn, table: str, entity_ids: List[str], user_id: str) -> dict:
    """Per-entity reaction counts and the requesting user's own reactions."""
    column, types = REACTION_TABLES[table]
    summary = {
        entity_id: {"counts": {t: 0 for t in types}, "mine": []} for entity_id in entity_ids
    }
    if not entity_ids:
        return summary
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {column} AS entity_id, user_id, reaction_type
            FROM {table}
            WHERE {column} = ANY(%s)
            """,
            (list(entity_ids),),
        )
        rows = cur.fetchall()
    for row in rows:
        entry = summary.get(row["entity_id"])
        if entry is None:
            continue
        reaction_type = row["reaction_type"]
        entry["counts"][reaction_type] = entry["counts"].get(reaction_type, 0) + 1
        if row["user_id"] == user_id:
            entry["mine"].append(reaction_type)
    return summary
