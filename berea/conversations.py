from typing import List

from psycopg2.extras import RealDictCursor

from berea.db import new_id

MESSAGE_ROLES = ("user", "assistant")


def list_conversations(conn, user_id: str) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT
                c.id,
                c.title,
                c.summary,
                c.created_at,
                c.updated_at,
                COUNT(m.id) AS message_count
            FROM conversation c
            LEFT JOIN conversation_message m ON m.conversation_id = c.id
            WHERE c.user_id = %s
            GROUP BY c.id
            ORDER BY c.updated_at DESC
            """,
            (user_id,),
        )
        return cur.fetchall()


def create_conversation(conn, user_id: str, title: str | None) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO conversation (id, user_id, title)
            VALUES (%s, %s, %s)
            RETURNING id, title, summary, created_at, updated_at
            """,
            (new_id(), user_id, title),
        )
        return cur.fetchone()


def get_conversation(conn, conversation_id: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, user_id, title, summary, created_at, updated_at
            FROM conversation
            WHERE id = %s
            """,
            (conversation_id,),
        )
        return cur.fetchone()


def get_messages(conn, conversation_id: str, limit: int | None = None) -> List[dict]:
    """Messages oldest first; with ``limit`` only the first ``limit`` are returned."""
    query = """
        SELECT id, role, content, created_at
        FROM conversation_message
        WHERE conversation_id = %s
        ORDER BY created_at ASC
    """
    params: tuple = (conversation_id,)
    if limit:
        query += " LIMIT %s"
        params = (conversation_id, limit)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(query, params)
        return cur.fetchall()


def append_message(conn, conversation_id: str, role: str, content: str) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO conversation_message (id, conversation_id, role, content)
            VALUES (%s, %s, %s, %s)
            RETURNING id, role, content, created_at
            """,
            (new_id(), conversation_id, role, content),
        )
        message = cur.fetchone()
        cur.execute("UPDATE conversation SET updated_at = now() WHERE id = %s", (conversation_id,))
    return message


def delete_conversation(conn, conversation_id: str) -> None:
    with conn.cursor() as cur:
        cur.execute("DELETE FROM conversation WHERE id = %s", (conversation_id,))


def recent_conversations(conn, user_id: str, limit: int, message_limit: int) -> List[dict]:
    """Latest conversations, each with its first ``message_limit`` messages."""
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, title, updated_at
            FROM conversation
            WHERE user_id = %s
            ORDER BY updated_at DESC
            LIMIT %s
            """,
            (user_id, limit),
        )
        rows = cur.fetchall()
    conversations = []
    for row in rows:
        item = dict(row)
        item["messages"] = get_messages(conn, row["id"], limit=message_limit)
        conversations.append(item)
    return conversations
