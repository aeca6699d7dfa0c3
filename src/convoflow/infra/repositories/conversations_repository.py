"""Conversations repository.

At most one active (status <> closed) conversation exists per
(organization, contact, medium); a partial unique index enforces it.
"""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from convoflow.domain.models import (
    Conversation,
    ConversationPriority,
    ConversationStatus,
)
from convoflow.infra.db import txn

_COLUMNS = "id, organization_id, contact_id, medium_id, status, priority, ai_enabled, last_message"

LAST_MESSAGE_PREVIEW_LENGTH = 500


def _row_to_conversation(row: tuple[Any, ...]) -> Conversation:
    return Conversation(
        id=str(row[0]),
        organization_id=str(row[1]),
        contact_id=str(row[2]),
        medium_id=row[3],
        status=ConversationStatus(row[4]),
        priority=ConversationPriority(row[5]),
        ai_enabled=bool(row[6]),
        last_message=row[7] or "",
    )


def get_conversation(cur: PgCursor, conversation_id: str) -> Conversation | None:
    cur.execute(f"SELECT {_COLUMNS} FROM conversations WHERE id = %s", (conversation_id,))
    row = cur.fetchone()
    return _row_to_conversation(row) if row else None


def get_active_conversation(
    cur: PgCursor, *, organization_id: str, contact_id: str, medium_id: int
) -> Conversation | None:
    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM conversations
        WHERE organization_id = %s AND contact_id = %s AND medium_id = %s
          AND status <> %s
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (organization_id, contact_id, medium_id, int(ConversationStatus.CLOSED)),
    )
    row = cur.fetchone()
    return _row_to_conversation(row) if row else None


def insert_conversation(
    cur: PgCursor,
    *,
    organization_id: str,
    contact_id: str,
    medium_id: int,
    last_message: str,
) -> Conversation:
    """Insert an open conversation, or return the active one on conflict."""
    cur.execute(
        f"""
        INSERT INTO conversations (
            organization_id, contact_id, medium_id, status, priority, ai_enabled, last_message
        )
        VALUES (%s, %s, %s, %s, %s, TRUE, %s)
        ON CONFLICT (organization_id, contact_id, medium_id) WHERE status <> 2 DO NOTHING
        RETURNING {_COLUMNS}
        """,
        (
            organization_id,
            contact_id,
            medium_id,
            int(ConversationStatus.OPEN),
            int(ConversationPriority.LOW),
            last_message[:LAST_MESSAGE_PREVIEW_LENGTH],
        ),
    )
    row = cur.fetchone()
    if row:
        return _row_to_conversation(row)
    existing = get_active_conversation(
        cur, organization_id=organization_id, contact_id=contact_id, medium_id=medium_id
    )
    if existing is None:
        raise RuntimeError("conversation insert conflicted but no row found")
    return existing


def update_last_message(cur: PgCursor, conversation_id: str, content: str) -> None:
    cur.execute(
        """
        UPDATE conversations
        SET last_message = %s, last_message_at = now(), updated_at = now()
        WHERE id = %s
        """,
        (content[:LAST_MESSAGE_PREVIEW_LENGTH], conversation_id),
    )


class PostgresConversationStore:
    def get(self, conversation_id: str) -> Conversation | None:
        with txn() as cur:
            return get_conversation(cur, conversation_id)

    def get_active(
        self, organization_id: str, contact_id: str, medium_id: int
    ) -> Conversation | None:
        with txn() as cur:
            return get_active_conversation(
                cur,
                organization_id=organization_id,
                contact_id=contact_id,
                medium_id=medium_id,
            )

    def create(
        self,
        organization_id: str,
        contact_id: str,
        medium_id: int,
        last_message: str,
    ) -> Conversation:
        with txn() as cur:
            return insert_conversation(
                cur,
                organization_id=organization_id,
                contact_id=contact_id,
                medium_id=medium_id,
                last_message=last_message,
            )

    def update_last_message(self, conversation_id: str, content: str) -> None:
        with txn() as cur:
            update_last_message(cur, conversation_id, content)
