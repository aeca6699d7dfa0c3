"""Messages repository.

attachments and metadata are JSONB columns; kind, status and sender_type are
stored as their integer codes. Inbound messages are unique per
(organization_id, channel_message_id), so replayed webhooks converge on the
first row.
"""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from convoflow.domain.models import (
    Attachment,
    Message,
    MessageKind,
    MessageStatus,
    NewMessage,
    SenderType,
)
from convoflow.infra.db import Json, fetchone, txn

_COLUMNS = """
    id, conversation_id, organization_id, contact_id, content, sender_type,
    direction, kind, status, media_url, attachments, metadata, ai_generated,
    confidence_score, failure_reason, created_at, channel_message_id
"""


def _row_to_message(row: tuple[Any, ...]) -> Message:
    attachments = [
        Attachment(
            id=str(a.get("id", "")),
            type=a.get("type", ""),
            url=a.get("url", ""),
            filename=a.get("filename", ""),
            size=int(a.get("size") or 0),
            mime_type=a.get("mime_type", ""),
        )
        for a in (row[10] or [])
    ]
    return Message(
        id=str(row[0]),
        conversation_id=str(row[1]),
        organization_id=str(row[2]),
        contact_id=str(row[3]),
        content=row[4] or "",
        sender_type=SenderType(row[5]),
        direction=row[6],
        kind=MessageKind(row[7]),
        status=MessageStatus(row[8]),
        media_url=row[9] or "",
        attachments=attachments,
        metadata=row[11] or {},
        ai_generated=bool(row[12]),
        confidence_score=row[13],
        failure_reason=row[14],
        created_at=row[15],
        channel_message_id=row[16] or "",
    )


def get_message(cur: PgCursor, message_id: str) -> Message | None:
    cur.execute(f"SELECT {_COLUMNS} FROM messages WHERE id = %s", (message_id,))
    row = cur.fetchone()
    return _row_to_message(row) if row else None


def get_inbound_message(
    cur: PgCursor, organization_id: str, channel_message_id: str
) -> Message | None:
    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM messages
        WHERE organization_id = %s AND channel_message_id = %s AND direction = 'i'
        """,
        (organization_id, channel_message_id),
    )
    row = cur.fetchone()
    return _row_to_message(row) if row else None


def insert_message(cur: PgCursor, message: NewMessage) -> Message:
    """Insert a message; an inbound duplicate returns the existing row.

    Outbound rows carry no channel_message_id and never conflict.
    """
    cur.execute(
        f"""
        INSERT INTO messages (
            conversation_id, organization_id, contact_id, content, sender_type,
            direction, kind, status, media_url, attachments, metadata,
            ai_generated, confidence_score, channel_message_id
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, '[]'::jsonb, %s, %s, %s, %s)
        ON CONFLICT (organization_id, channel_message_id)
            WHERE direction = 'i' AND channel_message_id IS NOT NULL
            DO NOTHING
        RETURNING {_COLUMNS}
        """,
        (
            message.conversation_id,
            message.organization_id,
            message.contact_id,
            message.content,
            int(message.sender_type),
            message.direction,
            int(message.kind),
            int(message.status),
            message.media_url,
            Json(message.metadata),
            message.ai_generated,
            message.confidence_score,
            message.channel_message_id or None,
        ),
    )
    row = cur.fetchone()
    if row:
        return _row_to_message(row)
    existing = get_inbound_message(cur, message.organization_id, message.channel_message_id)
    if existing is None:
        raise RuntimeError("message insert conflicted but no row found")
    return existing


def update_message_media(
    cur: PgCursor, message_id: str, media_url: str, attachments: list[Attachment]
) -> None:
    cur.execute(
        """
        UPDATE messages SET media_url = %s, attachments = %s, updated_at = now()
        WHERE id = %s
        """,
        (media_url, Json([a.to_dict() for a in attachments]), message_id),
    )


def update_message_status(
    cur: PgCursor,
    message_id: str,
    status: MessageStatus,
    failure_reason: str | None = None,
) -> None:
    cur.execute(
        """
        UPDATE messages SET status = %s, failure_reason = %s, updated_at = now()
        WHERE id = %s
        """,
        (int(status), failure_reason, message_id),
    )


def list_recent_messages(cur: PgCursor, conversation_id: str, limit: int) -> list[Message]:
    """Newest first."""
    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM messages
        WHERE conversation_id = %s
        ORDER BY created_at DESC, id DESC
        LIMIT %s
        """,
        (conversation_id, limit),
    )
    return [_row_to_message(row) for row in cur.fetchall()]


def count_messages(cur: PgCursor, conversation_id: str) -> int:
    row = fetchone(
        cur, "SELECT COUNT(*) FROM messages WHERE conversation_id = %s", (conversation_id,)
    )
    return row[0] if row else 0


class PostgresMessageStore:
    def get(self, message_id: str) -> Message | None:
        with txn() as cur:
            return get_message(cur, message_id)

    def get_inbound(self, organization_id: str, channel_message_id: str) -> Message | None:
        with txn() as cur:
            return get_inbound_message(cur, organization_id, channel_message_id)

    def create(self, message: NewMessage) -> Message:
        with txn() as cur:
            return insert_message(cur, message)

    def update_media(
        self, message_id: str, media_url: str, attachments: list[Attachment]
    ) -> None:
        with txn() as cur:
            update_message_media(cur, message_id, media_url, attachments)

    def update_status(
        self, message_id: str, status: MessageStatus, failure_reason: str | None = None
    ) -> None:
        with txn() as cur:
            update_message_status(cur, message_id, status, failure_reason)

    def list_recent(self, conversation_id: str, limit: int) -> list[Message]:
        with txn() as cur:
            return list_recent_messages(cur, conversation_id, limit)

    def count(self, conversation_id: str) -> int:
        with txn() as cur:
            return count_messages(cur, conversation_id)
