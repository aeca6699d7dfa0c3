"""Contacts repository.

Uses raw SQL with psycopg2 (no ORM). Contacts are unique per
(organization_id, identifier); concurrent creates converge on one row.
"""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from convoflow.domain.models import Contact
from convoflow.infra.db import Json, txn

_COLUMNS = "id, organization_id, identifier, name, salutation, memory"


def _row_to_contact(row: tuple[Any, ...]) -> Contact:
    return Contact(
        id=str(row[0]),
        organization_id=str(row[1]),
        identifier=row[2],
        name=row[3] or "",
        salutation=row[4] or "",
        memory=row[5],
    )


def get_contact(cur: PgCursor, contact_id: str) -> Contact | None:
    cur.execute(f"SELECT {_COLUMNS} FROM contacts WHERE id = %s", (contact_id,))
    row = cur.fetchone()
    return _row_to_contact(row) if row else None


def get_contact_by_identifier(
    cur: PgCursor, *, organization_id: str, identifier: str
) -> Contact | None:
    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM contacts
        WHERE organization_id = %s AND identifier = %s
        """,
        (organization_id, identifier),
    )
    row = cur.fetchone()
    return _row_to_contact(row) if row else None


def insert_contact(
    cur: PgCursor, *, organization_id: str, identifier: str, name: str
) -> Contact:
    """Insert a contact, or return the existing one for the identifier.

    ON CONFLICT DO NOTHING returns no row when another writer won the race;
    the winning row is then re-read.
    """
    cur.execute(
        f"""
        INSERT INTO contacts (organization_id, identifier, name)
        VALUES (%s, %s, %s)
        ON CONFLICT (organization_id, identifier) DO NOTHING
        RETURNING {_COLUMNS}
        """,
        (organization_id, identifier, name),
    )
    row = cur.fetchone()
    if row:
        return _row_to_contact(row)
    existing = get_contact_by_identifier(
        cur, organization_id=organization_id, identifier=identifier
    )
    if existing is None:
        raise RuntimeError("contact insert conflicted but no row found")
    return existing


def update_contact_memory(cur: PgCursor, contact_id: str, memory: dict) -> None:
    cur.execute(
        "UPDATE contacts SET memory = %s, updated_at = now() WHERE id = %s",
        (Json(memory), contact_id),
    )


class PostgresContactStore:
    """ContactStore backed by the contacts table (one transaction per call)."""

    def get(self, contact_id: str) -> Contact | None:
        with txn() as cur:
            return get_contact(cur, contact_id)

    def get_by_identifier(self, organization_id: str, identifier: str) -> Contact | None:
        with txn() as cur:
            return get_contact_by_identifier(
                cur, organization_id=organization_id, identifier=identifier
            )

    def create(self, organization_id: str, identifier: str, name: str) -> Contact:
        with txn() as cur:
            return insert_contact(
                cur, organization_id=organization_id, identifier=identifier, name=name
            )

    def update_memory(self, contact_id: str, memory: dict) -> None:
        with txn() as cur:
            update_contact_memory(cur, contact_id, memory)
