"""Organization settings and knowledge base (read-only)."""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from convoflow.domain.models import KnowledgeEntry, OrganizationSettings
from convoflow.infra.db import fetchall, txn


def _row_to_settings(row: tuple[Any, ...]) -> OrganizationSettings:
    return OrganizationSettings(
        organization_id=str(row[0]),
        system_prompt=row[1] or "",
        verify_token=row[2] or "",
    )


def get_organization_settings(cur: PgCursor, organization_id: str) -> OrganizationSettings | None:
    cur.execute(
        """
        SELECT organization_id, system_prompt, verify_token
        FROM organization_settings
        WHERE organization_id = %s
        """,
        (organization_id,),
    )
    row = cur.fetchone()
    return _row_to_settings(row) if row else None


def find_by_integration_key(cur: PgCursor, key: str) -> OrganizationSettings | None:
    cur.execute(
        """
        SELECT organization_id, system_prompt, verify_token
        FROM organization_settings
        WHERE integration_key = %s
        """,
        (key,),
    )
    row = cur.fetchone()
    return _row_to_settings(row) if row else None


def list_active_knowledge(cur: PgCursor, organization_id: str) -> list[KnowledgeEntry]:
    rows = fetchall(
        cur,
        """
        SELECT title, content, source_url, description
        FROM organization_knowledge
        WHERE organization_id = %s AND active
        ORDER BY created_at
        """,
        (organization_id,),
    )
    return [
        KnowledgeEntry(
            title=row[0],
            content=row[1],
            source_url=row[2] or "",
            description=row[3] or "",
        )
        for row in rows
    ]


class PostgresOrganizationStore:
    def get_settings(self, organization_id: str) -> OrganizationSettings | None:
        with txn() as cur:
            return get_organization_settings(cur, organization_id)

    def find_by_integration_key(self, key: str) -> OrganizationSettings | None:
        with txn() as cur:
            return find_by_integration_key(cur, key)

    def list_active_knowledge(self, organization_id: str) -> list[KnowledgeEntry]:
        with txn() as cur:
            return list_active_knowledge(cur, organization_id)
