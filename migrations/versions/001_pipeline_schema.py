"""Conversation pipeline schema.

Creates organization_settings, organization_knowledge, contacts,
conversations and messages.

Revision ID: 001_pipeline_schema
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "001_pipeline_schema"
down_revision = None
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "001_pipeline_schema.sql"


def upgrade() -> None:
    op.execute(_SQL_FILE.read_text())


def downgrade() -> None:
    op.execute(
        """
        DROP TABLE IF EXISTS messages;
        DROP TABLE IF EXISTS conversations;
        DROP TABLE IF EXISTS contacts;
        DROP TABLE IF EXISTS organization_knowledge;
        DROP TABLE IF EXISTS organization_settings;
        """
    )
