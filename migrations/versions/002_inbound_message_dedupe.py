"""Unique platform message id for inbound messages.

Revision ID: 002_inbound_message_dedupe
Revises: 001_pipeline_schema
Create Date: 2026-10-19
"""
from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "002_inbound_message_dedupe"
down_revision = "001_pipeline_schema"
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "002_inbound_message_dedupe.sql"


def upgrade() -> None:
    op.execute(_SQL_FILE.read_text())


def downgrade() -> None:
    op.execute(
        """
        DROP INDEX IF EXISTS uq_messages_inbound_channel_message;
        ALTER TABLE messages DROP COLUMN IF EXISTS channel_message_id;
        """
    )
