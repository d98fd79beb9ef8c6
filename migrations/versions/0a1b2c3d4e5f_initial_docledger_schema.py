"""initial docledger schema: principals, audit events, document records, batch runs

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "0a1b2c3d4e5f"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)
    tables = set(insp.get_table_names())

    if "principals" not in tables:
        op.create_table(
            "principals",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("kind", sa.String(length=32), nullable=False),
            sa.Column("email", sa.String(length=320), nullable=False, unique=True),
            sa.Column("display_name", sa.String(length=255), nullable=False, server_default=""),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("org_role", sa.String(length=32), nullable=True),
            sa.Column("owner_id", sa.String(length=6), nullable=True, unique=True),
        )

    if "audit_events" not in tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("request_id", sa.String(length=64), nullable=True),
            sa.Column("actor", sa.String(length=320), nullable=True),
            sa.Column("action", sa.String(length=128), nullable=False),
            sa.Column("entity_type", sa.String(length=128), nullable=True),
            sa.Column("entity_id", sa.String(length=128), nullable=True),
            sa.Column("reason", sa.String(length=512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
        )

    if "document_records" not in tables:
        op.create_table(
            "document_records",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("owner_id", sa.String(length=6), nullable=False),
            sa.Column("content_hash", sa.String(length=64), nullable=False),
            sa.Column("storage_locator", sa.String(length=1024), nullable=False),
            sa.Column("document_type", sa.String(length=128), nullable=False),
            sa.Column("transaction_id", sa.String(length=80), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_document_records_owner_id", "document_records", ["owner_id"])
        op.create_index("idx_document_records_content_hash", "document_records", ["content_hash"])

    if "batch_runs" not in tables:
        op.create_table(
            "batch_runs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("ran_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("mode", sa.String(length=16), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="completed"),
            sa.Column("archive_name", sa.String(length=255), nullable=True),
            sa.Column("actor", sa.String(length=320), nullable=True),
            sa.Column("total", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("processed", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("succeeded_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("failed_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("duration_seconds", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("results_json", sa.Text(), nullable=True),
        )


def downgrade() -> None:
    op.drop_table("batch_runs")
    op.drop_index("idx_document_records_content_hash", table_name="document_records")
    op.drop_index("idx_document_records_owner_id", table_name="document_records")
    op.drop_table("document_records")
    op.drop_table("audit_events")
    op.drop_table("principals")
