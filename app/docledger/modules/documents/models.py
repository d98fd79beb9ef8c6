from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from app.docledger.errors import StoreError
from app.docledger.models import Base


class DocumentRecord(Base):
    """
    Searchable metadata for one issuance. Immutable once written.

    Identical content issued twice for the same owner produces two records;
    nothing here deduplicates.
    """

    __tablename__ = "document_records"
    __table_args__ = (
        Index("idx_document_records_owner_id", "owner_id"),
        Index("idx_document_records_content_hash", "content_hash"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    owner_id: Mapped[str] = mapped_column(String(6), nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)  # base64 SHA-256
    storage_locator: Mapped[str] = mapped_column(String(1024), nullable=False)
    document_type: Mapped[str] = mapped_column(String(128), nullable=False)
    transaction_id: Mapped[str | None] = mapped_column(String(80), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


@event.listens_for(DocumentRecord, "before_update")
def _document_records_are_immutable(mapper, connection, target):  # type: ignore[no-untyped-def]
    raise StoreError(f"DocumentRecord {target.id} is immutable")


@event.listens_for(DocumentRecord, "before_delete")
def _document_records_are_permanent(mapper, connection, target):  # type: ignore[no-untyped-def]
    raise StoreError(f"DocumentRecord {target.id} cannot be deleted")


class BatchRun(Base):
    __tablename__ = "batch_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ran_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    mode: Mapped[str] = mapped_column(String(16), nullable=False)  # "issue" | "verify"
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="completed")  # running | completed | cancelled | failed
    archive_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    actor: Mapped[str | None] = mapped_column(String(320), nullable=True)

    total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    succeeded_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    results_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # BatchOutcome.to_dict() once finished
