from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.docledger.errors import NotFoundError, StoreError
from app.docledger.modules.documents.models import DocumentRecord

logger = logging.getLogger(__name__)


def record_document(
    s: Session,
    *,
    owner_id: str,
    content_hash: str,
    locator: str,
    document_type: str,
    transaction_id: str | None = None,
) -> DocumentRecord:
    """
    Persist and commit a new record. `created_at` is assigned here, not by the caller.
    """
    r = DocumentRecord(
        owner_id=owner_id,
        content_hash=content_hash,
        storage_locator=locator,
        document_type=document_type,
        transaction_id=transaction_id,
    )
    try:
        s.add(r)
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        raise StoreError(f"Could not record document for owner {owner_id}: {e}") from e
    return r


def list_documents_for_owner(s: Session, owner_id: str) -> list[DocumentRecord]:
    try:
        return (
            s.query(DocumentRecord)
            .filter(DocumentRecord.owner_id == owner_id)
            .order_by(DocumentRecord.id.asc())
            .all()
        )
    except SQLAlchemyError as e:
        raise StoreError(f"Lookup failed for owner {owner_id}: {e}") from e


def require_documents_for_owner(s: Session, owner_id: str) -> list[DocumentRecord]:
    records = list_documents_for_owner(s, owner_id)
    if not records:
        raise NotFoundError(f"No documents found for owner {owner_id}")
    return records


def find_documents_by_hash(s: Session, content_hash: str) -> list[DocumentRecord]:
    try:
        return (
            s.query(DocumentRecord)
            .filter(DocumentRecord.content_hash == content_hash)
            .order_by(DocumentRecord.id.asc())
            .all()
        )
    except SQLAlchemyError as e:
        raise StoreError(f"Lookup by hash failed: {e}") from e


def serialize_record(r: DocumentRecord) -> dict:
    return {
        "id": r.id,
        "ownerID": r.owner_id,
        "contentHash": r.content_hash,
        "storageLocator": r.storage_locator,
        "documentType": r.document_type,
        "transactionID": r.transaction_id,
        "createdAt": r.created_at.isoformat() if r.created_at else None,
    }
