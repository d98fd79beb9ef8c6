from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.docledger.audit import record_event
from app.docledger.errors import (
    ConfirmationTimeoutError,
    DocLedgerError,
    FormatError,
    NotFoundError,
    OrphanedIssuanceError,
    StoreError,
)
from app.docledger.modules.documents.hashing import content_hash
from app.docledger.modules.documents.ledger import LedgerClient
from app.docledger.modules.documents.models import DocumentRecord
from app.docledger.modules.documents.naming import parse_file_name, validate_document_type, validate_owner_id
from app.docledger.modules.documents.recorder import (
    find_documents_by_hash,
    record_document,
    require_documents_for_owner,
    serialize_record,
)
from app.docledger.notifications import IssuedNotice, LogNotifier, Notifier
from app.docledger.principals import resolve_owner
from app.docledger.storage import BlobStore

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------------


class IssuanceState(str, Enum):
    PENDING = "pending"
    UPLOADED = "uploaded"
    ANCHORED = "anchored"
    RECORDED = "recorded"
    # terminal failures
    FAILED = "failed"
    ANCHOR_PENDING = "anchor_pending"  # submitted, confirmation unknown; may still be mined
    ORPHANED = "orphaned"  # anchored + stored, but no record: invisible to lookup


_TRANSITIONS: dict[IssuanceState, frozenset[IssuanceState]] = {
    IssuanceState.PENDING: frozenset({IssuanceState.UPLOADED, IssuanceState.FAILED}),
    IssuanceState.UPLOADED: frozenset({IssuanceState.ANCHORED, IssuanceState.ANCHOR_PENDING, IssuanceState.FAILED}),
    IssuanceState.ANCHORED: frozenset({IssuanceState.RECORDED, IssuanceState.ORPHANED}),
    IssuanceState.RECORDED: frozenset(),
    IssuanceState.FAILED: frozenset(),
    IssuanceState.ANCHOR_PENDING: frozenset(),
    IssuanceState.ORPHANED: frozenset(),
}


@dataclass
class Issuance:
    owner_id: str
    document_type: str
    content_hash: str
    file_name: str | None = None
    state: IssuanceState = IssuanceState.PENDING
    locator: str | None = None
    transaction_id: str | None = None
    record_id: int | None = None
    error: str | None = None
    history: list[IssuanceState] = field(default_factory=lambda: [IssuanceState.PENDING])

    def advance(self, to: IssuanceState, **changes: object) -> None:
        if to not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal issuance transition {self.state.value} -> {to.value}")
        for k, v in changes.items():
            setattr(self, k, v)
        self.state = to
        self.history.append(to)

    def to_dict(self) -> dict:
        return {
            "ownerID": self.owner_id,
            "documentType": self.document_type,
            "contentHash": self.content_hash,
            "fileName": self.file_name,
            "state": self.state.value,
            "locator": self.locator,
            "transactionID": self.transaction_id,
            "recordID": self.record_id,
            "error": self.error,
        }


class ReconciliationSink(Protocol):
    """
    Receives issuances that left the three systems out of step: anchored and
    stored without a metadata record (orphan), or stored with a ledger write
    whose outcome is unknown (pending).
    """

    def report_orphan(self, issuance: Issuance) -> None: ...

    def report_pending(self, issuance: Issuance) -> None: ...


class LogReconciliationSink:
    def report_orphan(self, issuance: Issuance) -> None:
        logger.error(
            "ORPHANED ISSUANCE (needs reconciliation): owner=%s type=%s hash=%s locator=%s tx=%s error=%s",
            issuance.owner_id,
            issuance.document_type,
            issuance.content_hash,
            issuance.locator,
            issuance.transaction_id,
            issuance.error,
        )

    def report_pending(self, issuance: Issuance) -> None:
        logger.error(
            "UNCONFIRMED LEDGER WRITE (watch tx, then record or discard): owner=%s type=%s hash=%s locator=%s tx=%s error=%s",
            issuance.owner_id,
            issuance.document_type,
            issuance.content_hash,
            issuance.locator,
            issuance.transaction_id,
            issuance.error,
        )


class IssuanceService:
    def __init__(
        self,
        ledger: LedgerClient,
        blob_store: BlobStore,
        *,
        notifier: Notifier | None = None,
        reconciliation: ReconciliationSink | None = None,
    ) -> None:
        self.ledger = ledger
        self.blob_store = blob_store
        self.notifier = notifier or LogNotifier()
        self.reconciliation = reconciliation or LogReconciliationSink()

    def prepare(
        self,
        *,
        owner_id: str,
        document_type: str,
        data: bytes,
        claimed_hash: str | None = None,
        file_name: str | None = None,
    ) -> Issuance:
        """Validate inputs and hash content. No network access."""
        validate_owner_id(owner_id)
        validate_document_type(document_type)
        if not data:
            raise FormatError("Document is empty.")
        digest = content_hash(data)
        if claimed_hash and claimed_hash != digest:
            raise FormatError("contentHash does not match the uploaded bytes.")
        return Issuance(owner_id=owner_id, document_type=document_type, content_hash=digest, file_name=file_name)

    def issue(
        self,
        s: Session,
        *,
        owner_id: str,
        document_type: str,
        data: bytes,
        claimed_hash: str | None = None,
        file_name: str | None = None,
        content_type: str | None = None,
        actor: str | None = None,
    ) -> Issuance:
        issuance = self.prepare(
            owner_id=owner_id,
            document_type=document_type,
            data=data,
            claimed_hash=claimed_hash,
            file_name=file_name,
        )

        try:
            locator = self.blob_store.put(data, filename=file_name, content_type=content_type)
            issuance.advance(IssuanceState.UPLOADED, locator=locator)
            tx_id = self.ledger.store_document(issuance.owner_id, issuance.content_hash)
            issuance.advance(IssuanceState.ANCHORED, transaction_id=tx_id)
        except ConfirmationTimeoutError as e:
            issuance.advance(IssuanceState.ANCHOR_PENDING, transaction_id=e.transaction_id, error=str(e))
            self.reconciliation.report_pending(issuance)
            raise
        except DocLedgerError as e:
            issuance.advance(IssuanceState.FAILED, error=str(e))
            logger.warning("Issuance failed before anchoring completed: owner=%s state=%s error=%s",
                           owner_id, issuance.history[-2].value, e)
            raise

        try:
            record = record_document(
                s,
                owner_id=issuance.owner_id,
                content_hash=issuance.content_hash,
                locator=issuance.locator or "",
                document_type=issuance.document_type,
                transaction_id=issuance.transaction_id,
            )
        except StoreError as e:
            issuance.advance(IssuanceState.ORPHANED, error=str(e))
            self.reconciliation.report_orphan(issuance)
            raise OrphanedIssuanceError(
                f"Document anchored (tx {issuance.transaction_id}) and stored at {issuance.locator}, "
                f"but the record could not be written: {e}",
                issuance,
            ) from e
        issuance.advance(IssuanceState.RECORDED, record_id=record.id)

        self._audit(s, issuance, actor)
        self._notify(s, issuance)
        return issuance

    def _audit(self, s: Session, issuance: Issuance, actor: str | None) -> None:
        record_event(
            s,
            actor=actor,
            action="doc.issue",
            entity_type="DocumentRecord",
            entity_id=str(issuance.record_id),
            metadata={
                "owner_id": issuance.owner_id,
                "document_type": issuance.document_type,
                "content_hash": issuance.content_hash,
                "transaction_id": issuance.transaction_id,
            },
        )
        try:
            s.commit()
        except SQLAlchemyError:
            s.rollback()
            logger.exception("Audit write failed for record %s", issuance.record_id)

    def _notify(self, s: Session, issuance: Issuance) -> None:
        # issuance is already durable at this point
        try:
            owner = resolve_owner(s, issuance.owner_id)
            if owner is None:
                logger.info("No registered individual for owner %s; skipping notification", issuance.owner_id)
                return
            self.notifier.document_issued(
                IssuedNotice(
                    recipient=owner.email,
                    owner_id=issuance.owner_id,
                    document_type=issuance.document_type,
                    locator=issuance.locator or "",
                    transaction_id=issuance.transaction_id or "",
                )
            )
        except Exception:
            logger.exception("Notification failed for owner %s (record %s)", issuance.owner_id, issuance.record_id)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VerificationResult:
    file_name: str
    owner_id: str
    content_hash: str
    matched: bool
    matched_record: DocumentRecord | None
    candidate_records: tuple[DocumentRecord, ...]
    checked_at: datetime
    message: str

    def to_dict(self) -> dict:
        return {
            "fileName": self.file_name,
            "ownerID": self.owner_id,
            "contentHash": self.content_hash,
            "matched": self.matched,
            "matchedRecord": serialize_record(self.matched_record) if self.matched_record else None,
            "candidateRecords": [serialize_record(r) for r in self.candidate_records],
            "timestamp": self.checked_at.isoformat(),
            "message": self.message,
        }


def match_hash(candidates: list[DocumentRecord], digest: str) -> DocumentRecord | None:
    """First record (insertion order) whose hash equals `digest` exactly."""
    for r in candidates:
        if r.content_hash == digest:
            return r
    return None


def verify_file(s: Session, file_name: str, data: bytes) -> VerificationResult:
    parsed = parse_file_name(file_name)
    digest = content_hash(data)
    checked_at = _now_utc()

    try:
        candidates = require_documents_for_owner(s, parsed.owner_id)
    except NotFoundError as e:
        return VerificationResult(
            file_name=file_name,
            owner_id=parsed.owner_id,
            content_hash=digest,
            matched=False,
            matched_record=None,
            candidate_records=(),
            checked_at=checked_at,
            message=str(e),
        )

    matched = match_hash(candidates, digest)
    return VerificationResult(
        file_name=file_name,
        owner_id=parsed.owner_id,
        content_hash=digest,
        matched=matched is not None,
        matched_record=matched,
        candidate_records=tuple(candidates),
        checked_at=checked_at,
        message="Document verified successfully" if matched else "No matching hash found in associated documents",
    )


@dataclass(frozen=True)
class ContentCheck:
    is_valid: bool
    content_hash: str
    locator: str | None = None

    def to_dict(self) -> dict:
        out: dict[str, object] = {"isValid": self.is_valid, "contentHash": self.content_hash}
        if self.locator:
            out["locator"] = self.locator
        return out


def verify_content(s: Session, data: bytes, claimed_hash: str | None = None) -> ContentCheck:
    """
    Owner-agnostic check: is this exact content on record at all?

    A claimed hash that disagrees with the bytes is a tampered submission and
    is reported invalid without a lookup.
    """
    digest = content_hash(data)
    if claimed_hash and claimed_hash != digest:
        return ContentCheck(is_valid=False, content_hash=digest)
    records = find_documents_by_hash(s, digest)
    if not records:
        return ContentCheck(is_valid=False, content_hash=digest)
    return ContentCheck(is_valid=True, content_hash=digest, locator=records[0].storage_locator)
