"""
Issue -> verify flows through the service layer against a real (sqlite) store,
the local blob store and the in-memory ledger.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.docledger.errors import (
    ConfirmationTimeoutError,
    FormatError,
    NetworkError,
    OrphanedIssuanceError,
    StoreError,
)
from app.docledger.models import AuditEvent, Base, IndividualPrincipal
from app.docledger.modules.documents import service as service_mod
from app.docledger.modules.documents.hashing import content_hash
from app.docledger.modules.documents.ledger import MemoryLedger
from app.docledger.modules.documents.models import DocumentRecord
from app.docledger.modules.documents.service import IssuanceService, IssuanceState, verify_content, verify_file
from app.docledger.storage import LocalBlobStore

PDF = b"%PDF-1.4 transcript for AB1234"


class SpyLedger(MemoryLedger):
    def __init__(self, fail_with=None):
        super().__init__()
        self.calls = []
        self.fail_with = fail_with

    def store_document(self, owner_id, content_hash):
        self.calls.append((owner_id, content_hash))
        if self.fail_with is not None:
            raise self.fail_with
        return super().store_document(owner_id, content_hash)


class SpyStore(LocalBlobStore):
    def __init__(self, root):
        object.__setattr__(self, "root", root)
        object.__setattr__(self, "puts", [])

    def put(self, data, *, filename=None, content_type=None):
        self.puts.append(filename)
        return super().put(data, filename=filename, content_type=content_type)


class RecordingNotifier:
    def __init__(self):
        self.notices = []

    def document_issued(self, notice):
        self.notices.append(notice)


class RecordingSink:
    def __init__(self):
        self.orphans = []
        self.pending = []

    def report_orphan(self, issuance):
        self.orphans.append(issuance)

    def report_pending(self, issuance):
        self.pending.append(issuance)


@pytest.fixture()
def s():
    engine = create_engine("sqlite://", future=True)
    Base.metadata.create_all(bind=engine)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, expire_on_commit=False, future=True)
    with sm() as session:
        yield session


@pytest.fixture()
def parts(tmp_path):
    ledger = SpyLedger()
    store = SpyStore(tmp_path / "blobs")
    notifier = RecordingNotifier()
    sink = RecordingSink()
    svc = IssuanceService(ledger, store, notifier=notifier, reconciliation=sink)
    return svc, ledger, store, notifier, sink


def test_issue_then_verify_matches(s, parts):
    svc, ledger, store, _, _ = parts
    issuance = svc.issue(s, owner_id="AB1234", document_type="Transcript", data=PDF, file_name="AB1234_Transcript.pdf")

    assert issuance.state == IssuanceState.RECORDED
    assert issuance.history == [
        IssuanceState.PENDING,
        IssuanceState.UPLOADED,
        IssuanceState.ANCHORED,
        IssuanceState.RECORDED,
    ]
    assert ledger.calls == [("AB1234", content_hash(PDF))]
    assert issuance.locator.startswith("local://sha256/")

    result = verify_file(s, "AB1234_Transcript.pdf", PDF)
    assert result.matched is True
    assert result.matched_record.id == issuance.record_id
    assert result.message == "Document verified successfully"
    assert result.to_dict()["matchedRecord"]["transactionID"] == issuance.transaction_id


def test_tampered_bytes_do_not_verify(s, parts):
    svc, _, _, _, _ = parts
    svc.issue(s, owner_id="AB1234", document_type="Transcript", data=PDF)

    tampered = PDF[:-1] + b"X"
    result = verify_file(s, "AB1234_Transcript.pdf", tampered)
    assert result.matched is False
    assert result.matched_record is None
    assert [r.content_hash for r in result.candidate_records] == [content_hash(PDF)]
    assert result.message == "No matching hash found in associated documents"


def test_bad_filename_rejected_before_any_network_call(s, parts):
    svc, ledger, store, _, _ = parts
    with pytest.raises(FormatError):
        verify_file(s, "certificate.pdf", PDF)
    with pytest.raises(FormatError):
        svc.issue(s, owner_id="ab1234", document_type="Transcript", data=PDF)
    with pytest.raises(FormatError):
        svc.issue(s, owner_id="AB1234", document_type="Tran_script", data=PDF)
    with pytest.raises(FormatError):
        svc.issue(s, owner_id="AB1234", document_type="Transcript", data=b"")
    assert ledger.calls == []
    assert store.puts == []


def test_claimed_hash_mismatch_rejected_before_upload(s, parts):
    svc, ledger, store, _, _ = parts
    with pytest.raises(FormatError):
        svc.issue(s, owner_id="AB1234", document_type="Transcript", data=PDF, claimed_hash="bogus")
    assert store.puts == []
    assert ledger.calls == []


def test_duplicate_issuance_creates_two_records_first_matches(s, parts):
    svc, _, _, _, _ = parts
    first = svc.issue(s, owner_id="AB1234", document_type="Transcript", data=PDF)
    second = svc.issue(s, owner_id="AB1234", document_type="Transcript", data=PDF)
    assert first.record_id != second.record_id
    assert first.locator == second.locator
    assert s.query(DocumentRecord).count() == 2

    result = verify_file(s, "AB1234_Transcript.pdf", PDF)
    assert result.matched_record.id == first.record_id
    assert len(result.candidate_records) == 2


def test_unknown_owner_is_negative_result(s):
    result = verify_file(s, "ZZ9999_Transcript.pdf", PDF)
    assert result.matched is False
    assert result.candidate_records == ()
    assert "ZZ9999" in result.message


def test_ledger_failure_leaves_no_record(s, tmp_path):
    ledger = SpyLedger(fail_with=NetworkError("node down"))
    svc = IssuanceService(ledger, SpyStore(tmp_path / "blobs"))
    with pytest.raises(NetworkError):
        svc.issue(s, owner_id="AB1234", document_type="Transcript", data=PDF)
    assert s.query(DocumentRecord).count() == 0


def test_unconfirmed_ledger_write_is_anchor_pending_and_reported(s, tmp_path):
    ledger = SpyLedger(fail_with=ConfirmationTimeoutError("not mined within 120s", transaction_id="0xabc"))
    sink = RecordingSink()
    notifier = RecordingNotifier()
    svc = IssuanceService(ledger, SpyStore(tmp_path / "blobs"), notifier=notifier, reconciliation=sink)

    with pytest.raises(ConfirmationTimeoutError) as ei:
        svc.issue(s, owner_id="AB1234", document_type="Transcript", data=PDF)

    assert ei.value.retryable is False
    assert len(sink.pending) == 1
    issuance = sink.pending[0]
    assert issuance.state == IssuanceState.ANCHOR_PENDING
    assert issuance.transaction_id == "0xabc"
    assert issuance.locator.startswith("local://sha256/")
    assert issuance.history[-2:] == [IssuanceState.UPLOADED, IssuanceState.ANCHOR_PENDING]
    assert sink.orphans == []
    assert notifier.notices == []
    assert s.query(DocumentRecord).count() == 0


def test_record_failure_is_orphaned_and_reported(s, parts, monkeypatch):
    svc, ledger, _, notifier, sink = parts

    def _fail(*args, **kwargs):
        raise StoreError("database is locked")

    monkeypatch.setattr(service_mod, "record_document", _fail)
    with pytest.raises(OrphanedIssuanceError) as ei:
        svc.issue(s, owner_id="AB1234", document_type="Transcript", data=PDF)

    err = ei.value
    assert err.partial is True
    assert err.issuance.state == IssuanceState.ORPHANED
    assert err.issuance.transaction_id
    assert sink.orphans == [err.issuance]
    assert len(ledger.calls) == 1
    assert notifier.notices == []


def test_issue_audits_and_notifies_registered_owner(s, parts):
    svc, _, _, notifier, _ = parts
    s.add(IndividualPrincipal(email="holder@example.com", display_name="Holder", owner_id="AB1234"))
    s.commit()

    issuance = svc.issue(s, owner_id="AB1234", document_type="Transcript", data=PDF, actor="registrar@example.edu")

    ev = s.query(AuditEvent).filter(AuditEvent.action == "doc.issue").one()
    assert ev.actor == "registrar@example.edu"
    assert ev.entity_id == str(issuance.record_id)

    assert len(notifier.notices) == 1
    assert notifier.notices[0].recipient == "holder@example.com"
    assert notifier.notices[0].transaction_id == issuance.transaction_id


def test_notifier_failure_does_not_fail_issuance(s, tmp_path):
    class Broken:
        def document_issued(self, notice):
            raise RuntimeError("smtp down")

    s.add(IndividualPrincipal(email="holder@example.com", display_name="Holder", owner_id="AB1234"))
    s.commit()
    svc = IssuanceService(MemoryLedger(), SpyStore(tmp_path / "blobs"), notifier=Broken())
    issuance = svc.issue(s, owner_id="AB1234", document_type="Transcript", data=PDF)
    assert issuance.state == IssuanceState.RECORDED


def test_illegal_transition():
    from app.docledger.modules.documents.service import Issuance

    i = Issuance(owner_id="AB1234", document_type="Transcript", content_hash="h")
    with pytest.raises(RuntimeError):
        i.advance(IssuanceState.RECORDED)


def test_records_are_immutable(s, parts):
    svc, _, _, _, _ = parts
    issuance = svc.issue(s, owner_id="AB1234", document_type="Transcript", data=PDF)
    r = s.get(DocumentRecord, issuance.record_id)
    r.document_type = "Forged"
    with pytest.raises(StoreError):
        s.commit()
    s.rollback()


def test_verify_content(s, parts):
    svc, _, _, _, _ = parts
    issuance = svc.issue(s, owner_id="AB1234", document_type="Transcript", data=PDF)

    ok = verify_content(s, PDF)
    assert ok.is_valid is True
    assert ok.locator == issuance.locator

    assert verify_content(s, PDF, claimed_hash="tampered").is_valid is False
    assert verify_content(s, b"never issued").is_valid is False
