import io
import zipfile

import pytest

from app.docledger import create_app
from app.docledger.db import session_scope
from app.docledger.models import AuditEvent, Base
from app.docledger.modules.documents.hashing import content_hash
from app.docledger.modules.documents.models import DocumentRecord

PDF = b"%PDF-1.4 degree certificate"


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("LEDGER_BACKEND", "memory")

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    return app.test_client()


def _issue(client, data=PDF, owner="AB1234", doc_type="Degree Certificate", **form):
    return client.post(
        "/api/documents/issue",
        data={"document": (io.BytesIO(data), f"{owner}_{doc_type}.pdf"), "ownerID": owner, "documentType": doc_type, **form},
        content_type="multipart/form-data",
        headers={"X-Actor": "registrar@example.edu"},
    )


def test_issue_lookup_verify_vertical_slice(client):
    r = _issue(client)
    assert r.status_code == 201
    assert r.json["transactionID"].startswith("0x")
    assert r.json["record"]["ownerID"] == "AB1234"
    assert r.json["record"]["transactionID"] == r.json["transactionID"]
    assert r.json["issuance"]["state"] == "recorded"
    assert r.json["issuance"]["contentHash"] == content_hash(PDF)

    r = client.get("/api/documents/AB1234")
    assert r.status_code == 200
    docs = r.json["documents"]
    assert len(docs) == 1
    assert docs[0]["documentType"] == "Degree Certificate"
    assert docs[0]["contentHash"] == content_hash(PDF)

    r = client.post(
        "/api/documents/verify",
        data={"document": (io.BytesIO(PDF), "anything.pdf")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert r.json["isValid"] is True
    assert r.json["locator"].startswith("local://sha256/")

    r = client.post(
        "/api/documents/verify-file",
        data={"document": (io.BytesIO(PDF), "AB1234_Degree Certificate.pdf")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert r.json["matched"] is True
    assert r.json["message"] == "Document verified successfully"

    r = client.get("/api/ledger", query_string={"hash": content_hash(PDF)})
    assert r.json == {"hash": content_hash(PDF), "anchored": True}


def test_lookup_returns_records_in_issue_order(client):
    for body in (b"first", b"second", b"third"):
        assert _issue(client, data=body).status_code == 201
    r = client.get("/api/documents/AB1234")
    assert [d["contentHash"] for d in r.json["documents"]] == [content_hash(b) for b in (b"first", b"second", b"third")]


def test_lookup_unknown_owner_is_empty_and_bad_owner_is_400(client):
    r = client.get("/api/documents/ZZ9999")
    assert r.status_code == 200
    assert r.json["documents"] == []

    r = client.get("/api/documents/not-an-id")
    assert r.status_code == 400
    assert r.json["error"] == "format_error"


def test_issue_validation_errors(client):
    r = _issue(client, owner="ab1234")
    assert r.status_code == 400
    assert r.json["error"] == "format_error"

    r = _issue(client, contentHash="not-the-hash")
    assert r.status_code == 400

    r = client.post("/api/documents/issue", data={"ownerID": "AB1234"}, content_type="multipart/form-data")
    assert r.status_code == 400

    with session_scope(client.application) as s:
        assert s.query(DocumentRecord).count() == 0


def test_verify_tampered_is_invalid_not_error(client):
    _issue(client)
    r = client.post(
        "/api/documents/verify",
        data={"document": (io.BytesIO(PDF + b"!"), "x.pdf")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert r.json["isValid"] is False
    assert "locator" not in r.json

    r = client.post(
        "/api/documents/verify-file",
        data={"document": (io.BytesIO(PDF + b"!"), "AB1234_Degree Certificate.pdf")},
        content_type="multipart/form-data",
    )
    assert r.json["matched"] is False
    assert len(r.json["candidateRecords"]) == 1


def test_verify_file_bad_name_is_400(client):
    r = client.post(
        "/api/documents/verify-file",
        data={"document": (io.BytesIO(PDF), "certificate.pdf")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    assert r.json["error"] == "format_error"


def test_batch_endpoints(client):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("AB1234_Transcript.pdf", b"t")
        zf.writestr("bad.pdf", b"x")
    archive = buf.getvalue()

    r = client.post(
        "/api/documents/batch/issue",
        data={"archive": (io.BytesIO(archive), "batch.zip")},
        content_type="multipart/form-data",
        headers={"X-Actor": "registrar@example.edu"},
    )
    assert r.status_code == 202
    assert r.json["status"] == "running"
    assert r.json["total"] == 2
    batch_id = r.json["batchID"]

    client.application.extensions["docledger.batch_runner"].join(batch_id, timeout=30)
    r = client.get(f"/api/documents/batch/{batch_id}")
    assert r.status_code == 200
    assert r.json["status"] == "completed"
    assert (r.json["total"], r.json["processed"]) == (2, 2)
    assert (r.json["succeededCount"], r.json["failedCount"]) == (1, 1)
    assert r.json["actor"] == "registrar@example.edu"
    assert [o["fileName"] for o in r.json["outcome"]["failed"]] == ["bad.pdf"]

    r = client.post(
        "/api/documents/batch/verify",
        data={"archive": (io.BytesIO(archive), "batch.zip")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert [o["fileName"] for o in r.json["succeeded"]] == ["AB1234_Transcript.pdf"]

    r = client.post(
        "/api/documents/batch/issue",
        data={"archive": (io.BytesIO(b"not a zip"), "batch.zip")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    assert r.json["error"] == "archive_error"


def test_ledger_lookup_requires_hash(client):
    r = client.get("/api/ledger")
    assert r.status_code == 400
    r = client.get("/api/ledger", query_string={"hash": "never-anchored"})
    assert r.json["anchored"] is False


def test_issue_and_verify_are_audited(client):
    _issue(client)
    client.post(
        "/api/documents/verify-file",
        data={"document": (io.BytesIO(PDF), "AB1234_Degree Certificate.pdf")},
        content_type="multipart/form-data",
        headers={"X-Actor": "verifier@example.org"},
    )
    with session_scope(client.application) as s:
        events = {(e.action, e.actor) for e in s.query(AuditEvent).all()}
        assert ("doc.issue", "registrar@example.edu") in events
        assert ("doc.verify_file", "verifier@example.org") in events
        assert all(e.request_id for e in s.query(AuditEvent).all())


def test_batch_status_unknown_run_is_404(client):
    r = client.get("/api/documents/batch/999")
    assert r.status_code == 404
    assert r.json["error"] == "not_found"
    r = client.post("/api/documents/batch/999/cancel")
    assert r.status_code == 404


def test_cancel_finished_batch_is_conflict(client):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("AB1234_Transcript.pdf", b"t")
    r = client.post(
        "/api/documents/batch/issue",
        data={"archive": (io.BytesIO(buf.getvalue()), "one.zip")},
        content_type="multipart/form-data",
    )
    batch_id = r.json["batchID"]
    client.application.extensions["docledger.batch_runner"].join(batch_id, timeout=30)

    r = client.post(f"/api/documents/batch/{batch_id}/cancel")
    assert r.status_code == 409
    assert r.json["cancelRequested"] is False


def test_issue_stores_blob_under_canonical_name(client, monkeypatch):
    store = client.application.extensions["docledger.blob_store"]
    names = []
    original_put = type(store).put

    def _put(self, data, *, filename=None, content_type=None):
        names.append(filename)
        return original_put(self, data, filename=filename, content_type=content_type)

    monkeypatch.setattr(type(store), "put", _put)
    r = client.post(
        "/api/documents/issue",
        data={"document": (io.BytesIO(PDF), "scan-0042.PDF"), "ownerID": "AB1234", "documentType": "Transcript"},
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    r = client.post(
        "/api/documents/issue",
        data={"document": (io.BytesIO(b"no extension"), "upload"), "ownerID": "AB1234", "documentType": "Transcript"},
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    assert names == ["AB1234_Transcript.pdf", "AB1234_Transcript.bin"]


def test_unconfirmed_write_error_carries_transaction_id(client, monkeypatch):
    from app.docledger.errors import ConfirmationTimeoutError

    ledger = client.application.extensions["docledger.ledger"]

    def _timeout(owner_id, content_hash):
        raise ConfirmationTimeoutError("not mined within 120s", transaction_id="0xfeed")

    monkeypatch.setattr(ledger, "store_document", _timeout)
    r = _issue(client)
    assert r.status_code == 504
    assert r.json["error"] == "confirmation_timeout"
    assert r.json["retryable"] is False
    assert r.json["transactionID"] == "0xfeed"
    assert client.get("/api/documents/AB1234").json["documents"] == []
