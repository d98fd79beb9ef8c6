from __future__ import annotations

from flask import Blueprint, current_app, request

from app.docledger.audit import record_event
from app.docledger.db import db_session
from app.docledger.errors import FormatError, NotFoundError
from app.docledger.modules.documents.batch import count_entries, open_batch_run, run_verify_batch, serialize_run
from app.docledger.modules.documents.ledger import LedgerClient
from app.docledger.modules.documents.models import BatchRun, DocumentRecord
from app.docledger.modules.documents.naming import EXTENSION_RE, base_name, build_file_name, validate_owner_id
from app.docledger.modules.documents.recorder import list_documents_for_owner, serialize_record
from app.docledger.modules.documents.runner import BatchRunner
from app.docledger.modules.documents.service import IssuanceService, verify_content, verify_file
from app.docledger.principals import kind_of, resolve

bp = Blueprint("documents", __name__)


def _issuance_service() -> IssuanceService:
    return current_app.extensions["docledger.issuance"]


def _ledger() -> LedgerClient:
    return current_app.extensions["docledger.ledger"]


def _batch_runner() -> BatchRunner:
    return current_app.extensions["docledger.batch_runner"]


def _actor() -> str | None:
    # Set by the upstream auth layer (gateway/proxy); informational only.
    return (request.headers.get("X-Actor") or "").strip() or None


def _require_upload(field: str) -> tuple[str, bytes, str]:
    f = request.files.get(field)
    if not f or not f.filename:
        raise FormatError(f"No file uploaded (expected multipart field {field!r}).")
    content_type = (f.mimetype or "application/octet-stream").strip()
    return f.filename, f.read(), content_type


def _canonical_name(owner_id: str, document_type: str, upload_name: str) -> str:
    # Stored under the naming convention so the blob can later go through verify-file as is.
    name = base_name(upload_name)
    ext = name.rsplit(".", 1)[-1] if "." in name else ""
    if not EXTENSION_RE.fullmatch(ext):
        ext = "bin"
    return build_file_name(owner_id, document_type, ext.lower())


@bp.post("/documents/issue")
def issue_document():
    file_name, data, content_type = _require_upload("document")
    owner_id = (request.form.get("ownerID") or "").strip()
    document_type = (request.form.get("documentType") or "").strip()
    claimed_hash = (request.form.get("contentHash") or "").strip() or None

    s = db_session()
    issuance = _issuance_service().issue(
        s,
        owner_id=owner_id,
        document_type=document_type,
        data=data,
        claimed_hash=claimed_hash,
        file_name=_canonical_name(owner_id, document_type, file_name),
        content_type=content_type,
        actor=_actor(),
    )
    return {
        "message": "Document uploaded and stored successfully",
        "transactionID": issuance.transaction_id,
        "locator": issuance.locator,
        "record": serialize_record(s.get(DocumentRecord, issuance.record_id)),
        "issuance": issuance.to_dict(),
    }, 201


@bp.post("/documents/verify")
def verify_document():
    _, data, _ = _require_upload("document")
    claimed_hash = (request.form.get("contentHash") or "").strip() or None
    s = db_session()
    check = verify_content(s, data, claimed_hash)
    current_app.logger.info("Verify: hash=%s valid=%s", check.content_hash, check.is_valid)
    record_event(
        s,
        actor=_actor(),
        action="doc.verify",
        entity_type="DocumentRecord",
        metadata={"content_hash": check.content_hash, "is_valid": check.is_valid},
    )
    s.commit()
    return check.to_dict(), 200


@bp.post("/documents/verify-file")
def verify_named_document():
    file_name, data, _ = _require_upload("document")
    s = db_session()
    result = verify_file(s, file_name, data)
    record_event(
        s,
        actor=_actor(),
        action="doc.verify_file",
        entity_type="DocumentRecord",
        entity_id=str(result.matched_record.id) if result.matched_record else None,
        metadata={"owner_id": result.owner_id, "content_hash": result.content_hash, "matched": result.matched},
    )
    s.commit()
    return result.to_dict(), 200


@bp.get("/documents/<owner_id>")
def lookup_documents(owner_id: str):
    validate_owner_id(owner_id)
    records = list_documents_for_owner(db_session(), owner_id)
    return {"ownerID": owner_id, "documents": [serialize_record(r) for r in records]}, 200


@bp.post("/documents/batch/issue")
def batch_issue():
    archive_name, data, _ = _require_upload("archive")
    total = count_entries(data)
    actor = _actor()
    run = open_batch_run(db_session(), mode="issue", archive_name=archive_name, actor=actor, total=total)
    _batch_runner().submit(run.id, data, actor=actor)
    current_app.logger.info("Batch issue accepted: run=%s archive=%s entries=%s", run.id, archive_name, total)
    return {"batchID": run.id, "status": run.status, "total": total}, 202


@bp.get("/documents/batch/<int:run_id>")
def batch_status(run_id: int):
    run = db_session().get(BatchRun, run_id)
    if run is None:
        raise NotFoundError(f"No batch run {run_id}")
    return serialize_run(run), 200


@bp.post("/documents/batch/<int:run_id>/cancel")
def batch_cancel(run_id: int):
    run = db_session().get(BatchRun, run_id)
    if run is None:
        raise NotFoundError(f"No batch run {run_id}")
    accepted = _batch_runner().cancel(run_id)
    return {"batchID": run_id, "cancelRequested": accepted}, 202 if accepted else 409


@bp.post("/documents/batch/verify")
def batch_verify():
    archive_name, data, _ = _require_upload("archive")
    outcome = run_verify_batch(db_session(), data, archive_name=archive_name, actor=_actor())
    return outcome.to_dict(), 200


@bp.get("/ledger")
def ledger_lookup():
    content_hash = (request.args.get("hash") or "").strip()
    if not content_hash:
        raise FormatError("Query parameter 'hash' is required.")
    return {"hash": content_hash, "anchored": _ledger().verify_document(content_hash)}, 200


@bp.get("/principals/<int:principal_id>")
def principal_role(principal_id: int):
    p = resolve(db_session(), principal_id)
    if p is None:
        return {"error": "not_found", "message": "Principal not found"}, 404
    return {"id": p.id, "kind": kind_of(p).value, "role": p.role}, 200
