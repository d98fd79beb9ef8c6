"""
Batch processing over a zip archive.

One entry at a time, in archive order. Each entry's failure is recorded and
the run moves on; only an unreadable archive fails the whole run.
"""

from __future__ import annotations

import io
import json
import logging
import threading
import time
import zipfile
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.docledger.audit import record_event
from app.docledger.errors import ArchiveError, StoreError
from app.docledger.modules.documents.models import BatchRun
from app.docledger.modules.documents.naming import base_name, parse_file_name
from app.docledger.modules.documents.service import IssuanceService, verify_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntryOutcome:
    file_name: str
    ok: bool
    message: str
    detail: dict[str, Any] | None = None

    def to_dict(self) -> dict:
        return {"fileName": self.file_name, "ok": self.ok, "message": self.message, "detail": self.detail}


@dataclass
class BatchOutcome:
    total: int = 0
    processed: int = 0
    succeeded: list[EntryOutcome] = field(default_factory=list)
    failed: list[EntryOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def percent(self) -> int:
        return round(self.processed * 100 / self.total) if self.total else 100

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "processed": self.processed,
            "succeeded": [o.to_dict() for o in self.succeeded],
            "failed": [o.to_dict() for o in self.failed],
            "cancelled": self.cancelled,
        }


# pipeline(file_name, data) -> (ok, message, detail)
EntryPipeline = Callable[[str, bytes], tuple[bool, str, dict[str, Any] | None]]
ProgressCallback = Callable[[int, int], None]


def _open_archive(archive: str | Path | bytes | BinaryIO) -> zipfile.ZipFile:
    try:
        if isinstance(archive, (bytes, bytearray)):
            return zipfile.ZipFile(io.BytesIO(archive))
        return zipfile.ZipFile(archive)
    except (zipfile.BadZipFile, OSError) as e:
        raise ArchiveError(f"Cannot open archive: {e}") from e


class BatchProcessor:
    def __init__(
        self,
        pipeline: EntryPipeline,
        *,
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.on_progress = on_progress
        self._cancel = cancel_event or threading.Event()

    def cancel(self) -> None:
        """Stop scheduling new entries. An entry already running finishes."""
        self._cancel.set()

    def run(self, archive: str | Path | bytes | BinaryIO) -> BatchOutcome:
        with _open_archive(archive) as zf:
            entries = [info for info in zf.infolist() if not info.is_dir()]
            outcome = BatchOutcome(total=len(entries))
            for info in entries:
                if self._cancel.is_set():
                    outcome.cancelled = True
                    logger.info("Batch cancelled after %s/%s entries", outcome.processed, outcome.total)
                    break
                self._process_entry(zf, info, outcome)
                outcome.processed += 1
                if self.on_progress:
                    self.on_progress(outcome.processed, outcome.total)
        return outcome

    def _process_entry(self, zf: zipfile.ZipFile, info: zipfile.ZipInfo, outcome: BatchOutcome) -> None:
        name = info.filename
        try:
            data = zf.read(info)
            ok, message, detail = self.pipeline(name, data)
        except Exception as e:
            logger.warning("Batch entry failed: %s: %s", name, e)
            outcome.failed.append(EntryOutcome(file_name=name, ok=False, message=str(e) or type(e).__name__))
            return
        entry = EntryOutcome(file_name=name, ok=ok, message=message, detail=detail)
        (outcome.succeeded if ok else outcome.failed).append(entry)


def issue_pipeline(s: Session, service: IssuanceService, *, actor: str | None = None) -> EntryPipeline:
    def _run(name: str, data: bytes) -> tuple[bool, str, dict[str, Any] | None]:
        parsed = parse_file_name(name)
        issuance = service.issue(
            s,
            owner_id=parsed.owner_id,
            document_type=parsed.document_type,
            data=data,
            file_name=base_name(name),
            actor=actor,
        )
        return True, "Document uploaded and stored successfully", issuance.to_dict()

    return _run


def verify_pipeline(s: Session) -> EntryPipeline:
    def _run(name: str, data: bytes) -> tuple[bool, str, dict[str, Any] | None]:
        result = verify_file(s, name, data)
        return result.matched, result.message, result.to_dict()

    return _run


def count_entries(archive: str | Path | bytes | BinaryIO) -> int:
    """Number of file entries; raises ArchiveError for anything that is not a readable zip."""
    with _open_archive(archive) as zf:
        return sum(1 for info in zf.infolist() if not info.is_dir())


def open_batch_run(
    s: Session,
    *,
    mode: str,
    archive_name: str | None,
    actor: str | None,
    total: int,
) -> BatchRun:
    """Persist a `running` row up front so progress can be polled while entries are processed."""
    run = BatchRun(mode=mode, status="running", archive_name=archive_name, actor=actor, total=total)
    try:
        s.add(run)
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        raise StoreError(f"Could not start batch run: {e}") from e
    return run


def _finish_run(
    s: Session,
    run: BatchRun | None,
    *,
    mode: str,
    outcome: BatchOutcome,
    archive_name: str | None,
    actor: str | None,
    duration: int,
) -> None:
    # Entries are already anchored and recorded; bookkeeping must not lose the outcome.
    try:
        if run is None:
            run = BatchRun(mode=mode, archive_name=archive_name, actor=actor)
            s.add(run)
        run.status = "cancelled" if outcome.cancelled else "completed"
        run.total = outcome.total
        run.processed = outcome.processed
        run.succeeded_count = len(outcome.succeeded)
        run.failed_count = len(outcome.failed)
        run.duration_seconds = duration
        run.message = "cancelled" if outcome.cancelled else None
        run.results_json = json.dumps(outcome.to_dict(), default=str)
        s.flush()
        record_event(
            s,
            actor=actor,
            action=f"batch.{mode}",
            entity_type="BatchRun",
            entity_id=str(run.id),
            metadata={
                "archive_name": archive_name,
                "total": outcome.total,
                "succeeded": len(outcome.succeeded),
                "failed": len(outcome.failed),
            },
        )
        s.commit()
    except SQLAlchemyError:
        s.rollback()
        logger.exception(
            "Could not record batch %s summary (archive=%s succeeded=%s failed=%s); returning outcome unrecorded",
            mode,
            archive_name,
            len(outcome.succeeded),
            len(outcome.failed),
        )


def _run_and_record(
    s: Session,
    *,
    mode: str,
    pipeline: EntryPipeline,
    archive: str | Path | bytes | BinaryIO,
    archive_name: str | None,
    actor: str | None,
    on_progress: ProgressCallback | None,
    run: BatchRun | None = None,
    cancel_event: threading.Event | None = None,
) -> BatchOutcome:
    start = time.time()
    outcome = BatchProcessor(pipeline, on_progress=on_progress, cancel_event=cancel_event).run(archive)
    duration = int(time.time() - start)

    _finish_run(
        s,
        run,
        mode=mode,
        outcome=outcome,
        archive_name=archive_name,
        actor=actor,
        duration=duration,
    )
    logger.info(
        "Batch %s done: archive=%s total=%s succeeded=%s failed=%s duration=%ss",
        mode,
        archive_name,
        outcome.total,
        len(outcome.succeeded),
        len(outcome.failed),
        duration,
    )
    return outcome


def run_issue_batch(
    s: Session,
    service: IssuanceService,
    archive: str | Path | bytes | BinaryIO,
    *,
    archive_name: str | None = None,
    actor: str | None = None,
    on_progress: ProgressCallback | None = None,
    run: BatchRun | None = None,
    cancel_event: threading.Event | None = None,
) -> BatchOutcome:
    return _run_and_record(
        s,
        mode="issue",
        pipeline=issue_pipeline(s, service, actor=actor),
        archive=archive,
        archive_name=archive_name,
        actor=actor,
        on_progress=on_progress,
        run=run,
        cancel_event=cancel_event,
    )


def run_verify_batch(
    s: Session,
    archive: str | Path | bytes | BinaryIO,
    *,
    archive_name: str | None = None,
    actor: str | None = None,
    on_progress: ProgressCallback | None = None,
) -> BatchOutcome:
    return _run_and_record(
        s,
        mode="verify",
        pipeline=verify_pipeline(s),
        archive=archive,
        archive_name=archive_name,
        actor=actor,
        on_progress=on_progress,
    )


def mark_run_failed(s: Session, run_id: int, message: str) -> None:
    try:
        run = s.get(BatchRun, run_id)
        if run is None:
            return
        run.status = "failed"
        run.message = message[:2000]
        s.commit()
    except SQLAlchemyError:
        s.rollback()
        logger.exception("Could not mark batch run %s failed", run_id)


def serialize_run(run: BatchRun) -> dict:
    return {
        "batchID": run.id,
        "mode": run.mode,
        "status": run.status,
        "archiveName": run.archive_name,
        "actor": run.actor,
        "total": run.total,
        "processed": run.processed,
        "succeededCount": run.succeeded_count,
        "failedCount": run.failed_count,
        "durationSeconds": run.duration_seconds,
        "ranAt": run.ran_at.isoformat() if run.ran_at else None,
        "message": run.message,
        "outcome": json.loads(run.results_json) if run.results_json else None,
    }


def fail_interrupted_runs(s: Session) -> int:
    """Mark runs left `running` by a stopped process as failed. Only safe while no worker is serving."""
    runs = s.query(BatchRun).filter(BatchRun.status == "running").all()
    for run in runs:
        run.status = "failed"
        run.message = f"interrupted after {run.processed}/{run.total} entries; re-run the remaining entries"
        logger.warning("Batch run %s was interrupted at %s/%s", run.id, run.processed, run.total)
    s.commit()
    return len(runs)
