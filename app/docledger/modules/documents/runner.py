"""
Background execution of batch issuance.

Issuing an archive means one blocking ledger write per entry, which does not
fit inside a single HTTP request. The request opens a `running` BatchRun row
and hands the archive here; progress is written back to that row so clients
can poll it.
"""

from __future__ import annotations

import logging
import threading

from flask import Flask
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.docledger.modules.documents.batch import mark_run_failed, run_issue_batch
from app.docledger.modules.documents.models import BatchRun

logger = logging.getLogger(__name__)


class BatchRunner:
    def __init__(self, app: Flask) -> None:
        self.app = app
        self._lock = threading.Lock()
        self._threads: dict[int, threading.Thread] = {}
        self._cancels: dict[int, threading.Event] = {}

    def submit(self, run_id: int, archive: bytes, *, actor: str | None = None) -> None:
        cancel = threading.Event()
        t = threading.Thread(
            target=self._work,
            args=(run_id, archive, actor, cancel),
            name=f"batch-run-{run_id}",
            daemon=True,
        )
        with self._lock:
            self._threads[run_id] = t
            self._cancels[run_id] = cancel
        t.start()
        logger.info("Batch run %s started in background (%s bytes)", run_id, len(archive))

    def cancel(self, run_id: int) -> bool:
        """Ask a running batch to stop after its current entry. False if it is not running here."""
        with self._lock:
            cancel = self._cancels.get(run_id)
            t = self._threads.get(run_id)
        if cancel is None or t is None or not t.is_alive():
            return False
        cancel.set()
        return True

    def join(self, run_id: int | None = None, timeout: float | None = None) -> None:
        with self._lock:
            if run_id is None:
                threads = list(self._threads.values())
            else:
                threads = [t for t in (self._threads.get(run_id),) if t is not None]
        for t in threads:
            t.join(timeout)

    def _work(self, run_id: int, archive: bytes, actor: str | None, cancel: threading.Event) -> None:
        with self.app.app_context():
            s: Session = self.app.extensions["sqlalchemy_sessionmaker"]()
            try:
                run = s.get(BatchRun, run_id)
                if run is None:
                    logger.error("Batch run %s vanished before it started", run_id)
                    return

                def _progress(processed: int, total: int) -> None:
                    try:
                        run.processed = processed
                        run.total = total
                        s.commit()
                    except SQLAlchemyError:
                        s.rollback()
                        logger.exception("Could not save progress for batch run %s", run_id)

                run_issue_batch(
                    s,
                    self.app.extensions["docledger.issuance"],
                    archive,
                    archive_name=run.archive_name,
                    actor=actor,
                    on_progress=_progress,
                    run=run,
                    cancel_event=cancel,
                )
            except Exception as e:
                logger.exception("Batch run %s aborted", run_id)
                s.rollback()
                mark_run_failed(s, run_id, str(e) or type(e).__name__)
            finally:
                s.close()
                with self._lock:
                    self._cancels.pop(run_id, None)
