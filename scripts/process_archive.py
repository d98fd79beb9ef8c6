#!/usr/bin/env python3
"""
Issue or verify every document in a zip archive from the command line.

Usage:
    python scripts/process_archive.py issue  path/to/archive.zip --actor registrar@example.org
    python scripts/process_archive.py verify path/to/archive.zip
    python scripts/process_archive.py hash   path/to/AB1234_Transcript.pdf

Entry names must follow the document naming convention (e.g. AB1234_Transcript.pdf).
Exit status is 1 when any entry failed. `hash` prints the content hash a file
would be anchored under, without touching the database or the ledger.
"""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _print_progress(processed: int, total: int) -> None:
    pct = round(processed * 100 / total) if total else 100
    print(f"[{processed}/{total}] {pct}%", flush=True)


def main() -> None:
    import argparse
    parser = argparse.ArgumentParser(description="Batch issue/verify documents from a zip archive")
    parser.add_argument("mode", choices=("issue", "verify", "hash"))
    parser.add_argument("archive", type=Path, help="Zip archive (issue/verify) or a single document (hash)")
    parser.add_argument("--actor", default=None, help="Recorded on audit events and the batch run")
    args = parser.parse_args()

    if not args.archive.is_file():
        print(f"ERROR: {args.archive} is not a file")
        sys.exit(1)

    from app.docledger.modules.documents.hashing import hash_file

    digest = hash_file(args.archive)
    if args.mode == "hash":
        print(digest)
        return
    print(f"Archive {args.archive.name} sha256={digest}", flush=True)

    from app.docledger import create_app
    app = create_app()

    with app.app_context():
        from app.docledger.db import db_session
        from app.docledger.modules.documents.batch import run_issue_batch, run_verify_batch

        s = db_session()
        if args.mode == "issue":
            outcome = run_issue_batch(
                s,
                app.extensions["docledger.issuance"],
                args.archive,
                archive_name=args.archive.name,
                actor=args.actor,
                on_progress=_print_progress,
            )
        else:
            outcome = run_verify_batch(
                s,
                args.archive,
                archive_name=args.archive.name,
                actor=args.actor,
                on_progress=_print_progress,
            )

    print(f"Succeeded: {len(outcome.succeeded)}")
    for o in outcome.succeeded:
        print(f"  OK   {o.file_name}: {o.message}")
    print(f"Failed: {len(outcome.failed)}")
    for o in outcome.failed:
        print(f"  FAIL {o.file_name}: {o.message}")

    if outcome.failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
