import os
import sys
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.docledger.models import AdminPrincipal, Base, Principal


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the admin principal in an idempotent way.
    An existing principal with the admin email is left untouched, whatever its kind.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@docledger.local").strip().lower()
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///docledger.db").strip()

    # Direct engine/session so release can run this without building the app.
    with _session_scope(db_url) as s:
        existing = s.query(Principal).filter(Principal.email == admin_email).one_or_none()
        if existing is None:
            s.add(AdminPrincipal(email=admin_email, display_name="Administrator", is_active=True))
            print(f"Created admin principal: {admin_email}")
        elif existing.kind != "admin":
            print(f"WARNING: {admin_email} exists as a {existing.kind} principal; not promoting.")

    print("Initialized database (seed_only).")


def close_interrupted_batches(*, database_url: str | None = None) -> int:
    from app.docledger.modules.documents.batch import fail_interrupted_runs

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///docledger.db").strip()
    with _session_scope(db_url) as s:
        return fail_interrupted_runs(s)


def create_all(*, database_url: str | None = None) -> None:
    """Create tables directly from the models (local development; production uses alembic)."""
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///docledger.db").strip()
    engine = create_engine(db_url, future=True)
    Base.metadata.create_all(bind=engine)
    print(f"Created tables on {engine.url.render_as_string(hide_password=True)}")


def main() -> None:
    create_all(database_url=None)
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
