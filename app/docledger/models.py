from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Principal(Base):
    """
    Anyone who can act on the system: an issuing/verifying organization, an
    individual document owner, or an administrator.

    Single-table inheritance: `kind` is the tag, so one primary-key lookup
    resolves to the right subclass.
    """

    __tablename__ = "principals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    # organization: "issuing-auth" | "verifying-auth"
    org_role: Mapped[str | None] = mapped_column(String(32), nullable=True)
    # individual: the owner identifier embedded in document filenames
    owner_id: Mapped[str | None] = mapped_column(String(6), nullable=True, unique=True)

    __mapper_args__ = {"polymorphic_on": "kind", "polymorphic_identity": "principal"}

    @property
    def role(self) -> str:
        raise NotImplementedError


class OrganizationPrincipal(Principal):
    __mapper_args__ = {"polymorphic_identity": "organization"}

    @property
    def role(self) -> str:
        return self.org_role or "issuing-auth"


class IndividualPrincipal(Principal):
    __mapper_args__ = {"polymorphic_identity": "individual"}

    @property
    def role(self) -> str:
        return "individual"


class AdminPrincipal(Principal):
    __mapper_args__ = {"polymorphic_identity": "admin"}

    @property
    def role(self) -> str:
        return "admin"


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Keep this table intentionally generic; module-specific tables can refer to it by id if needed.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Authentication lives outside this service; callers pass whatever identifies them.
    actor: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "doc.issue"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "DocumentRecord"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.docledger.modules.documents.models import BatchRun, DocumentRecord  # noqa: E402,F401
