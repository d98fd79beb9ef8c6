"""
Principal resolution.

Registration, login and session issuance are handled outside this service;
what lives here is the single lookup the pipeline needs: given an id, which
kind of principal is it.
"""

from __future__ import annotations

from enum import Enum

from sqlalchemy.orm import Session

from app.docledger.models import IndividualPrincipal, Principal


class PrincipalKind(str, Enum):
    ORGANIZATION = "organization"
    INDIVIDUAL = "individual"
    ADMIN = "admin"


def resolve(s: Session, principal_id: int) -> Principal | None:
    """Resolve any principal by id. The returned instance is already the tagged subclass."""
    p = s.get(Principal, principal_id)
    if p is None or not p.is_active:
        return None
    return p


def kind_of(p: Principal) -> PrincipalKind:
    return PrincipalKind(p.kind)


def resolve_owner(s: Session, owner_id: str) -> IndividualPrincipal | None:
    return (
        s.query(IndividualPrincipal)
        .filter(IndividualPrincipal.owner_id == owner_id, IndividualPrincipal.is_active.is_(True))
        .one_or_none()
    )
