from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class OrgPredicateError(RuntimeError):
    # Surface staff queries that would run without an organization scope.
    message: str


def require_org_id(org_id: str | None) -> None:
    if not org_id:
        raise OrgPredicateError("Organization predicate required but org_id is missing")


def org_predicate(model, org_id: str) -> object:
    # Build org predicates through a single helper to guarantee guard coverage.
    require_org_id(org_id)
    return model.org_id == org_id
