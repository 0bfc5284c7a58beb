from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from uploadgate.persistence.db import get_session
from uploadgate.providers.storage.base import ObjectStore
from uploadgate.providers.storage.factory import get_object_store as build_object_store


ROLE_ORDER: dict[str, int] = {
    "viewer": 1,
    "staff": 2,
    "admin": 3,
}


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_object_store() -> ObjectStore:
    # Overridden in tests with the in-memory fake.
    return build_object_store()


class Principal(BaseModel):
    # Identity asserted by the upstream identity layer; this service does not authenticate staff.
    user_id: str
    org_id: str
    role: str


def normalize_role(role: str) -> str:
    normalized = role.strip().lower()
    if normalized not in ROLE_ORDER:
        raise ValueError(f"Unsupported role: {role}")
    return normalized


def role_allows(*, role: str, minimum_role: str) -> bool:
    return ROLE_ORDER.get(role, 0) >= ROLE_ORDER.get(minimum_role, 0)


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
    )


def _forbidden_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


async def get_current_principal(request: Request) -> Principal:
    org_id = (request.headers.get("X-Org-Id") or "").strip()
    user_id = (request.headers.get("X-User-Id") or "").strip()
    if not org_id or not user_id:
        raise _auth_error("X-Org-Id and X-User-Id headers are required")
    try:
        role = normalize_role(request.headers.get("X-Role", ""))
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "AUTH_INVALID_ROLE", "message": str(exc)},
        ) from exc
    return Principal(user_id=user_id, org_id=org_id, role=role)


def require_role(minimum_role: str):
    # Dependency factory to enforce RBAC at the route level.
    async def _dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not role_allows(role=principal.role, minimum_role=minimum_role):
            raise _forbidden_error("Insufficient role for this operation")
        return principal

    return _dependency
