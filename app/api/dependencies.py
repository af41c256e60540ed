"""FastAPI dependencies shared by the routes."""
from functools import lru_cache
from typing import Optional

from fastapi import Cookie, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.enums import UserRole
from app.services.auth import Caller, TokenVerifier, UnauthenticatedError
from app.services.document_store import DocumentStore
from app.services.storage import BinaryStorage, LocalFileStorage
from app.services.transition_processor import TransitionProcessor

# Roles allowed to move an application through its statuses
STAFF_ROLES = frozenset({UserRole.ADMIN, UserRole.EMPLOYEE, UserRole.SALES})


@lru_cache(maxsize=1)
def get_token_verifier() -> TokenVerifier:
    return TokenVerifier.from_config()


@lru_cache(maxsize=1)
def get_storage() -> BinaryStorage:
    return LocalFileStorage()


def get_processor(
    db: Session = Depends(get_db),
    storage: BinaryStorage = Depends(get_storage),
) -> TransitionProcessor:
    return TransitionProcessor(DocumentStore(db), storage)


def get_current_caller(
    authorization: Optional[str] = Header(None),
    token: Optional[str] = Cookie(None),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> Caller:
    """Resolve the caller from a Bearer header, falling back to the token cookie."""
    raw = token
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials:
            raw = credentials.strip()
    try:
        return verifier.resolve_caller(raw)
    except UnauthenticatedError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_roles(*roles: UserRole):
    """Dependency factory: the caller must hold one of ``roles``."""
    allowed = frozenset(roles)

    def check(caller: Caller = Depends(get_current_caller)) -> Caller:
        if caller.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role {caller.role.value!r} may not perform this action",
            )
        return caller

    return check
