"""
Token verification for callers of the API.

Secrets are rotated by keeping the previous ones trusted for a while: a token
is checked against the current secret first, then each previous secret in
order, and the first one that verifies wins.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, NamedTuple, Optional, Sequence

import jwt

from app import config
from app.models.enums import UserRole

logger = logging.getLogger(__name__)


class UnauthenticatedError(Exception):
    """The caller's token is missing, malformed, expired or untrusted."""

    def __init__(self, message: str = "Not authenticated"):
        self.message = message
        super().__init__(self.message)


class Caller(NamedTuple):
    id: str
    role: UserRole


class TokenVerifier:
    """Verifies JWTs against an ordered list of trusted secrets."""

    def __init__(self, secrets: Sequence[str], algorithms: Sequence[str] = ("HS256",)):
        if not secrets:
            raise ValueError("At least one secret is required")
        self.secrets: List[str] = list(secrets)
        self.algorithms = list(algorithms)

    @classmethod
    def from_config(cls) -> "TokenVerifier":
        return cls([config.JWT_SECRET, *config.JWT_PREVIOUS_SECRETS], [config.JWT_ALGORITHM])

    def verify(self, token: Optional[str]) -> dict:
        if not token:
            raise UnauthenticatedError("No token provided")

        last_error = None
        for index, secret in enumerate(self.secrets):
            try:
                payload = jwt.decode(token, secret, algorithms=self.algorithms)
            except jwt.InvalidTokenError as exc:
                last_error = exc
                continue
            if index > 0:
                logger.info("Token verified with previous secret #%d", index)
            return payload

        logger.debug("Token rejected by all %d secrets: %s", len(self.secrets), last_error)
        raise UnauthenticatedError(f"Invalid token: {last_error}")

    def resolve_caller(self, token: Optional[str]) -> Caller:
        payload = self.verify(token)
        caller_id = payload.get("id")
        try:
            role = UserRole(payload.get("role"))
        except ValueError:
            raise UnauthenticatedError("Token carries an unknown role") from None
        if not caller_id:
            raise UnauthenticatedError("Token carries no caller id")
        return Caller(id=str(caller_id), role=role)


def create_token(
    caller: Caller,
    email: Optional[str] = None,
    secret: Optional[str] = None,
    expires_in: Optional[timedelta] = None,
) -> str:
    """Sign a token for a caller with the current secret."""
    now = datetime.now(timezone.utc)
    payload = {
        "id": caller.id,
        "role": UserRole(caller.role).value,
        "iat": now,
        "exp": now + (expires_in or timedelta(days=config.JWT_EXPIRES_DAYS)),
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, secret or config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
