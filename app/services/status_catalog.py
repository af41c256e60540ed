"""
Status catalog - the single source of truth for valid statuses.

The catalog is built once at import time and never mutated. Adding a stage to
the flow means adding a member to ApplicationStatus and an entry here; nothing
else in the codebase spells out status names.
"""
from types import MappingProxyType
from typing import List, NamedTuple, Optional

from app.models.enums import ApplicationStatus


class StatusNotFoundError(KeyError):
    """Raised when a status is looked up that the catalog does not know."""

    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Unknown status: {status!r}")


class StatusMetadata(NamedTuple):
    status: str
    step: int
    default_message: str
    default_offset_days: int


_FLOW = (
    StatusMetadata(ApplicationStatus.DOCUMENT_SUBMITTED.value, 1,
                   "You have submitted the form.", 0),
    StatusMetadata(ApplicationStatus.ADDITIONAL_DOCUMENTS_NEEDED.value, 2,
                   "Additional documents needed.", 4),
    StatusMetadata(ApplicationStatus.ADDITIONAL_DOCUMENT_SUBMITTED.value, 3,
                   "Additional documents have been submitted.", 1),
    StatusMetadata(ApplicationStatus.VISA_APPROVED.value, 4,
                   "Your visa has been approved!", 0),
)

# Older records spell some statuses differently
_ALIASES = MappingProxyType({
    "Additional Documents Submitted": ApplicationStatus.ADDITIONAL_DOCUMENT_SUBMITTED.value,
})

_CATALOG = MappingProxyType({entry.status: entry for entry in _FLOW})


def _key(status) -> Optional[str]:
    if isinstance(status, ApplicationStatus):
        return status.value
    if isinstance(status, str):
        return status
    return None


def canonical(status) -> Optional[str]:
    """Resolve legacy spellings to the catalog name. Unknown values pass through."""
    key = _key(status)
    if key is None:
        return None
    return _ALIASES.get(key, key)


def is_valid_status(status) -> bool:
    key = _key(status)
    return key is not None and key in _CATALOG


def metadata_of(status) -> StatusMetadata:
    key = _key(status)
    if key is None or key not in _CATALOG:
        raise StatusNotFoundError(str(status))
    return _CATALOG[key]


def ordinal_of(status) -> int:
    """Position of the status in the canonical flow (1..N)."""
    return metadata_of(status).step


def statuses() -> List[StatusMetadata]:
    """All catalog entries in flow order."""
    return list(_FLOW)


def initial_status() -> str:
    return _FLOW[0].status


def status_message(status) -> str:
    """Applicant-facing message for a status, or the status text itself."""
    key = canonical(status)
    if key in _CATALOG:
        return _CATALOG[key].default_message
    return str(status)
