"""The visa application aggregate as the lifecycle engine sees it."""
from datetime import datetime
from typing import Optional, Tuple

from pydantic import ConfigDict, field_validator

from app.models.history import CamelModel, DocumentReference, HistoryLog, parse_timestamp


class Destination(CamelModel):
    id: str
    name: str


class Application(CamelModel):
    """
    Aggregate root: one applicant's case record.

    Invariants:
    - current_status always equals the status of the last history entry
    - status_history only grows
    - version increases with every successful write (optimistic locking)
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    current_status: str
    status_history: HistoryLog
    documents: Tuple[DocumentReference, ...] = ()
    user_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    destination: Optional[Destination] = None
    visa_type: Optional[str] = None
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("status_history", mode="before")
    @classmethod
    def _load_history(cls, value):
        if isinstance(value, HistoryLog):
            return value
        return HistoryLog.load(value)

    @field_validator("documents", mode="before")
    @classmethod
    def _load_documents(cls, value):
        return tuple(value or ())

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _parse_dates(cls, value):
        return parse_timestamp(value)

    def is_consistent(self) -> bool:
        """True when current_status mirrors the last history entry."""
        latest = self.status_history.latest
        return latest is not None and latest.status == self.current_status

    def to_document(self) -> dict:
        document = self.model_dump(
            mode="json", by_alias=True, exclude_none=True, exclude={"status_history"}
        )
        document["statusHistory"] = self.status_history.to_documents()
        return document
