"""
Audit trail for application changes.

One row per change, written by the document store in the same commit as the
change itself. Rows are never updated or removed, and the trail is not served
by the API.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, String, Integer, DateTime, JSON

from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AuditEvent(Base):
    """
    Who changed which application, when, and a small summary of the change.

    Invariants:
    - Never edited or deleted once written
    - Outlives the application it refers to
    """
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    event_type = Column(String, nullable=False, index=True)  # AuditEventType value
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=True)  # None when the change was automatic
    created_at = Column(DateTime, nullable=False, default=_utcnow, index=True)
    payload_json = Column(JSON, nullable=True)

    @classmethod
    def for_application(
        cls,
        event_type: str,
        application_id: str,
        user_id: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> "AuditEvent":
        return cls(
            event_type=event_type,
            entity_type="VisaApplication",
            entity_id=application_id,
            user_id=user_id,
            payload_json=payload,
        )


class AuditEventType:
    """Kinds of change recorded in the audit trail."""
    APPLICATION_CREATED = "application_created"
    APPLICATION_DELETED = "application_deleted"
    STATUS_CHANGED = "status_changed"
    DOCUMENT_ADDED = "document_added"
