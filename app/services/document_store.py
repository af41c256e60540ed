"""
Document store - loads and saves whole application aggregates.

A transition reads the full aggregate, appends to the history it just read
and writes the full aggregate back. That is only safe if a write based on a
stale read is refused, so every UPDATE is guarded by the row's version_id
(SQLAlchemy optimistic locking). A refused write surfaces as
StoreWriteConflictError; any other database failure surfaces as StoreError,
after the session is rolled back.
"""
import logging
from typing import Iterable, List, Optional

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.models.application import Application
from app.models.audit import AuditEvent
from app.models.domain import VisaApplication
from app.services.errors import ApplicationNotFoundError, StoreError, StoreWriteConflictError

logger = logging.getLogger(__name__)


class DocumentStore:
    """Aggregate-level access to the visa_applications table."""

    def __init__(self, db: Session):
        self.db = db

    def get_aggregate(self, application_id: str) -> Application:
        try:
            row = (
                self.db.query(VisaApplication)
                .filter(VisaApplication.id == application_id)
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as exc:
            raise self._store_error(exc, application_id, step="load") from exc
        if row is None:
            raise ApplicationNotFoundError(application_id)
        return self._to_aggregate(row)

    def list_aggregates(self, user_id: Optional[str] = None) -> List[Application]:
        query = self.db.query(VisaApplication)
        if user_id is not None:
            query = query.filter(VisaApplication.user_id == user_id)
        try:
            rows = query.order_by(VisaApplication.created_at.desc()).all()
        except SQLAlchemyError as exc:
            raise self._store_error(exc, None, step="load") from exc
        return [self._to_aggregate(row) for row in rows]

    def add_aggregate(
        self, application: Application, events: Iterable[AuditEvent] = ()
    ) -> Application:
        row = VisaApplication(id=application.id)
        self._write_row(row, application)
        self.db.add(row)
        for event in events:
            self.db.add(event)
        self._commit(application.id)
        self.db.refresh(row)
        return self._to_aggregate(row)

    def put_aggregate(
        self, application: Application, events: Iterable[AuditEvent] = ()
    ) -> Application:
        """
        Write the aggregate back, provided nobody else wrote it since it was read.

        Raises:
            ApplicationNotFoundError: the row disappeared since it was read
            StoreWriteConflictError: the row's version moved on since it was read
            StoreError: the database refused or failed the write
        """
        try:
            row = self.db.get(VisaApplication, application.id)
        except SQLAlchemyError as exc:
            raise self._store_error(exc, application.id, step="load") from exc
        if row is None:
            raise ApplicationNotFoundError(application.id, step="persist")
        if row.version_id != application.version:
            self.db.rollback()
            raise StoreWriteConflictError(application.id)

        self._write_row(row, application)
        for event in events:
            self.db.add(event)
        self._commit(application.id)

        self.db.refresh(row)
        return self._to_aggregate(row)

    def delete_aggregate(self, application_id: str, events: Iterable[AuditEvent] = ()) -> None:
        try:
            row = self.db.get(VisaApplication, application_id)
        except SQLAlchemyError as exc:
            raise self._store_error(exc, application_id, step="load") from exc
        if row is None:
            raise ApplicationNotFoundError(application_id)
        self.db.delete(row)
        for event in events:
            self.db.add(event)
        self._commit(application_id)

    def _commit(self, application_id: str) -> None:
        try:
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            logger.warning("Stale write refused for application %s", application_id)
            raise StoreWriteConflictError(application_id) from exc
        except SQLAlchemyError as exc:
            raise self._store_error(exc, application_id, step="persist") from exc

    def _store_error(self, exc: SQLAlchemyError, application_id: Optional[str], step: str) -> StoreError:
        self.db.rollback()
        logger.error("Document store %s failed for application %s: %s", step, application_id, exc)
        # OperationalError covers lost connections and lock timeouts
        return StoreError(
            f"Document store {step} failed",
            application_id,
            step=step,
            retryable=isinstance(exc, OperationalError),
        )

    @staticmethod
    def _write_row(row: VisaApplication, application: Application) -> None:
        row.user_id = application.user_id
        row.name = application.name
        row.email = application.email
        row.destination = application.destination.to_document() if application.destination else None
        row.visa_type = application.visa_type
        row.current_status = application.current_status
        # New list objects so the JSON columns are flagged as changed
        row.status_history = application.status_history.to_raw()
        row.documents = [doc.to_document() for doc in application.documents]

    @staticmethod
    def _to_aggregate(row: VisaApplication) -> Application:
        return Application(
            id=row.id,
            user_id=row.user_id,
            name=row.name,
            email=row.email,
            destination=row.destination,
            visa_type=row.visa_type,
            current_status=row.current_status,
            status_history=row.status_history or [],
            documents=row.documents or [],
            version=row.version_id,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
