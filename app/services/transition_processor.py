"""
Transition processor - the only code path that changes an application's status.

Every mutation is a read-append-write of the whole aggregate:
read the application, append one history entry to the history just read,
write the application back under an optimistic version check.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from app.models.application import Application
from app.models.audit import AuditEvent, AuditEventType
from app.models.enums import ApplicationStatus
from app.models.history import DocumentReference, HistoryEntry, default_note
from app.services import status_catalog
from app.services.document_store import DocumentStore
from app.services.errors import (
    InvalidStatusError,
    StoreWriteConflictError,
    UploadFailedError,
)
from app.services.storage import (
    BinaryStorage,
    StorageError,
    StoredObject,
    guess_content_type,
    storage_path,
)

logger = logging.getLogger(__name__)

INTAKE_NOTE = "Application submitted successfully"
ALL_DOCUMENTS_RECEIVED_NOTE = "All required documents have been uploaded"


class Attachment(BaseModel):
    """A file produced by a transition (e.g. an offer letter)."""
    data: bytes
    filename: str
    content_type: Optional[str] = None
    document_type: Optional[str] = None


class TransitionOptions(BaseModel):
    """Optional metadata for a transition. Every field defaults independently."""
    note: Optional[str] = None
    tentative_date: Optional[datetime] = None
    required_documents: Optional[List[str]] = None
    attachment: Optional[Attachment] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_required_documents(documents: Optional[Sequence[str]]) -> Optional[Tuple[str, ...]]:
    """Drop blank entries and trim the rest. An empty result is None."""
    cleaned = tuple(doc.strip() for doc in documents or () if doc and doc.strip())
    return cleaned or None


def build_entry(
    status: str,
    options: TransitionOptions,
    date: datetime,
    attached_document: Optional[DocumentReference] = None,
) -> HistoryEntry:
    """Create the history entry for a transition, applying the defaults."""
    note = (options.note or "").strip()
    return HistoryEntry(
        status=status,
        date=date,
        note=note or default_note(status),
        auto_note=not note,
        tentative_date=options.tentative_date,
        required_documents=normalize_required_documents(options.required_documents),
        attached_document=attached_document,
    )


def outstanding_documents(application: Application) -> List[str]:
    """
    Document types named by the latest request that listed any, and not yet uploaded.

    A later request without a list (a reminder) does not clear earlier ones.
    """
    request = application.status_history.latest_with_status(
        ApplicationStatus.ADDITIONAL_DOCUMENTS_NEEDED.value, with_documents=True
    )
    if request is None:
        return []
    uploaded = {doc.type for doc in application.documents}
    return [doc for doc in request.required_documents if doc not in uploaded]


class TransitionProcessor:
    """Applies status transitions and document uploads to applications."""

    # Automatic re-read-and-append attempts after a write conflict
    max_conflict_retries = 1

    def __init__(
        self,
        store: DocumentStore,
        storage: Optional[BinaryStorage] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.storage = storage
        self.clock = clock

    def create_application(
        self,
        user_id: Optional[str],
        name: str,
        email: str,
        destination: Optional[dict] = None,
        visa_type: Optional[str] = None,
        documents: Sequence = (),
    ) -> Application:
        """Intake: a new application seeded with the initial status."""
        now = self.clock()
        status = status_catalog.initial_status()
        seed = HistoryEntry(status=status, date=now, note=INTAKE_NOTE, auto_note=False)
        application = Application(
            id=uuid.uuid4().hex,
            user_id=user_id,
            name=name,
            email=email,
            destination=destination,
            visa_type=visa_type,
            current_status=status,
            status_history=[seed],
            documents=[self._stamp_upload_date(doc, now) for doc in documents],
        )
        created = self.store.add_aggregate(
            application,
            events=[self._audit(AuditEventType.APPLICATION_CREATED, application.id, user_id, {
                "status": status,
                "documents": len(application.documents),
            })],
        )
        logger.info("Application %s created in status %r", created.id, status)
        return created

    def apply_transition(
        self,
        application_id: str,
        status,
        options: Optional[TransitionOptions] = None,
        actor_id: Optional[str] = None,
    ) -> Application:
        """
        Move an application to a new status and record it in the history.

        Invariants:
        - Unknown statuses are refused before anything is read or written
        - Exactly one entry is appended per successful call; none on failure
        - current_status equals the appended entry's status afterwards
        - If the attachment cannot be stored, nothing is recorded

        Raises:
            InvalidStatusError, ApplicationNotFoundError, UploadFailedError,
            StoreWriteConflictError, StoreError
        """
        options = options or TransitionOptions()
        if not status_catalog.is_valid_status(status):
            raise InvalidStatusError(status, application_id)
        status = status_catalog.metadata_of(status).status

        application = self.store.get_aggregate(application_id)

        stored = None
        if options.attachment is not None:
            stored = self._upload(application_id, options.attachment)

        def append(current: Application):
            now = self._entry_date(current)
            attached = None
            documents = current.documents
            if stored is not None:
                attached = DocumentReference(
                    type=options.attachment.document_type or status,
                    url=stored.url,
                    original_name=options.attachment.filename,
                    size=stored.size,
                    content_type=stored.content_type,
                    upload_date=now,
                    storage_path=stored.path,
                )
                documents = documents + (attached,)
            entry = build_entry(status, options, now, attached)
            updated = self._with_entry(current, entry, documents=documents)
            event = self._audit(AuditEventType.STATUS_CHANGED, current.id, actor_id, {
                "from": current.current_status,
                "to": status,
                "history_length": len(updated.status_history),
                "attachment": stored.path if stored else None,
            })
            return updated, [event]

        try:
            result = self._commit(application, append)
        except Exception:
            if stored is not None:
                self._discard(stored)
            raise

        logger.info(
            "Application %s moved %r -> %r (%d entries)",
            application_id, application.current_status, status, len(result.status_history),
        )
        return result

    def add_document(
        self,
        application_id: str,
        document: DocumentReference,
        actor_id: Optional[str] = None,
    ) -> Application:
        """
        Record an uploaded applicant document.

        When the application is waiting on documents and the latest request is
        now satisfied, the application moves on to the next stage in the same
        write.
        """
        if not isinstance(document, DocumentReference):
            document = DocumentReference.model_validate(document)
        application = self.store.get_aggregate(application_id)

        def append(current: Application):
            now = self._entry_date(current)
            documents = current.documents + (self._stamp_upload_date(document, now),)
            updated = current.model_copy(update={"documents": documents})
            events = [self._audit(AuditEventType.DOCUMENT_ADDED, current.id, actor_id, {
                "type": document.type,
                "url": document.url,
            })]

            if self._documents_complete(updated):
                status = ApplicationStatus.ADDITIONAL_DOCUMENT_SUBMITTED.value
                entry = build_entry(status, TransitionOptions(note=ALL_DOCUMENTS_RECEIVED_NOTE), now)
                updated = self._with_entry(updated, entry, documents=documents)
                events.append(self._audit(AuditEventType.STATUS_CHANGED, current.id, actor_id, {
                    "from": current.current_status,
                    "to": status,
                    "history_length": len(updated.status_history),
                    "attachment": None,
                }))
            return updated, events

        result = self._commit(application, append)
        logger.info("Document %r added to application %s", document.type, application_id)
        return result

    def _commit(self, application: Application, mutate) -> Application:
        """
        Apply ``mutate`` to the aggregate and write it back.

        On a write conflict the aggregate is re-read and ``mutate`` applied to
        the fresh copy, at most max_conflict_retries times.
        """
        attempt = 0
        while True:
            updated, events = mutate(application)
            try:
                return self.store.put_aggregate(updated, events=events)
            except StoreWriteConflictError:
                attempt += 1
                if attempt > self.max_conflict_retries:
                    logger.error("Giving up on application %s after %d write conflicts",
                                 application.id, attempt)
                    raise
                logger.warning("Write conflict on application %s, re-reading and retrying",
                               application.id)
                application = self.store.get_aggregate(application.id)

    def _upload(self, application_id: str, attachment: Attachment) -> StoredObject:
        if self.storage is None:
            raise UploadFailedError("No binary storage configured", application_id)
        content_type = attachment.content_type or guess_content_type(attachment.filename)
        path = storage_path(application_id, attachment.filename)
        try:
            return self.storage.store(attachment.data, path, content_type)
        except StorageError as exc:
            logger.error("Upload of %s for application %s failed: %s",
                         attachment.filename, application_id, exc)
            raise UploadFailedError(f"Could not store {attachment.filename}: {exc}", application_id) from exc

    def _discard(self, stored: StoredObject) -> None:
        """Remove an uploaded file whose transition was not recorded."""
        try:
            self.storage.delete(stored.path)
        except StorageError as exc:
            logger.error("Could not remove orphaned upload %s: %s", stored.path, exc)

    def _entry_date(self, application: Application) -> datetime:
        # Entry dates never go backwards, even if the clock does
        now = self.clock()
        latest = application.status_history.latest
        if latest is not None and latest.date is not None and latest.date > now:
            return latest.date
        return now

    def _documents_complete(self, application: Application) -> bool:
        if application.current_status != ApplicationStatus.ADDITIONAL_DOCUMENTS_NEEDED.value:
            return False
        return not outstanding_documents(application)

    @staticmethod
    def _with_entry(application: Application, entry: HistoryEntry, documents) -> Application:
        return application.model_copy(update={
            "status_history": application.status_history.append(entry),
            "current_status": entry.status,
            "documents": documents,
        })

    @staticmethod
    def _stamp_upload_date(document, now: datetime) -> DocumentReference:
        if not isinstance(document, DocumentReference):
            document = DocumentReference.model_validate(document)
        if document.upload_date is None:
            document = document.model_copy(update={"upload_date": now})
        return document

    @staticmethod
    def _audit(event_type: str, application_id: str, user_id: Optional[str], payload: dict) -> AuditEvent:
        return AuditEvent.for_application(event_type, application_id, user_id, payload)
