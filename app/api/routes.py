"""API routes for application intake and status tracking."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List

from app.database import get_db
from app.api.dependencies import (
    STAFF_ROLES,
    get_current_caller,
    get_processor,
    require_roles,
)
from app.models.application import Application
from app.models.audit import AuditEvent, AuditEventType
from app.models.enums import UserRole
from app.models.history import DocumentReference
from app.services import status_catalog
from app.services.auth import Caller
from app.services.document_store import DocumentStore
from app.services.errors import (
    ApplicationNotFoundError,
    InvalidStatusError,
    StoreError,
    StoreWriteConflictError,
    TransitionError,
    UploadFailedError,
)
from app.services.storage import decode_data_url
from app.services.timeline import ProgressStep, TimelineGroup, progress, reconstruct_timeline
from app.services.transition_processor import (
    Attachment,
    TransitionOptions,
    TransitionProcessor,
    outstanding_documents,
)
from app.api.schemas import (
    ApplicationCreate,
    ApplicationResponse,
    DocumentIn,
    ErrorResponse,
    StatusInfo,
    StatusUpdate,
)

router = APIRouter()

_ERROR_STATUS = {
    ApplicationNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidStatusError: status.HTTP_400_BAD_REQUEST,
    UploadFailedError: status.HTTP_502_BAD_GATEWAY,
    StoreWriteConflictError: status.HTTP_409_CONFLICT,
    StoreError: status.HTTP_503_SERVICE_UNAVAILABLE,
}

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid status or attachment"},
    404: {"model": ErrorResponse, "description": "Application not found"},
    409: {"model": ErrorResponse, "description": "Concurrent modification, retry"},
    502: {"model": ErrorResponse, "description": "Attachment could not be stored"},
    503: {"model": ErrorResponse, "description": "Document store unavailable"},
}


def _http_error(e: TransitionError) -> HTTPException:
    return HTTPException(
        status_code=_ERROR_STATUS.get(type(e), status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={"message": e.message, "step": e.step, "retryable": e.retryable},
    )


def _to_response(application: Application) -> ApplicationResponse:
    document = application.to_document()
    document["outstandingDocuments"] = outstanding_documents(application)
    return ApplicationResponse.model_validate(document)


def _load_visible(application_id: str, caller: Caller, db: Session) -> Application:
    """Load an application the caller may see: staff see all, applicants their own."""
    try:
        application = DocumentStore(db).get_aggregate(application_id)
    except TransitionError as e:
        raise _http_error(e)
    if caller.role not in STAFF_ROLES and application.user_id != caller.id:
        raise HTTPException(status_code=404, detail="Application not found")
    return application


# Catalog
@router.get("/statuses", response_model=List[StatusInfo])
def list_statuses():
    """The canonical status flow, in order."""
    return [StatusInfo.from_metadata(meta) for meta in status_catalog.statuses()]


# Application endpoints
@router.post("/applications", response_model=ApplicationResponse, status_code=status.HTTP_201_CREATED)
def create_application(
    data: ApplicationCreate,
    caller: Caller = Depends(get_current_caller),
    processor: TransitionProcessor = Depends(get_processor),
):
    """Submit a new application. It starts in the first status of the flow."""
    try:
        application = processor.create_application(
            user_id=caller.id,
            name=data.name,
            email=data.email,
            destination={"id": data.destination_id, "name": data.destination_name},
            visa_type=data.visa_type,
            documents=[DocumentReference(**doc.model_dump()) for doc in data.documents],
        )
    except TransitionError as e:
        raise _http_error(e)
    return _to_response(application)


@router.get("/applications", response_model=List[ApplicationResponse])
def list_applications(
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    """Staff see every application; applicants see their own."""
    user_id = None if caller.role in STAFF_ROLES else caller.id
    try:
        applications = DocumentStore(db).list_aggregates(user_id=user_id)
    except TransitionError as e:
        raise _http_error(e)
    return [_to_response(a) for a in applications]


@router.get("/applications/{application_id}", response_model=ApplicationResponse)
def get_application(
    application_id: str,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    return _to_response(_load_visible(application_id, caller, db))


@router.post(
    "/applications/{application_id}/update-status",
    response_model=ApplicationResponse,
    responses=_ERROR_RESPONSES,
)
def update_status(
    application_id: str,
    data: StatusUpdate,
    caller: Caller = Depends(require_roles(*STAFF_ROLES)),
    processor: TransitionProcessor = Depends(get_processor),
):
    """
    Move an application to a new status.

    Appends one entry to the status history. An attachment, if sent, is
    stored first; if storing it fails nothing is recorded.
    """
    attachment = None
    if data.attachment is not None:
        try:
            content, declared_type = decode_data_url(data.attachment.data)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        attachment = Attachment(
            data=content,
            filename=data.attachment.filename,
            content_type=data.attachment.content_type or declared_type,
            document_type=data.attachment.document_type,
        )

    options = TransitionOptions(
        note=data.note,
        tentative_date=data.tentative_date,
        required_documents=data.required_documents,
        attachment=attachment,
    )
    try:
        application = processor.apply_transition(
            application_id, data.status, options, actor_id=caller.id
        )
    except TransitionError as e:
        raise _http_error(e)
    return _to_response(application)


@router.post(
    "/applications/{application_id}/documents",
    response_model=ApplicationResponse,
    responses=_ERROR_RESPONSES,
)
def add_document(
    application_id: str,
    data: DocumentIn,
    caller: Caller = Depends(get_current_caller),
    processor: TransitionProcessor = Depends(get_processor),
    db: Session = Depends(get_db),
):
    """
    Record a document the applicant uploaded.
    Side effect: may move the application on once all requested documents are in.
    """
    _load_visible(application_id, caller, db)
    try:
        application = processor.add_document(
            application_id, DocumentReference(**data.model_dump()), actor_id=caller.id
        )
    except TransitionError as e:
        raise _http_error(e)
    return _to_response(application)


@router.get("/applications/{application_id}/timeline", response_model=List[TimelineGroup])
def get_timeline(
    application_id: str,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    """Status history grouped by status, most advanced stage first."""
    application = _load_visible(application_id, caller, db)
    return reconstruct_timeline(application.status_history)


@router.get("/applications/{application_id}/progress", response_model=List[ProgressStep])
def get_progress(
    application_id: str,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    """Each stage of the flow with its state and an informational estimate."""
    return progress(_load_visible(application_id, caller, db))


@router.delete("/applications/{application_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_application(
    application_id: str,
    caller: Caller = Depends(require_roles(UserRole.ADMIN)),
    db: Session = Depends(get_db),
):
    """Administrative removal of an application."""
    event = AuditEvent.for_application(AuditEventType.APPLICATION_DELETED, application_id, caller.id)
    try:
        DocumentStore(db).delete_aggregate(application_id, events=[event])
    except TransitionError as e:
        raise _http_error(e)
