"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Optional, List
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.history import DocumentReference, HistoryEntry
from app.services.status_catalog import StatusMetadata


class CamelSchema(BaseModel):
    """Accepts and emits camelCase keys, like the stored documents."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Application schemas
class DocumentIn(CamelSchema):
    type: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    original_name: Optional[str] = None
    size: Optional[int] = None
    content_type: Optional[str] = None
    storage_path: Optional[str] = None


class ApplicationCreate(CamelSchema):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3)
    destination_id: str = Field(..., min_length=1)
    destination_name: str = Field(..., min_length=1)
    visa_type: str = Field(..., min_length=1)
    documents: List[DocumentIn] = Field(..., min_length=1)


class DestinationResponse(CamelSchema):
    id: str
    name: str


class ApplicationResponse(CamelSchema):
    id: str
    user_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    destination: Optional[DestinationResponse] = None
    visa_type: Optional[str] = None
    current_status: str
    status_history: List[HistoryEntry]
    documents: List[DocumentReference]
    outstanding_documents: List[str] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Status update schemas
class AttachmentIn(CamelSchema):
    filename: str = Field(..., min_length=1)
    data: str = Field(..., min_length=1)  # base64, optionally as a data URL
    content_type: Optional[str] = None
    document_type: Optional[str] = None


class StatusUpdate(CamelSchema):
    status: str = Field(..., min_length=1)
    note: Optional[str] = Field(None, max_length=2000)
    tentative_date: Optional[datetime] = None
    required_documents: Optional[List[str]] = None
    # Older clients send the file as "offerLetter"
    attachment: Optional[AttachmentIn] = Field(
        None, validation_alias=AliasChoices("attachment", "offerLetter")
    )


# Catalog
class StatusInfo(CamelSchema):
    status: str
    step: int
    default_message: str
    default_offset_days: int

    @classmethod
    def from_metadata(cls, meta: StatusMetadata) -> "StatusInfo":
        return cls(**meta._asdict())


# Error response
class ErrorResponse(BaseModel):
    """Response when a request is refused."""
    message: str
    step: Optional[str] = None
    retryable: bool = False
