"""Enums for the tracker - these define the valid values for statuses and roles."""
from enum import Enum


class ApplicationStatus(str, Enum):
    """The four stages of the canonical visa flow. No other statuses are stored."""
    DOCUMENT_SUBMITTED = "Document Submitted"
    ADDITIONAL_DOCUMENTS_NEEDED = "Additional Documents Needed"
    ADDITIONAL_DOCUMENT_SUBMITTED = "Additional Document Submitted"
    VISA_APPROVED = "Visa Approved"


class UserRole(str, Enum):
    """Roles carried in the caller's token."""
    USER = "user"
    AGENT = "agent"
    EMPLOYEE = "employee"
    SALES = "sales"
    ADMIN = "admin"


class ProgressState(str, Enum):
    """Where a catalog step stands relative to an application's history."""
    COMPLETED = "completed"
    CURRENT = "current"
    PENDING = "pending"
