"""Persistence model - one row per application, holding the whole aggregate."""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, JSON
from app.database import Base


class VisaApplication(Base):
    """
    Stored form of the application aggregate.

    The status history and documents live inside the row as JSON documents so
    that a transition is a single read-append-write of one row.

    Invariants enforced here:
    - version_id is checked on every UPDATE; a write based on a stale read
      fails instead of overwriting a concurrent transition
    """
    __tablename__ = "visa_applications"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, nullable=True, index=True)
    name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    destination = Column(JSON, nullable=True)  # {"id": ..., "name": ...}
    visa_type = Column(String, nullable=True)

    current_status = Column(String, nullable=False)
    status_history = Column(JSON, nullable=False, default=list)
    documents = Column(JSON, nullable=False, default=list)

    version_id = Column(Integer, nullable=False)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version_id}
