"""CRM contact data models.

Only the columns this service reads or writes are mapped. The tables are owned
by the CRM schema; the research queue moves contacts through
``pending -> processing -> completed`` (or ``failed`` after repeated errors).
"""
from datetime import datetime
from typing import Optional
from sqlalchemy import DateTime, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from de.hejtalent.crm.model.base import Base, str512, uuidpk, uuidstr


RESEARCH_STATUS_PENDING = "pending"
RESEARCH_STATUS_PROCESSING = "processing"
RESEARCH_STATUS_COMPLETED = "completed"
RESEARCH_STATUS_FAILED = "failed"


class CrmContact(Base):
    __tablename__ = "crm_contacts"

    id: Mapped[uuidpk]
    email: Mapped[Optional[str512]]
    first_name: Mapped[Optional[str512]]
    last_name: Mapped[Optional[str512]]
    # Owning recruiter; cleared when the user is deleted.
    user_id: Mapped[Optional[str]] = mapped_column(Uuid(as_uuid=False), nullable=True)
    research_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=RESEARCH_STATUS_PENDING
    )
    research_retry_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    research_last_attempt: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class CrmContactResearch(Base):
    """Research result for a contact; at most one row per contact."""
    __tablename__ = "crm_contact_research"

    id: Mapped[uuidpk]
    contact_id: Mapped[uuidstr] = mapped_column(unique=True)
    researched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
