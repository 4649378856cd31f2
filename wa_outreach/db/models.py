"""
Database Models
===============
Lead = current snapshot (contact, message, link, status)
LeadEvent = immutable history (audit log)
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, Text, Uuid
from sqlalchemy.orm import DeclarativeBase, relationship

from wa_outreach.core.lead_states import LeadStatus


def utcnow():
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Lead(Base):
    """
    One phone number pulled from a screenshot.
    message and wa_link are written together, or not at all.
    """
    __tablename__ = "leads"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Contact
    phone = Column(String(64), nullable=False)
    name = Column(String(255), nullable=True)

    # Outreach
    message = Column(Text, nullable=True)
    wa_link = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default=LeadStatus.UNSENT.value, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    events = relationship("LeadEvent", back_populates="lead", order_by="LeadEvent.occurred_at")


class LeadEvent(Base):
    """
    Append-only log of lead transitions.
    Never updated or deleted.
    """
    __tablename__ = "lead_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_id = Column(Uuid(as_uuid=True), ForeignKey("leads.id"), nullable=False, index=True)

    from_state = Column(String(16), nullable=False)
    event = Column(String(50), nullable=False)
    to_state = Column(String(16), nullable=False)

    # Source image, template, model...
    payload = Column(JSON, nullable=True)

    occurred_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    lead = relationship("Lead", back_populates="events")
