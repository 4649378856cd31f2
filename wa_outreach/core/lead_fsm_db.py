"""
Database-Backed Status FSM
==========================
Moves a lead's status inside an open session and logs the transition.
The caller owns the commit.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wa_outreach.core.lead_states import LeadStatus, LeadEvent, next_status
from wa_outreach.db.models import Lead as LeadModel, LeadEvent as EventModel


class LeadFSM:
    """
    Applies status events to leads stored in the database.
    Rows are locked while the transition is decided.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def apply_event(self, lead_id, event: LeadEvent, payload: dict = None):
        """
        Apply an event to a lead. Returns the updated lead, or None if it
        does not exist. Self-transitions are not logged.
        """
        result = await self.session.execute(
            select(LeadModel).where(LeadModel.id == lead_id).with_for_update()
        )
        lead = result.scalar_one_or_none()
        if lead is None:
            return None

        current = LeadStatus(lead.status)
        target = next_status(current, event)

        if target == current and event != LeadEvent.MESSAGE_GENERATED:
            return lead

        now = datetime.now(timezone.utc)
        self.session.add(EventModel(
            id=uuid.uuid4(),
            lead_id=lead.id,
            from_state=current.value,
            event=event.value,
            to_state=target.value,
            payload=payload or {},
            occurred_at=now,
        ))

        lead.status = target.value
        lead.updated_at = now
        return lead
