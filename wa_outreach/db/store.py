"""
Lead Store
==========
The only way the pipelines and the API touch the leads table.
Each call opens its own session, so work on one lead never
depends on work on another.
"""

import logging
import uuid as _uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update as sql_update, func, or_
from sqlalchemy.exc import SQLAlchemyError

from wa_outreach.core.lead_fsm_db import LeadFSM
from wa_outreach.core.lead_states import LeadStatus, LeadEvent, NO_STATE
from wa_outreach.db.models import Lead as LeadModel, LeadEvent as EventModel

logger = logging.getLogger(__name__)


class LeadStoreError(Exception):
    """A database operation failed."""


UPDATABLE_FIELDS = {"phone", "name", "message", "wa_link", "status"}


def _as_uuid(lead_id):
    if isinstance(lead_id, _uuid.UUID):
        return lead_id
    try:
        return _uuid.UUID(str(lead_id))
    except ValueError:
        return None


class LeadStore:
    """SQLAlchemy-backed store for Lead records"""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self):
        try:
            async with self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            raise LeadStoreError(str(e)) from e

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def list_all(self, status: Optional[str] = None, search: Optional[str] = None):
        """All leads, newest first, optionally filtered"""
        query = select(LeadModel).order_by(LeadModel.created_at.desc())

        if status:
            query = query.where(LeadModel.status == LeadStatus(status).value)

        if search:
            query = query.where(or_(
                LeadModel.phone.contains(search, autoescape=True),
                func.lower(LeadModel.name).contains(search.lower(), autoescape=True),
            ))

        async with self._session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get(self, lead_id):
        lead_uuid = _as_uuid(lead_id)
        if lead_uuid is None:
            return None
        async with self._session() as session:
            result = await session.execute(
                select(LeadModel).where(LeadModel.id == lead_uuid)
            )
            return result.scalar_one_or_none()

    async def find_pending(self):
        """Leads still waiting for a message: no message yet and not sent"""
        async with self._session() as session:
            result = await session.execute(
                select(LeadModel)
                .where(LeadModel.message.is_(None))
                .where(LeadModel.status == LeadStatus.UNSENT.value)
                .order_by(LeadModel.created_at)
            )
            return list(result.scalars().all())

    async def history(self, lead_id):
        lead_uuid = _as_uuid(lead_id)
        if lead_uuid is None:
            return []
        async with self._session() as session:
            result = await session.execute(
                select(EventModel)
                .where(EventModel.lead_id == lead_uuid)
                .order_by(EventModel.occurred_at)
            )
            return list(result.scalars().all())

    async def stats(self) -> dict:
        async with self._session() as session:
            rows = await session.execute(
                select(LeadModel.status, func.count()).group_by(LeadModel.status)
            )
            by_status = {status: count for status, count in rows.all()}
            with_message = await session.scalar(
                select(func.count()).select_from(LeadModel).where(LeadModel.message.is_not(None))
            )

        sent = by_status.get(LeadStatus.SENT.value, 0)
        unsent = by_status.get(LeadStatus.UNSENT.value, 0)
        return {
            "total": sent + unsent,
            "sent": sent,
            "unsent": unsent,
            "with_message": with_message or 0,
        }

    # ── Writes ────────────────────────────────────────────────────────────────

    async def insert(self, phone: str, name: Optional[str] = None,
                     status: str = LeadStatus.UNSENT.value, payload: dict = None):
        """Create a lead and its LEAD_CREATED event"""
        if not phone or not phone.strip():
            raise ValueError("phone is required")
        status = LeadStatus(status).value

        async with self._session() as session:
            lead = LeadModel(
                id=_uuid.uuid4(),
                phone=phone.strip(),
                name=name,
                status=status,
                created_at=datetime.now(timezone.utc),
            )
            session.add(lead)
            session.add(EventModel(
                id=_uuid.uuid4(),
                lead_id=lead.id,
                from_state=NO_STATE,
                event=LeadEvent.LEAD_CREATED.value,
                to_state=status,
                payload=payload or {},
                occurred_at=datetime.now(timezone.utc),
            ))
            await session.commit()
            return lead

    async def update(self, lead_id, **fields) -> bool:
        """Partial update. message and wa_link must travel together."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        if ("message" in fields) != ("wa_link" in fields):
            raise ValueError("message and wa_link must be updated together")
        if "status" in fields:
            fields["status"] = LeadStatus(fields["status"]).value

        lead_uuid = _as_uuid(lead_id)
        if lead_uuid is None or not fields:
            return False

        async with self._session() as session:
            result = await session.execute(
                sql_update(LeadModel)
                .where(LeadModel.id == lead_uuid)
                .values(**fields, updated_at=datetime.now(timezone.utc))
            )
            await session.commit()
            return result.rowcount > 0

    async def save_message(self, lead_id, message: str, wa_link: str, payload: dict = None) -> bool:
        """
        Write message + link only if the lead still has no message.
        Returns False when another run got there first.
        """
        lead_uuid = _as_uuid(lead_id)
        if lead_uuid is None:
            return False

        async with self._session() as session:
            result = await session.execute(
                sql_update(LeadModel)
                .where(LeadModel.id == lead_uuid)
                .where(LeadModel.message.is_(None))
                .where(LeadModel.status == LeadStatus.UNSENT.value)
                .values(message=message, wa_link=wa_link, updated_at=datetime.now(timezone.utc))
            )
            if result.rowcount == 0:
                await session.rollback()
                return False

            await LeadFSM(session).apply_event(lead_uuid, LeadEvent.MESSAGE_GENERATED, payload)
            await session.commit()
            return True

    async def mark_sent(self, lead_id):
        """Mark a lead sent. Safe to call any number of times."""
        lead_uuid = _as_uuid(lead_id)
        if lead_uuid is None:
            return None

        async with self._session() as session:
            lead = await LeadFSM(session).apply_event(lead_uuid, LeadEvent.MARKED_SENT)
            if lead is None:
                return None
            await session.commit()
            logger.info("Lead %s marked sent", lead_uuid)
            return lead
