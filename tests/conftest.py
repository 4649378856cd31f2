"""Shared fixtures: an in-memory lead store and a scripted Gemini client."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from wa_outreach.core.lead_states import LeadStatus, LeadEvent, NO_STATE, next_status
from wa_outreach.db.models import Lead, LeadEvent as EventModel
from wa_outreach.db.store import LeadStoreError, UPDATABLE_FIELDS
from wa_outreach.integrations.gemini import GeminiError


class InMemoryLeadStore:
    """Dict-backed stand-in honoring the LeadStore contract."""

    def __init__(self):
        self.leads = {}
        self.events = []
        self.fail_insert_phones = set()
        self.fail_save_ids = set()
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _tick(self):
        self._clock += timedelta(seconds=1)
        return self._clock

    def _log(self, lead, from_state, event, to_state, payload=None):
        self.events.append(EventModel(
            id=uuid.uuid4(),
            lead_id=lead.id,
            from_state=from_state,
            event=event.value,
            to_state=to_state,
            payload=payload or {},
            occurred_at=self._tick(),
        ))

    def _find(self, lead_id):
        return self.leads.get(str(lead_id))

    async def list_all(self, status=None, search=None):
        leads = sorted(self.leads.values(), key=lambda l: l.created_at, reverse=True)
        if status:
            leads = [l for l in leads if l.status == status]
        if search:
            leads = [
                l for l in leads
                if search in l.phone or (l.name and search.lower() in l.name.lower())
            ]
        return leads

    async def get(self, lead_id):
        return self._find(lead_id)

    async def find_pending(self):
        pending = [
            l for l in self.leads.values()
            if l.message is None and l.status == LeadStatus.UNSENT.value
        ]
        return sorted(pending, key=lambda l: l.created_at)

    async def history(self, lead_id):
        return [e for e in self.events if str(e.lead_id) == str(lead_id)]

    async def stats(self):
        leads = list(self.leads.values())
        sent = sum(1 for l in leads if l.status == LeadStatus.SENT.value)
        return {
            "total": len(leads),
            "sent": sent,
            "unsent": len(leads) - sent,
            "with_message": sum(1 for l in leads if l.message is not None),
        }

    async def insert(self, phone, name=None, status=LeadStatus.UNSENT.value, payload=None):
        if phone in self.fail_insert_phones:
            raise LeadStoreError(f"insert failed for {phone}")
        now = self._tick()
        lead = Lead(
            id=uuid.uuid4(),
            phone=phone,
            name=name,
            message=None,
            wa_link=None,
            status=LeadStatus(status).value,
            created_at=now,
            updated_at=now,
        )
        self.leads[str(lead.id)] = lead
        self._log(lead, NO_STATE, LeadEvent.LEAD_CREATED, lead.status, payload)
        return lead

    async def update(self, lead_id, **fields):
        if set(fields) - UPDATABLE_FIELDS:
            raise ValueError("unknown fields")
        if ("message" in fields) != ("wa_link" in fields):
            raise ValueError("message and wa_link must be updated together")
        lead = self._find(lead_id)
        if lead is None:
            return False
        for key, value in fields.items():
            setattr(lead, key, value)
        return True

    async def save_message(self, lead_id, message, wa_link, payload=None):
        if str(lead_id) in self.fail_save_ids:
            raise LeadStoreError(f"update failed for {lead_id}")
        lead = self._find(lead_id)
        if lead is None or lead.message is not None or lead.status != LeadStatus.UNSENT.value:
            return False
        lead.message = message
        lead.wa_link = wa_link
        self._log(lead, lead.status, LeadEvent.MESSAGE_GENERATED, lead.status, payload)
        return True

    async def mark_sent(self, lead_id):
        lead = self._find(lead_id)
        if lead is None:
            return None
        current = LeadStatus(lead.status)
        target = next_status(current, LeadEvent.MARKED_SENT)
        if target != current:
            self._log(lead, current.value, LeadEvent.MARKED_SENT, target.value)
            lead.status = target.value
        return lead


class FakeGeminiClient:
    """Returns scripted replies in order; an Exception entry is raised."""

    def __init__(self, replies=None, default=""):
        self.replies = list(replies or [])
        self.default = default
        self.calls = []
        self.api_key = None
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.closed = True

    async def generate(self, model, parts):
        self.calls.append({"model": model, "parts": parts})
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        return reply


def upstream_error(status_code=500):
    return GeminiError(f"Gemini returned {status_code}: boom", status_code=status_code)


@pytest.fixture
def store():
    return InMemoryLeadStore()


@pytest.fixture
def gemini():
    return FakeGeminiClient()


@pytest.fixture
def client_factory(gemini):
    def factory(api_key):
        gemini.api_key = api_key
        return gemini
    return factory
