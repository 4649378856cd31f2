"""
Lead Lifecycle States
Every lead is either waiting to be sent or already sent.
Message presence is tracked separately on the lead row.
"""

from enum import Enum


class LeadStatus(str, Enum):
    UNSENT = "unsent"    # Extracted, message may or may not exist yet
    SENT = "sent"        # User opened the WhatsApp link


class LeadEvent(str, Enum):
    LEAD_CREATED = "LEAD_CREATED"
    MESSAGE_GENERATED = "MESSAGE_GENERATED"
    MARKED_SENT = "MARKED_SENT"


# Pseudo-state recorded as from_state on LEAD_CREATED
NO_STATE = "NONE"

# (current_status, event) -> next_status
TRANSITIONS = {
    (LeadStatus.UNSENT, LeadEvent.MESSAGE_GENERATED): LeadStatus.UNSENT,
    (LeadStatus.UNSENT, LeadEvent.MARKED_SENT): LeadStatus.SENT,
    # Marking twice is allowed and changes nothing
    (LeadStatus.SENT, LeadEvent.MARKED_SENT): LeadStatus.SENT,
}


def next_status(current: LeadStatus, event: LeadEvent) -> LeadStatus:
    """Look up a transition. Raises ValueError on an illegal move."""
    status = TRANSITIONS.get((current, event))
    if status is None:
        raise ValueError(f"Illegal transition: {current.value} + {event.value}")
    return status
