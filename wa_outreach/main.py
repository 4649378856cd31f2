"""
WhatsApp Outreach Queue - API
=============================
FastAPI application: screenshot extraction, message generation,
and the lead queue behind them
"""

import csv
import io
import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from wa_outreach.config import config
from wa_outreach.core.lead_states import LeadStatus
from wa_outreach.db.database import async_session_factory
from wa_outreach.db.store import LeadStore
from wa_outreach.extraction.pipeline import extract_numbers
from wa_outreach.generation.pipeline import generate_messages
from wa_outreach.generation.templates import BUILTIN_TEMPLATES
from wa_outreach.integrations.gemini import GeminiClient

logger = logging.getLogger(__name__)

SERVICE_NAME = "WhatsApp Outreach Queue"
VERSION = "1.0.0"
PIPELINE_PATHS = {"/extract-numbers", "/generate-messages"}


def setup_logging(level: Optional[str] = None):
    logging.basicConfig(
        level=getattr(logging, level or config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # httpx logs request URLs, which carry the API key
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


setup_logging()


app = FastAPI(
    title=SERVICE_NAME,
    description="Turns screenshots of phone numbers into personalized WhatsApp links",
    version=VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Dependencies ──────────────────────────────────────────────────────────────

def get_store() -> LeadStore:
    return LeadStore(async_session_factory)


def get_client_factory():
    return GeminiClient


# ── Request Models ────────────────────────────────────────────────────────────

class ExtractRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    images: list[str] = Field(default_factory=list)
    api_key: Optional[str] = Field(default=None, alias="apiKey")


class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_key: Optional[str] = Field(default=None, alias="apiKey")
    template_id: Optional[str] = Field(default=None, alias="templateId")
    template_text: Optional[str] = Field(default=None, alias="templateText")
    is_custom: bool = Field(default=False, alias="isCustom")


def failure(error: str, status_code: int = 500) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    if request.url.path in PIPELINE_PATHS:
        return failure("Invalid request body")
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(exc.errors())})


def serialize_lead(lead) -> dict:
    return {
        "id": str(lead.id),
        "phone": lead.phone,
        "name": lead.name,
        "message": lead.message,
        "wa_link": lead.wa_link,
        "status": lead.status,
        "created_at": lead.created_at.isoformat() if lead.created_at else None,
    }


# ── Endpoints ─────────────────────────────────────────────────────────────────

@app.get("/")
async def root():
    return {
        "service": SERVICE_NAME,
        "version": VERSION,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "healthy"}


@app.post("/extract-numbers")
async def extract_numbers_endpoint(
    body: ExtractRequest,
    store: LeadStore = Depends(get_store),
    client_factory=Depends(get_client_factory),
):
    """
    Read phone numbers (and names) off a batch of screenshots.
    Every number found becomes a new unsent lead.
    """
    try:
        result = await extract_numbers(body.images, body.api_key, store, client_factory)
    except Exception as e:
        logger.exception("Error in extract-numbers")
        return failure(str(e) or "Unknown error occurred")

    return {
        "success": True,
        "extractedCount": result.extracted_count,
        "message": result.message,
    }


@app.post("/generate-messages")
async def generate_messages_endpoint(
    body: GenerateRequest,
    store: LeadStore = Depends(get_store),
    client_factory=Depends(get_client_factory),
):
    """
    Write a message and wa.me link for every lead that has none yet.
    Leads that already have a message are left alone.
    """
    try:
        result = await generate_messages(
            body.api_key,
            store,
            template_id=body.template_id,
            template_text=body.template_text,
            is_custom=body.is_custom,
            client_factory=client_factory,
        )
    except Exception as e:
        logger.exception("Error in generate-messages")
        return failure(str(e) or "Unknown error occurred")

    return {
        "success": True,
        "updatedCount": result.updated_count,
        "message": result.message,
    }


@app.get("/templates")
async def list_templates():
    """Built-in templates clients can pick instead of writing their own"""
    return {
        "templates": [
            {"id": t.id, "name": t.name, "text": t.text}
            for t in BUILTIN_TEMPLATES.values()
        ]
    }


def _status_filter(status: Optional[str]) -> Optional[str]:
    if not status or status == "all":
        return None
    try:
        return LeadStatus(status).value
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")


@app.get("/leads")
async def list_leads(
    status: Optional[str] = None,
    search: Optional[str] = None,
    store: LeadStore = Depends(get_store),
):
    """List leads, newest first, with optional status filter and search"""
    leads = await store.list_all(status=_status_filter(status), search=search)
    return {
        "count": len(leads),
        "leads": [serialize_lead(lead) for lead in leads],
    }


@app.get("/leads/stats")
async def lead_stats(store: LeadStore = Depends(get_store)):
    return await store.stats()


@app.get("/leads/export.csv")
async def export_leads(
    status: Optional[str] = None,
    search: Optional[str] = None,
    store: LeadStore = Depends(get_store),
):
    """Download leads as wa_urls.csv"""
    leads = await store.list_all(status=_status_filter(status), search=search)

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["Name", "Phone", "Message", "WhatsApp Link", "Status"])
    for lead in leads:
        writer.writerow([lead.name or "", lead.phone, lead.message or "", lead.wa_link or "", lead.status])

    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="wa_urls.csv"'},
    )


@app.get("/leads/{lead_id}")
async def get_lead(lead_id: str, store: LeadStore = Depends(get_store)):
    """Get a single lead"""
    lead = await store.get(lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    return serialize_lead(lead)


@app.get("/leads/{lead_id}/history")
async def get_lead_history(lead_id: str, store: LeadStore = Depends(get_store)):
    """Get full event history for a lead (audit trail)"""
    lead = await store.get(lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")

    events = await store.history(lead_id)
    return {
        "lead_id": lead_id,
        "current_state": lead.status,
        "event_count": len(events),
        "events": [
            {
                "from_state": e.from_state,
                "event": e.event,
                "to_state": e.to_state,
                "payload": e.payload,
                "occurred_at": e.occurred_at.isoformat(),
            }
            for e in events
        ]
    }


@app.post("/leads/{lead_id}/sent")
async def mark_lead_sent(lead_id: str, store: LeadStore = Depends(get_store)):
    """Mark a lead as sent once its WhatsApp link has been opened"""
    lead = await store.mark_sent(lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    return {"success": True, "lead": serialize_lead(lead)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
