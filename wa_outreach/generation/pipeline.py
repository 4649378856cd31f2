"""
Generation Pipeline
===================
Pending leads -> rendered template -> Gemini variation -> wa.me link
A lead is written at most once: only leads without a message are picked,
and the write itself only lands while the message is still empty.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from wa_outreach.config import config
from wa_outreach.db.store import LeadStoreError
from wa_outreach.generation.templates import get_builtin, render, variation_prompt
from wa_outreach.integrations.gemini import GeminiClient, GeminiError, text_part

logger = logging.getLogger(__name__)


class GenerationInputError(ValueError):
    """The request cannot be processed at all (no key, no template)."""


WA_BASE_URL = "https://wa.me/"

NON_DIGITS = re.compile(r"[^0-9]")
QUOTE_PAIRS = (('"', '"'), ("'", "'"), ("“", "”"))


@dataclass
class GenerationResult:
    updated_count: int
    pending_count: int
    failed_count: int = 0

    @property
    def message(self) -> str:
        if self.pending_count == 0:
            return "No leads to process"
        return f"Generated messages for {self.updated_count} lead(s)"


# ── Helpers ───────────────────────────────────────────────────────────────────

def build_wa_link(phone: str, message: str) -> str:
    """https://wa.me/<digits>?text=<percent-encoded message>"""
    digits = NON_DIGITS.sub("", phone or "")
    return f"{WA_BASE_URL}{digits}?text={quote(message, safe='')}"


def clean_variation(text: Optional[str]) -> str:
    """Strip whitespace and a single pair of wrapping quotes"""
    text = (text or "").strip()
    for left, right in QUOTE_PAIRS:
        if len(text) >= 2 and text.startswith(left) and text.endswith(right):
            text = text[1:-1].strip()
            break
    return text


def resolve_template(template_id: Optional[str], template_text: Optional[str]) -> str:
    if template_text and template_text.strip():
        return template_text
    builtin = get_builtin(template_id)
    if builtin is None:
        raise GenerationInputError("Message template is required")
    return builtin.text


# ── Pipeline ──────────────────────────────────────────────────────────────────

class GenerationPipeline:
    """Full pipeline: render → vary → link → persist, per lead"""

    def __init__(self, store, client, template_text: str, template_id: Optional[str] = None,
                 is_custom: bool = False):
        self.store = store
        self.client = client
        self.template_text = template_text
        self.template_id = template_id
        self.is_custom = is_custom
        self.model = config.GEMINI_CUSTOM_MODEL if is_custom else config.GEMINI_FAST_MODEL

    async def run(self) -> GenerationResult:
        leads = await self.store.find_pending()
        result = GenerationResult(updated_count=0, pending_count=len(leads))
        if not leads:
            logger.info("No leads to process")
            return result

        logger.info("Processing %d lead(s) with model %s", len(leads), self.model)

        for lead in leads:
            try:
                updated = await self.process_lead(lead)
            except Exception:
                logger.exception("Error processing lead %s", lead.id)
                updated = False
            if updated:
                result.updated_count += 1
            else:
                result.failed_count += 1

        logger.info("Successfully generated messages for %d lead(s)", result.updated_count)
        return result

    async def process_lead(self, lead) -> bool:
        base_message = render(self.template_text, lead.name)

        try:
            variation = await self.client.generate(
                self.model, [text_part(variation_prompt(base_message, self.is_custom))]
            )
        except GeminiError as e:
            logger.error("Gemini API error for lead %s: %s", lead.id, e)
            return False

        message = clean_variation(variation)
        fell_back = not message
        if fell_back:
            logger.warning("Empty variation for lead %s, using template text", lead.id)
            message = base_message

        wa_link = build_wa_link(lead.phone, message)

        try:
            saved = await self.store.save_message(
                lead.id,
                message=message,
                wa_link=wa_link,
                payload={"template_id": self.template_id, "model": self.model, "fallback": fell_back},
            )
        except LeadStoreError as e:
            logger.error("Error updating lead %s: %s", lead.id, e)
            return False

        if not saved:
            logger.warning("Lead %s already has a message, skipping", lead.id)
        return saved


async def generate_messages(api_key: str, store, template_id: Optional[str] = None,
                            template_text: Optional[str] = None, is_custom: bool = False,
                            client_factory=GeminiClient) -> GenerationResult:
    """Validate the request, then run the pipeline with a per-request client"""
    if not api_key or not str(api_key).strip():
        raise GenerationInputError("Gemini API key is required")
    template = resolve_template(template_id, template_text)

    async with client_factory(api_key) as client:
        pipeline = GenerationPipeline(store, client, template, template_id=template_id,
                                      is_custom=is_custom)
        return await pipeline.run()
