"""
Extraction Pipeline
===================
Screenshots -> Gemini vision -> (phone, name) pairs -> new leads
One bad image never sinks the batch.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Optional

from wa_outreach.config import config
from wa_outreach.core.lead_states import LeadStatus
from wa_outreach.db.store import LeadStoreError
from wa_outreach.integrations.gemini import GeminiClient, GeminiError, image_part, text_part

logger = logging.getLogger(__name__)


class ExtractionInputError(ValueError):
    """The request cannot be processed at all (no key, no images)."""


EXTRACTION_PROMPT = (
    "Extract all phone numbers and associated names (if visible) from this image. "
    "Return ONLY a JSON array of objects with 'phone' and 'name' fields. "
    "Phone numbers should be in international format with country code if possible. "
    "If no name is visible, use null for the name field. "
    'Example format: [{"phone": "+1234567890", "name": "John Doe"}, '
    '{"phone": "+9876543210", "name": null}]'
)

DEFAULT_MIME_TYPE = "image/jpeg"


# ── Raw Contact Structure ─────────────────────────────────────────────────────

@dataclass
class RawContact:
    """A phone number as read off an image"""
    phone: str
    name: str | None = None
    source: str = "image"


@dataclass
class ExtractionResult:
    extracted_count: int
    images_total: int
    images_failed: int = 0

    @property
    def message(self) -> str:
        return f"Extracted {self.extracted_count} phone number(s) from {self.images_total} image(s)"


# ── Image Decoding ────────────────────────────────────────────────────────────

DATA_URI_REGEX = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[^,]*)?,(?P<data>.*)$", re.DOTALL)


def parse_data_uri(image: str) -> tuple[str, str]:
    """
    Split a data URI into (mime_type, base64 payload).
    A string without a comma is taken as bare base64.
    """
    if not isinstance(image, str):
        raise ValueError("image must be a string")

    image = image.strip()
    match = DATA_URI_REGEX.match(image)
    if match:
        mime_type = match.group("mime") or DEFAULT_MIME_TYPE
        data = match.group("data").strip()
    elif "," in image:
        mime_type, data = DEFAULT_MIME_TYPE, image.split(",", 1)[1].strip()
    else:
        mime_type, data = DEFAULT_MIME_TYPE, image

    if not data:
        raise ValueError("image has no payload")
    return mime_type, data


# ── Response Parsing ──────────────────────────────────────────────────────────

PHONE_REGEX = re.compile(
    r"\+?\(?[0-9]{1,4}\)?[-\s.]?\(?[0-9]{1,4}\)?[-\s.]?[0-9]{3,4}[-\s.]?[0-9]{3,4}"
)

_decoder = json.JSONDecoder()


def find_json_array(text: str) -> Optional[list]:
    """
    First substring of text that decodes as a JSON array of contact objects.
    An array holding no objects at all (footnote markers like [1]) is skipped.
    """
    start = text.find("[")
    while start != -1:
        try:
            value, _ = _decoder.raw_decode(text, start)
        except ValueError:
            value = None
        if isinstance(value, list) and (not value or any(isinstance(item, dict) for item in value)):
            return value
        start = text.find("[", start + 1)
    return None


def _clean_name(name) -> str | None:
    if isinstance(name, str) and name.strip():
        return name.strip()
    return None


def parse_contacts(text: str) -> list[RawContact]:
    """
    Turn model output into contacts.
    Strict JSON first; if no array is found, scan for phone-shaped text.
    """
    text = text or ""
    items = find_json_array(text)

    if items is not None:
        contacts = []
        for item in items:
            if not isinstance(item, dict):
                continue
            phone = item.get("phone")
            if isinstance(phone, int) and not isinstance(phone, bool):
                phone = str(phone)
            if not isinstance(phone, str) or not phone.strip():
                continue
            contacts.append(RawContact(phone=phone.strip(), name=_clean_name(item.get("name"))))
        return contacts

    logger.warning("No JSON array in model output, falling back to pattern scan")
    return [
        RawContact(phone=match.strip(), source="regex_fallback")
        for match in PHONE_REGEX.findall(text)
    ]


# ── Pipeline ──────────────────────────────────────────────────────────────────

class ExtractionPipeline:
    """Full pipeline: decode → ask Gemini → parse → persist, per image"""

    def __init__(self, store, client, model: Optional[str] = None):
        self.store = store
        self.client = client
        self.model = model or config.GEMINI_EXTRACTION_MODEL

    async def run(self, images: list) -> ExtractionResult:
        if not images:
            raise ExtractionInputError("No images provided")

        logger.info("Processing %d image(s)", len(images))
        result = ExtractionResult(extracted_count=0, images_total=len(images))

        for index, image in enumerate(images):
            try:
                inserted = await self.process_image(index, image)
            except Exception:
                logger.exception("Error processing image %d", index)
                inserted = None
            if inserted is None:
                result.images_failed += 1
            else:
                result.extracted_count += inserted

        logger.info("Successfully extracted %d phone number(s)", result.extracted_count)
        return result

    async def process_image(self, index: int, image: str) -> Optional[int]:
        """Insert the contacts found in one image. None means the image was skipped."""
        try:
            mime_type, data = parse_data_uri(image)
        except ValueError as e:
            logger.error("Image %d skipped: %s", index, e)
            return None

        try:
            text = await self.client.generate(
                self.model, [text_part(EXTRACTION_PROMPT), image_part(data, mime_type)]
            )
        except GeminiError as e:
            logger.error("Gemini API error on image %d: %s", index, e)
            return None

        logger.debug("Gemini output for image %d: %s", index, text)
        contacts = parse_contacts(text)

        inserted = 0
        for contact in contacts:
            try:
                await self.store.insert(
                    phone=contact.phone,
                    name=contact.name,
                    status=LeadStatus.UNSENT.value,
                    payload={"source": contact.source, "image_index": index},
                )
            except (LeadStoreError, ValueError) as e:
                logger.error("Error inserting lead %s from image %d: %s", contact.phone, index, e)
                continue
            except Exception:
                logger.exception("Unexpected error inserting lead %s from image %d", contact.phone, index)
                continue
            inserted += 1

        return inserted


async def extract_numbers(images: list, api_key: str, store, client_factory=GeminiClient) -> ExtractionResult:
    """Validate the request, then run the pipeline with a per-request client"""
    if not api_key or not str(api_key).strip():
        raise ExtractionInputError("Gemini API key is required")
    if not images:
        raise ExtractionInputError("No images provided")

    async with client_factory(api_key) as client:
        return await ExtractionPipeline(store, client).run(images)
