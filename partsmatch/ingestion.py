"""
Bulk text ingestion: turn a pasted parts list into part listings.

One chat-completion request is sent to an OpenAI-compatible endpoint with a
fixed extraction prompt. The reply must be a non-empty JSON array; anything
else aborts the whole run before a single row is written.
"""

import json
import logging
from typing import Any, Dict, List

import httpx
from sqlalchemy.orm import Session

from partsmatch.config import settings
from partsmatch.logging_utils import get_request_id
from partsmatch.storage import bulk_create_parts

logger = logging.getLogger(__name__)

CATEGORIES = (
    "electrical",
    "plumbing",
    "hvac",
    "structural",
    "roofing",
    "flooring",
    "doors",
    "windows",
    "other",
)

SYSTEM_PROMPT = (
    "You are an expert at extracting structured data from construction parts lists. "
    "Parse the text and return valid JSON only."
)

EXTRACTION_PROMPT = """Extract all parts from this text. For each part, identify:
- part_name (the name/model of the part)
- category (classify as: electrical, plumbing, hvac, structural, roofing, flooring, doors, windows, or other)
- condition (new, like-new, used-good, used-fair, or for-parts)
- price (numeric value only, extract from text if mentioned)
- description (any additional details)

Be flexible with text formats:
- Handle bullet points, numbered lists, comma-separated, or paragraph format
- Extract prices from various formats ($100, 100 USD, "one hundred dollars")
- Infer condition from context words like "brand new", "slightly used", etc.
- If multiple parts are on one line separated by commas or semicolons, split them

Return ONLY a JSON array in this exact format:
[{{"part_name": "string", "category": "string", "condition": "string", "price": number, "description": "string"}}]

Use defaults when fields aren't specified:
- condition: "used-good"
- description: ""
- price: 0

Text to parse:
{text}"""


class IngestionError(Exception):
    """
    Bulk ingestion failed; carries a single human-readable message.

    status_code is 502 when the AI endpoint is at fault and 422 when its
    answer held no usable parts.
    """

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


async def request_completion(text: str) -> str:
    """
    Send the extraction prompt and return the raw message content.

    Raises:
        IngestionError: missing API key, transport error or non-2xx reply
    """
    if not settings.LLM_API_KEY:
        raise IngestionError("LLM_API_KEY is not configured")

    body = {
        "model": settings.LLM_MODEL,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": EXTRACTION_PROMPT.format(text=text)},
        ],
        "temperature": 0.2,
    }
    headers = {"Authorization": f"Bearer {settings.LLM_API_KEY}"}
    request_id = get_request_id()
    if request_id:
        headers["X-Request-ID"] = request_id

    logger.info("Calling AI endpoint for text parsing")
    try:
        async with httpx.AsyncClient(timeout=settings.LLM_TIMEOUT_SECONDS) as client:
            response = await client.post(settings.LLM_API_URL, json=body, headers=headers)
    except httpx.HTTPError as e:
        logger.error(f"AI endpoint unreachable: {e}")
        raise IngestionError("AI service unavailable") from e

    if response.status_code >= 400:
        logger.error(f"AI API error: {response.status_code} {response.text[:500]}")
        raise IngestionError(f"AI API error: {response.status_code}")

    try:
        return response.json()["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise IngestionError("AI response had no message content") from e


def strip_code_fence(content: str) -> str:
    """Remove a surrounding ```json ... ``` or ``` ... ``` fence."""
    stripped = content.strip()
    if stripped.startswith("```json"):
        stripped = stripped[len("```json"):]
    elif stripped.startswith("```"):
        stripped = stripped[len("```"):]
    else:
        return stripped
    if stripped.rstrip().endswith("```"):
        stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def _to_price(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        price = float(value)
    except (TypeError, ValueError):
        return 0.0
    return price if price >= 0 else 0.0


def normalize_part(item: Dict[str, Any]) -> Dict[str, Any]:
    """Apply defaults and coerce one extracted item into a parts row."""
    category = str(item.get("category") or "other").strip().lower()
    if category not in CATEGORIES:
        category = "other"

    return {
        "part_name": str(item["part_name"]).strip(),
        "category": category,
        "condition": str(item.get("condition") or "used-good").strip(),
        "price": _to_price(item.get("price")),
        "description": str(item.get("description") or ""),
        "status": "available",
    }


def parse_parts(content: str) -> List[Dict[str, Any]]:
    """
    Parse the model reply into normalized part rows.

    Raises:
        IngestionError(422): not JSON, not an array, empty, or an item
        without a part name
    """
    try:
        parts = json.loads(strip_code_fence(content))
    except json.JSONDecodeError as e:
        logger.error(f"AI response is not valid JSON: {e}")
        raise IngestionError("No parts could be extracted from the text", status_code=422) from e

    if not isinstance(parts, list) or len(parts) == 0:
        raise IngestionError("No parts could be extracted from the text", status_code=422)

    rows = []
    for item in parts:
        if not isinstance(item, dict) or not str(item.get("part_name") or "").strip():
            raise IngestionError("AI response contained an invalid part entry", status_code=422)
        rows.append(normalize_part(item))

    logger.info(f"Parsed parts: {len(rows)}")
    return rows


async def ingest_parts_text(db: Session, user_id: str, text: str) -> list:
    """
    Extract parts from free-form text and insert them for user_id.

    Returns:
        The inserted Part rows

    Raises:
        IngestionError: extraction failed, nothing inserted
        StoreError: the bulk insert failed, nothing inserted
    """
    logger.info(f"Parsing text parts list for user: {user_id}")
    content = await request_completion(text)
    rows = parse_parts(content)
    return bulk_create_parts(db, user_id, rows)
