"""
Best-effort match notification dispatch.

Runs as a background task after the match insert has committed. Every
failure is logged and counted here; nothing is raised to the caller and
nothing is retried.
"""

import json
import logging
from typing import Any, Dict

import httpx

from partsmatch.config import settings
from partsmatch.metrics import record_notification_outcome
from partsmatch.utils import compute_hmac_signature

logger = logging.getLogger(__name__)


def build_match_notification(match, item_name: str, item_type: str) -> Dict[str, Any]:
    return {
        "matchId": match.id,
        "supplierId": match.supplier_id,
        "requesterId": match.requester_id,
        "itemName": item_name,
        "itemType": item_type,
    }


async def notify_match(payload: Dict[str, Any]) -> bool:
    """
    Deliver a match notification to the configured webhook.

    The JSON body is signed with HMAC-SHA256 in the X-Signature header.

    Returns:
        True if delivered, False if skipped or failed
    """
    match_id = payload.get("matchId")

    if not settings.NOTIFICATION_WEBHOOK_URL:
        logger.info(f"Notification webhook not configured, skipping match={match_id}")
        record_notification_outcome("skipped")
        return False

    body = json.dumps(payload).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "X-Signature": compute_hmac_signature(body, settings.NOTIFICATION_SECRET),
    }

    try:
        async with httpx.AsyncClient(timeout=settings.NOTIFICATION_TIMEOUT_SECONDS) as client:
            response = await client.post(settings.NOTIFICATION_WEBHOOK_URL, content=body, headers=headers)
            response.raise_for_status()
    except Exception as e:
        logger.error(f"Error sending notifications for match={match_id}: {e}")
        record_notification_outcome("failed")
        return False

    logger.info(f"Notifications sent successfully for match={match_id}")
    record_notification_outcome("sent")
    return True
