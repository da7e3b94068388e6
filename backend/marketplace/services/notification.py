"""Fire-and-forget notifications for lifecycle events.

Events are POSTed as JSON to ``settings.notification_webhook_url``; the
receiving service owns delivery (email, in-app, ...). Dispatch happens only
after the transition committed. Exceptions are caught and logged:
notifications never break the main flow.
"""

import logging

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential

from marketplace.core.config import settings

logger = logging.getLogger(__name__)

_TEMPLATES: dict[tuple[str, str], str] = {
    ("application", "APPLIED"): "New application #{entity_id} for your campaign.",
    ("application", "UNDER_REVIEW"): "Application #{entity_id} is under review.",
    ("application", "SHORTLISTED"): "Application #{entity_id} has been shortlisted.",
    ("application", "HIRED"): "Application #{entity_id}: you have been hired!",
    ("application", "REJECTED"): "Application #{entity_id} was not selected.",
    ("application", "WITHDRAWN"): "Application #{entity_id} was withdrawn by the creator.",
    ("contract", "PENDING_CREATOR_SIGNATURE"): "Contract #{entity_id} is waiting for your signature.",
    ("contract", "ACTIVE"): "Contract #{entity_id} has been signed and is now active.",
    ("contract", "COMPLETED"): "Contract #{entity_id} has been completed.",
    ("contract", "CANCELLED"): "Contract #{entity_id} has been cancelled.",
    ("milestone", "READY"): "Milestone #{entity_id} is ready for payment.",
    ("milestone", "PAID"): "Milestone #{entity_id} has been paid.",
    ("escrow", "PENDING_DEPOSIT"): "Escrow #{entity_id}: awaiting deposit.",
    ("escrow", "FUNDED"): "Escrow #{entity_id} has been funded.",
    ("escrow", "FULLY_RELEASED"): "Escrow #{entity_id}: all funds released.",
    ("escrow", "REFUNDED"): "Escrow #{entity_id} has been refunded.",
    ("escrow", "DISPUTED"): "Escrow #{entity_id} is under dispute.",
}


def render_message(entity_type: str, entity_id: int, status: str) -> str:
    template = _TEMPLATES.get(
        (entity_type, status), "{entity_type} #{entity_id} is now {status}."
    )
    return template.format(entity_type=entity_type.capitalize(), entity_id=entity_id, status=status)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)
async def _post_event(payload: dict) -> None:
    """POST one event to the notification webhook with retry."""
    async with httpx.AsyncClient(timeout=settings.notification_timeout_seconds) as client:
        resp = await client.post(settings.notification_webhook_url, json=payload)
        resp.raise_for_status()


async def notify_transition(
    *,
    entity_type: str,
    entity_id: int,
    old_status: str | None,
    new_status: str,
    recipient_ids: list[int],
    actor_id: int | None = None,
    details: dict | None = None,
) -> None:
    if not settings.notification_webhook_url:
        logger.debug("Notification webhook not configured, skipping %s/%s", entity_type, entity_id)
        return

    recipients = sorted({uid for uid in recipient_ids if uid is not None and uid != actor_id})
    if not recipients:
        return

    payload = {
        "event": f"{entity_type}.{new_status.lower()}",
        "entity_type": entity_type,
        "entity_id": entity_id,
        "old_status": old_status,
        "new_status": new_status,
        "actor_id": actor_id,
        "recipient_ids": recipients,
        "message": render_message(entity_type, entity_id, new_status),
        "details": details or {},
    }
    try:
        await _post_event(payload)
    except Exception:
        logger.exception(
            "Failed to dispatch notification for %s/%s -> %s",
            entity_type,
            entity_id,
            new_status,
        )
