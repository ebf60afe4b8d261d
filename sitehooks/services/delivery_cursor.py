import logging
from datetime import datetime, timezone

import sentry_sdk

from sitehooks.exceptions import CursorOrderError
from sitehooks.models.webhook import Webhook

logger = logging.getLogger(__name__)


def advance(webhook: Webhook, event_id: int, now: datetime | None = None) -> None:
    """Move the cursor forward after event_id got delivered."""
    current = webhook.sent_up_to_event_id
    if current is not None and event_id <= current:
        exc = CursorOrderError(
            f"Webhook {webhook.site_id}:{webhook.webhook_id} cursor at {current}, "
            f"cannot advance to {event_id}"
        )
        logger.error("%s", exc)
        sentry_sdk.capture_exception(exc)
        raise exc

    webhook.sent_up_to_event_id = event_id
    webhook.sent_up_to_when = now or datetime.now(timezone.utc)


def jump_to_now(webhook: Webhook, tip_event_id: int | None, now: datetime | None = None) -> int:
    """Skip everything up to the tip of the event log. Returns how many
    event ids got skipped."""
    current = webhook.sent_up_to_event_id
    target = max(current or 0, tip_event_id or 0)
    webhook.sent_up_to_event_id = target
    webhook.sent_up_to_when = now or datetime.now(timezone.utc)
    skipped = target - (current or 0) if current is not None else 0
    if skipped:
        logger.info(
            "Webhook %s:%s skipped events %d..%d",
            webhook.site_id, webhook.webhook_id, (current or 0) + 1, target,
        )
    return skipped
