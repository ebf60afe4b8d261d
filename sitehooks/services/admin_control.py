import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from sitehooks.exceptions import WebhookConfigError, WebhookConflictError
from sitehooks.models.webhook import Webhook
from sitehooks.services import delivery_cursor, event_source, webhook_registry
from sitehooks.services.retry_policy import unbreak

logger = logging.getLogger(__name__)


async def alter_webhook(
    db: AsyncSession,
    site_id: int,
    webhook_id: int,
    *,
    set_paused: bool | None = None,
    skip_to_now: bool = False,
    if_version: int | None = None,
) -> Webhook | None:
    """Start, pause, resume, start fresh or skip to now.

    set_paused=False on a never started webhook starts it at the current
    end of the event log, so old events are never sent. On a paused
    webhook it resumes from the cursor: events that happened while paused
    do get sent. skip_to_now jumps the cursor to the end of the log
    without changing enabled, and combined with set_paused=False it is
    "start fresh". skip_to_now alone on a never started webhook is a
    WebhookConfigError.

    Returns None if there's no such webhook.
    """
    webhook = await webhook_registry.get_webhook(db, site_id, webhook_id, for_update=True)
    if webhook is None:
        return None
    webhook_registry.check_version(webhook, if_version)

    if set_paused is False and not webhook.send_to_url:
        raise WebhookConfigError("Cannot start a webhook that has no URL")
    # Starting jumps to now anyway, and a cursor set here would make the
    # later first start resume from it instead.
    if skip_to_now and set_paused is not False and webhook.sent_up_to_event_id is None:
        raise WebhookConfigError("The webhook hasn't been started, nothing to skip")

    now = datetime.now(timezone.utc)
    is_first_start = set_paused is False and webhook.sent_up_to_event_id is None

    if skip_to_now or is_first_start:
        tip = await event_source.get_tip_event_id(db, site_id)
        delivery_cursor.jump_to_now(webhook, tip, now)

    if skip_to_now:
        unbreak(webhook)

    if set_paused is True:
        webhook.enabled = False
    elif set_paused is False:
        unbreak(webhook)
        webhook.enabled = True

    logger.info(
        "Site %s: webhook %s altered (set_paused=%s, skip_to_now=%s), now %s at event %s",
        site_id, webhook_id, set_paused, skip_to_now,
        webhook.state.value, webhook.sent_up_to_event_id,
    )
    await db.flush()
    await db.refresh(webhook)
    return webhook


async def retry_webhook_once(
    db: AsyncSession,
    site_id: int,
    webhook_id: int,
    if_version: int | None = None,
) -> Webhook | None:
    """Ask the dispatcher for exactly one extra, manual attempt."""
    webhook = await webhook_registry.get_webhook(db, site_id, webhook_id, for_update=True)
    if webhook is None:
        return None
    webhook_registry.check_version(webhook, if_version)

    if not webhook.last_failed_how:
        raise WebhookConflictError("The webhook hasn't failed, nothing to retry")
    if webhook.retry_extra_times:
        raise WebhookConflictError("A retry is already pending")
    if not webhook.send_to_url:
        raise WebhookConfigError("Cannot retry a webhook that has no URL")

    webhook.retry_extra_times = 1
    logger.info("Site %s: manual retry requested for webhook %s", site_id, webhook_id)
    await db.flush()
    await db.refresh(webhook)
    return webhook
