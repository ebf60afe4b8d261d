import logging
import re

import httpx
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitehooks.exceptions import WebhookConfigError, WebhookConflictError
from sitehooks.models.webhook import (
    ADMINS_GROUP_ID,
    DEFAULT_WEBHOOK_ID,
    SYSBOT_USER_ID,
    Webhook,
)

logger = logging.getLogger(__name__)

CONFIG_FIELDS = ("send_to_url", "owner_id", "run_as_id", "send_custom_headers", "secret")

_HEADER_NAME_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


def validate_url(url: str) -> str:
    """Empty is fine (the webhook is then inert), anything else must be an
    absolute http(s) URL."""
    url = url.strip()
    if not url:
        return url
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as exc:
        raise WebhookConfigError(f"Bad webhook URL: {exc}") from exc
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise WebhookConfigError(f"Webhook URL must be http:// or https://, got: {url}")
    return url


def validate_custom_headers(headers: dict | None) -> dict | None:
    if not headers:
        return None
    for name, value in headers.items():
        if not isinstance(name, str) or not _HEADER_NAME_RE.match(name):
            raise WebhookConfigError(f"Bad HTTP header name: {name!r}")
        if not isinstance(value, str) or "\r" in value or "\n" in value:
            raise WebhookConfigError(f"Bad value for HTTP header {name}")
    return headers


def check_version(webhook: Webhook, if_version: int | None) -> None:
    if if_version is not None and if_version != webhook.version:
        raise WebhookConflictError(
            f"Webhook {webhook.webhook_id} is at version {webhook.version}, "
            f"you have version {if_version}. Reload and try again"
        )


async def list_webhooks(db: AsyncSession, site_id: int) -> list[Webhook]:
    result = await db.execute(
        select(Webhook).where(Webhook.site_id == site_id).order_by(Webhook.webhook_id.asc())
    )
    return list(result.scalars().all())


async def get_webhook(
    db: AsyncSession, site_id: int, webhook_id: int, for_update: bool = False
) -> Webhook | None:
    query = select(Webhook).where(
        Webhook.site_id == site_id, Webhook.webhook_id == webhook_id
    )
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_or_create_default_webhook(db: AsyncSession, site_id: int) -> Webhook:
    """Idempotent. The default webhook hears about everything (runs as
    Sysbot), is owned by the admins, and does nothing until it has a URL
    and has been started."""
    webhook = await get_webhook(db, site_id, DEFAULT_WEBHOOK_ID)
    if webhook is not None:
        return webhook

    webhook = Webhook(
        site_id=site_id,
        webhook_id=DEFAULT_WEBHOOK_ID,
        owner_id=ADMINS_GROUP_ID,
        run_as_id=SYSBOT_USER_ID,
        send_to_url="",
        enabled=False,
    )
    db.add(webhook)
    await db.flush()
    await db.refresh(webhook)
    logger.info("Site %s: created default webhook", site_id)
    return webhook


async def upsert_webhook(
    db: AsyncSession,
    site_id: int,
    webhook_id: int,
    data: dict,
    if_version: int | None = None,
) -> Webhook:
    """Create or reconfigure a webhook. Only configuration fields are
    touched; running state changes go through admin_control."""
    changes = {k: v for k, v in data.items() if k in CONFIG_FIELDS}
    if "send_to_url" in changes:
        changes["send_to_url"] = validate_url(changes["send_to_url"] or "")
    if "send_custom_headers" in changes:
        changes["send_custom_headers"] = validate_custom_headers(changes["send_custom_headers"])

    webhook = await get_webhook(db, site_id, webhook_id, for_update=True)
    if webhook is None:
        webhook = Webhook(
            site_id=site_id,
            webhook_id=webhook_id,
            owner_id=changes.pop("owner_id", None) or ADMINS_GROUP_ID,
            run_as_id=changes.pop("run_as_id", None) or SYSBOT_USER_ID,
            send_to_url="",
            enabled=False,
        )
        db.add(webhook)
        for key, value in changes.items():
            setattr(webhook, key, value)
        await db.flush()
        await db.refresh(webhook)
        logger.info("Site %s: created webhook %s", site_id, webhook_id)
        return webhook

    check_version(webhook, if_version)

    changed = False
    for key, value in changes.items():
        if value is None and key in ("owner_id", "run_as_id"):
            continue
        if getattr(webhook, key) != value:
            setattr(webhook, key, value)
            changed = True
    if changed:
        webhook.version += 1
        logger.info(
            "Site %s: webhook %s reconfigured, now version %d",
            site_id, webhook_id, webhook.version,
        )

    await db.flush()
    await db.refresh(webhook)
    return webhook


async def list_dispatchable(db: AsyncSession) -> list[tuple[int, int]]:
    """(site_id, webhook_id) of webhooks the dispatcher might have work for."""
    result = await db.execute(
        select(Webhook.site_id, Webhook.webhook_id).where(
            Webhook.send_to_url != "",
            or_(
                Webhook.retry_extra_times > 0,
                Webhook.enabled.is_(True) & Webhook.broken_reason.is_(None),
            ),
        )
    )
    return [(row.site_id, row.webhook_id) for row in result.all()]

