import logging
from datetime import datetime, timezone

import httpx
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitehooks.models.webhook import FailedHow
from sitehooks.models.webhook_req_out import WebhookReqOut

logger = logging.getLogger(__name__)

MAX_RESPONSE_BODY_LENGTH = 2000
MAX_LISTED_REQUESTS = 50


async def next_req_nr(db: AsyncSession, site_id: int) -> int:
    result = await db.execute(
        select(func.max(WebhookReqOut.req_nr)).where(WebhookReqOut.site_id == site_id)
    )
    return (result.scalar_one_or_none() or 0) + 1


async def start_attempt(
    db: AsyncSession,
    *,
    site_id: int,
    req_nr: int,
    webhook_id: int,
    sent_to_url: str,
    sent_event_types: list[str],
    sent_event_ids: list[int],
    sent_json: dict,
    sent_headers: dict,
    retry_nr: int,
    app_version: str,
    api_version: str,
    now: datetime | None = None,
) -> WebhookReqOut:
    """Append the log row for an attempt, before the request is sent."""
    req = WebhookReqOut(
        site_id=site_id,
        req_nr=req_nr,
        webhook_id=webhook_id,
        sent_at=now or datetime.now(timezone.utc),
        sent_to_url=sent_to_url,
        sent_by_app_version=app_version,
        sent_api_version=api_version,
        sent_event_types=sent_event_types,
        sent_event_ids=sent_event_ids,
        sent_json=sent_json,
        sent_headers=sent_headers,
        retry_nr=retry_nr,
    )
    db.add(req)
    await db.flush()
    return req


def record_response(req: WebhookReqOut, response: httpx.Response, now: datetime | None = None) -> None:
    req.resp_at = now or datetime.now(timezone.utc)
    req.resp_status = response.status_code
    req.resp_status_text = response.reason_phrase or None
    req.resp_headers = dict(response.headers)
    body = response.text
    if len(body) > MAX_RESPONSE_BODY_LENGTH:
        body = body[:MAX_RESPONSE_BODY_LENGTH] + "... (truncated)"
    req.resp_body = body
    if not req.is_ok:
        req.failed_at = req.resp_at
        req.failed_how = FailedHow.ERROR_STATUS_CODE.value
        req.err_msg = f"HTTP {response.status_code}"


def record_failure(
    req: WebhookReqOut,
    failed_how: FailedHow,
    err_msg: str,
    now: datetime | None = None,
) -> None:
    req.failed_at = now or datetime.now(timezone.utc)
    req.failed_how = failed_how.value
    req.err_msg = err_msg[:MAX_RESPONSE_BODY_LENGTH]


async def get_request(db: AsyncSession, site_id: int, req_nr: int) -> WebhookReqOut | None:
    result = await db.execute(
        select(WebhookReqOut).where(
            WebhookReqOut.site_id == site_id, WebhookReqOut.req_nr == req_nr
        )
    )
    return result.scalar_one_or_none()


async def list_recent(
    db: AsyncSession,
    site_id: int,
    webhook_id: int,
    limit: int = MAX_LISTED_REQUESTS,
) -> list[WebhookReqOut]:
    """Most recent first."""
    result = await db.execute(
        select(WebhookReqOut)
        .where(WebhookReqOut.site_id == site_id, WebhookReqOut.webhook_id == webhook_id)
        .order_by(WebhookReqOut.req_nr.desc())
        .limit(min(limit, MAX_LISTED_REQUESTS))
    )
    return list(result.scalars().all())


async def prune_older_than(db: AsyncSession, cutoff: datetime) -> int:
    result = await db.execute(delete(WebhookReqOut).where(WebhookReqOut.sent_at < cutoff))
    deleted = result.rowcount or 0
    if deleted:
        logger.info("Pruned %d webhook request log rows sent before %s", deleted, cutoff.isoformat())
    return deleted
