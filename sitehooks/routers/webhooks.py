from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from sitehooks.database import get_db
from sitehooks.dependencies import AdminPrincipal, get_current_admin, get_scheduler
from sitehooks.models.webhook import Webhook
from sitehooks.schemas.webhook import (
    WebhookAlter,
    WebhookList,
    WebhookReqOutResponse,
    WebhookResponse,
    WebhookRetry,
    WebhookUpsert,
)
from sitehooks.services import admin_control, event_source, request_log, webhook_registry
from sitehooks.services.scheduler import DeliveryScheduler

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND, detail="Webhook not found"
    )


async def _with_progress(db: AsyncSession, webhook: Webhook) -> WebhookResponse:
    last_event = await event_source.get_last_event_info(db, webhook.site_id)
    return WebhookResponse.from_webhook(webhook, last_event)


@router.get("", response_model=WebhookList)
async def list_webhooks(
    admin: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """The site's webhooks and how far the event log has come."""
    webhooks = await webhook_registry.list_webhooks(db, admin.site_id)
    last_event = await event_source.get_last_event_info(db, admin.site_id)
    return WebhookList(
        webhooks=[WebhookResponse.from_webhook(w, last_event) for w in webhooks],
        last_event_info=last_event,
    )


@router.post("/default", response_model=WebhookResponse)
async def get_or_create_default_webhook(
    admin: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    webhook = await webhook_registry.get_or_create_default_webhook(db, admin.site_id)
    return await _with_progress(db, webhook)


@router.put("/{webhook_id}", response_model=WebhookResponse)
async def upsert_webhook(
    webhook_id: int,
    data: WebhookUpsert,
    admin: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    webhook = await webhook_registry.upsert_webhook(
        db,
        admin.site_id,
        webhook_id,
        data.model_dump(exclude_unset=True, exclude={"if_version"}),
        if_version=data.if_version,
    )
    return await _with_progress(db, webhook)


@router.post("/{webhook_id}/alter", response_model=WebhookResponse)
async def alter_webhook(
    webhook_id: int,
    data: WebhookAlter,
    admin: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    scheduler: DeliveryScheduler | None = Depends(get_scheduler),
):
    """Pause, start/resume, start fresh, or skip to now."""
    webhook = await admin_control.alter_webhook(
        db,
        admin.site_id,
        webhook_id,
        set_paused=data.set_paused,
        skip_to_now=data.skip_to_now,
        if_version=data.if_version,
    )
    if webhook is None:
        raise _not_found()
    response = await _with_progress(db, webhook)
    await db.commit()
    if scheduler is not None and webhook.enabled:
        scheduler.kick(admin.site_id, webhook_id)
    return response


@router.post("/{webhook_id}/retry", response_model=WebhookResponse)
async def retry_webhook_once(
    webhook_id: int,
    data: WebhookRetry | None = None,
    admin: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    scheduler: DeliveryScheduler | None = Depends(get_scheduler),
):
    webhook = await admin_control.retry_webhook_once(
        db, admin.site_id, webhook_id, if_version=data.if_version if data else None
    )
    if webhook is None:
        raise _not_found()
    response = await _with_progress(db, webhook)
    await db.commit()
    if scheduler is not None:
        scheduler.kick(admin.site_id, webhook_id)
    return response


@router.get("/{webhook_id}/requests", response_model=list[WebhookReqOutResponse])
async def list_webhook_requests_out(
    webhook_id: int,
    limit: int = Query(default=request_log.MAX_LISTED_REQUESTS, ge=1, le=request_log.MAX_LISTED_REQUESTS),
    admin: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Recent first."""
    webhook = await webhook_registry.get_webhook(db, admin.site_id, webhook_id)
    if webhook is None:
        raise _not_found()
    return await request_log.list_recent(db, admin.site_id, webhook_id, limit=limit)
