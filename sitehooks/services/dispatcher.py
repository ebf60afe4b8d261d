"""Sends a site's events to its webhooks, in event id order.

Each tick sends at most one request per webhook: the lowest not yet sent
events visible to the webhook's run-as user. The cursor only moves past
them once the endpoint has replied 2xx, so after a failure the retry
resends the very same batch.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitehooks import __version__
from sitehooks.config import settings
from sitehooks.models.webhook import FailedHow
from sitehooks.models.webhook_req_out import MANUAL_RETRY_NR
from sitehooks.services import (
    delivery_cursor,
    event_source,
    request_log,
    webhook_registry,
    wire_format,
)
from sitehooks.services.retry_policy import RetryPolicy, clear_failures, is_waiting_for_retry

logger = logging.getLogger(__name__)

MAX_ERR_RESPONSE_LENGTH = 500


class TickOutcome(str, Enum):
    NOT_FOUND = "not_found"
    NO_URL = "no_url"
    NOT_STARTED = "not_started"
    PAUSED = "paused"
    BROKEN = "broken"
    WAITING_RETRY = "waiting_retry"
    CAUGHT_UP = "caught_up"
    BUSY = "busy"
    SKIPPED_INVISIBLE = "skipped_invisible"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class TickResult:
    outcome: TickOutcome
    req_nr: int | None = None
    event_ids: list[int] = field(default_factory=list)


@dataclass
class _PlannedRequest:
    req_nr: int
    url: str
    body: str
    headers: dict[str, str]
    event_ids: list[int]
    from_cursor: int
    manual: bool


class WebhookDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        http_client: httpx.AsyncClient,
        *,
        redis=None,
        retry_policy: RetryPolicy | None = None,
        max_events_per_request: int | None = None,
        api_version: str | None = None,
        lease_seconds: float | None = None,
    ):
        self._session_factory = session_factory
        self._http_client = http_client
        self._redis = redis
        self._retry_policy = retry_policy or RetryPolicy.from_settings()
        self._max_events = max_events_per_request or settings.WEBHOOK_MAX_EVENTS_PER_REQUEST
        self._api_version = api_version or settings.WEBHOOK_API_VERSION
        self._lease_ms = int((lease_seconds or settings.WEBHOOK_LEASE_SECONDS) * 1000)
        self._locks: dict[tuple[int, int], asyncio.Lock] = {}

    def is_busy(self, site_id: int, webhook_id: int) -> bool:
        lock = self._locks.get((site_id, webhook_id))
        return lock is not None and lock.locked()

    async def tick(self, site_id: int, webhook_id: int) -> TickResult:
        """One delivery step. Never runs concurrently with itself for the
        same webhook: a second call meanwhile returns BUSY at once."""
        lock = self._locks.setdefault((site_id, webhook_id), asyncio.Lock())
        if lock.locked():
            return TickResult(TickOutcome.BUSY)

        async with lock:
            lease = await self._acquire_lease(site_id, webhook_id)
            if lease is None:
                return TickResult(TickOutcome.BUSY)
            try:
                planned = await self._plan(site_id, webhook_id)
                if isinstance(planned, TickResult):
                    return planned
                response, failed_how, err_msg = await self._post(planned)
                return await self._record_outcome(
                    site_id, webhook_id, planned, response, failed_how, err_msg
                )
            finally:
                await self._release_lease(site_id, webhook_id, lease)

    async def drain(self, site_id: int, webhook_id: int, max_ticks: int = 1000) -> list[TickResult]:
        """Tick until there's nothing more to send right now."""
        results: list[TickResult] = []
        while len(results) < max_ticks:
            result = await self.tick(site_id, webhook_id)
            results.append(result)
            if result.outcome not in (TickOutcome.SENT, TickOutcome.SKIPPED_INVISIBLE):
                break
        return results

    async def _plan(self, site_id: int, webhook_id: int) -> "_PlannedRequest | TickResult":
        async with self._session_factory() as db:
            webhook = await webhook_registry.get_webhook(db, site_id, webhook_id, for_update=True)
            if webhook is None:
                return TickResult(TickOutcome.NOT_FOUND)
            if not webhook.send_to_url:
                return TickResult(TickOutcome.NO_URL)
            cursor = webhook.sent_up_to_event_id
            if cursor is None:
                return TickResult(TickOutcome.NOT_STARTED)

            # An admin's "Retry once" overrides paused, broken and backoff.
            manual = webhook.retry_extra_times > 0
            if not manual:
                if webhook.broken_reason:
                    return TickResult(TickOutcome.BROKEN)
                if not webhook.enabled:
                    return TickResult(TickOutcome.PAUSED)
                if is_waiting_for_retry(webhook):
                    return TickResult(TickOutcome.WAITING_RETRY)

            tip = await event_source.get_tip_event_id(db, site_id) or 0
            if tip <= cursor:
                if manual:
                    webhook.retry_extra_times = 0
                    await db.commit()
                return TickResult(TickOutcome.CAUGHT_UP)

            events = await event_source.get_events_after(
                db, site_id, cursor, tip, webhook.run_as_id, self._max_events
            )
            if not events:
                # Nothing up to the tip is visible to run_as_id.
                delivery_cursor.advance(webhook, tip)
                await db.commit()
                return TickResult(TickOutcome.SKIPPED_INVISIBLE)

            req_nr = await request_log.next_req_nr(db, site_id)
            body = wire_format.build_body(webhook, events, self._api_version)
            headers = wire_format.build_headers(webhook, events, req_nr)
            event_ids = [e.event_id for e in events]

            await request_log.start_attempt(
                db,
                site_id=site_id,
                req_nr=req_nr,
                webhook_id=webhook_id,
                sent_to_url=webhook.send_to_url,
                sent_event_types=[e.event_type for e in events],
                sent_event_ids=event_ids,
                sent_json=body,
                sent_headers=headers,
                retry_nr=MANUAL_RETRY_NR if manual else webhook.retried_num_times,
                app_version=__version__,
                api_version=self._api_version,
            )
            if manual:
                webhook.retry_extra_times -= 1

            body_text = wire_format.encode_body(body)
            send_headers = dict(headers)
            if webhook.secret:
                send_headers[wire_format.SIGNATURE_HEADER] = wire_format.sign(webhook.secret, body_text)

            planned = _PlannedRequest(
                req_nr=req_nr,
                url=webhook.send_to_url,
                body=body_text,
                headers=send_headers,
                event_ids=event_ids,
                from_cursor=cursor,
                manual=manual,
            )
            await db.commit()

        logger.debug(
            "Site %s: webhook %s sending req %d, events %s",
            site_id, webhook_id, req_nr, event_ids,
        )
        return planned

    async def _post(
        self, planned: _PlannedRequest
    ) -> tuple[httpx.Response | None, FailedHow | None, str | None]:
        try:
            response = await self._http_client.post(
                planned.url, content=planned.body, headers=planned.headers
            )
        except httpx.TimeoutException as exc:
            return None, FailedHow.REQUEST_TIMEOUT, f"Request timed out: {exc}"
        except httpx.ConnectError as exc:
            return None, FailedHow.COULD_NOT_CONNECT, f"Could not connect: {exc}"
        except (httpx.RequestError, httpx.InvalidURL) as exc:
            return None, FailedHow.REQUEST_FAILED, f"{type(exc).__name__}: {exc}"

        if 200 <= response.status_code <= 299:
            return response, None, None
        err_msg = (
            f"HTTP {response.status_code} {response.reason_phrase}: "
            f"{response.text[:MAX_ERR_RESPONSE_LENGTH]}"
        )
        return response, FailedHow.ERROR_STATUS_CODE, err_msg

    async def _record_outcome(
        self,
        site_id: int,
        webhook_id: int,
        planned: _PlannedRequest,
        response: httpx.Response | None,
        failed_how: FailedHow | None,
        err_msg: str | None,
    ) -> TickResult:
        now = datetime.now(timezone.utc)
        async with self._session_factory() as db:
            req = await request_log.get_request(db, site_id, planned.req_nr)
            if req is not None:
                if response is not None:
                    request_log.record_response(req, response, now)
                else:
                    request_log.record_failure(req, failed_how, err_msg, now)

            webhook = await webhook_registry.get_webhook(db, site_id, webhook_id, for_update=True)
            if webhook is None:
                logger.info("Site %s: webhook %s deleted while sending", site_id, webhook_id)
                await db.commit()
                return TickResult(TickOutcome.NOT_FOUND, planned.req_nr, planned.event_ids)

            cursor_moved = webhook.sent_up_to_event_id != planned.from_cursor
            if cursor_moved:
                # An admin skipped ahead while the request was in flight.
                logger.info(
                    "Site %s: webhook %s cursor moved to %s while sending req %d",
                    site_id, webhook_id, webhook.sent_up_to_event_id, planned.req_nr,
                )

            if failed_how is None:
                if not cursor_moved:
                    delivery_cursor.advance(webhook, planned.event_ids[-1], now)
                clear_failures(webhook)
                outcome = TickOutcome.SENT
            elif cursor_moved:
                # The events are no longer owed, so the failure only goes
                # in the request log.
                outcome = TickOutcome.FAILED
            else:
                self._retry_policy.record_failure(
                    webhook, failed_how, err_msg, manual=planned.manual, now=now
                )
                outcome = TickOutcome.FAILED

            await db.commit()

        return TickResult(outcome, planned.req_nr, planned.event_ids)

    def _lease_key(self, site_id: int, webhook_id: int) -> str:
        return f"sitehooks:dispatch:{site_id}:{webhook_id}"

    async def _acquire_lease(self, site_id: int, webhook_id: int) -> str | None:
        """Cross-process guard. Returns "" when there's no Redis, None if
        another process holds the lease."""
        if self._redis is None:
            return ""
        token = uuid.uuid4().hex
        acquired = await self._redis.set(
            self._lease_key(site_id, webhook_id), token, nx=True, px=self._lease_ms
        )
        return token if acquired else None

    async def _release_lease(self, site_id: int, webhook_id: int, token: str) -> None:
        if not token:
            return
        key = self._lease_key(site_id, webhook_id)
        if await self._redis.get(key) == token:
            await self._redis.delete(key)
