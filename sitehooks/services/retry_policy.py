import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sitehooks.config import settings
from sitehooks.models.webhook import BrokenReason, FailedHow, Webhook

logger = logging.getLogger(__name__)

MAX_ERR_MSG_LENGTH = 2000


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded automatic retries with exponential backoff.

    Delays for the defaults: 2s, 4s, 8s, 16s, ... capped at 15 minutes.
    After max_attempts failed automatic attempts in a row the webhook is
    broken and won't be retried until an admin does something.
    """

    max_attempts: int = 8
    base_seconds: float = 2.0
    max_seconds: float = 900.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.WEBHOOK_MAX_ATTEMPTS,
            base_seconds=settings.WEBHOOK_RETRY_BASE_SECONDS,
            max_seconds=settings.WEBHOOK_RETRY_MAX_SECONDS,
        )

    def backoff_seconds(self, attempt: int) -> float:
        # attempt is 1-based
        return min(self.max_seconds, self.base_seconds * 2 ** (attempt - 1))

    def record_failure(
        self,
        webhook: Webhook,
        failed_how: FailedHow,
        err_msg: str,
        *,
        manual: bool = False,
        now: datetime | None = None,
    ) -> None:
        now = now or datetime.now(timezone.utc)
        if webhook.failed_since is None:
            webhook.failed_since = now
        webhook.last_failed_how = failed_how.value
        webhook.last_err_msg_or_resp = err_msg[:MAX_ERR_MSG_LENGTH]

        # A manual retry is one extra attempt, outside the automatic schedule.
        if manual:
            return

        webhook.retried_num_times += 1
        if webhook.retried_num_times >= self.max_attempts:
            webhook.broken_reason = BrokenReason.TOO_MANY_RETRIES.value
            webhook.next_retry_at = None
            logger.warning(
                "Webhook %s:%s broken after %d failed attempts: %s",
                webhook.site_id, webhook.webhook_id, webhook.retried_num_times, err_msg[:200],
            )
            return

        delay = self.backoff_seconds(webhook.retried_num_times)
        webhook.next_retry_at = now + timedelta(seconds=delay)
        logger.info(
            "Webhook %s:%s failed (%s), attempt %d/%d, retrying in %.0fs",
            webhook.site_id, webhook.webhook_id, failed_how.value,
            webhook.retried_num_times, self.max_attempts, delay,
        )


def clear_failures(webhook: Webhook) -> None:
    webhook.failed_since = None
    webhook.last_failed_how = None
    webhook.last_err_msg_or_resp = None
    webhook.retried_num_times = 0
    webhook.next_retry_at = None
    webhook.broken_reason = None


def unbreak(webhook: Webhook) -> None:
    """Let automatic delivery try again, keeping the last error for display."""
    webhook.broken_reason = None
    webhook.retried_num_times = 0
    webhook.next_retry_at = None


def is_waiting_for_retry(webhook: Webhook, now: datetime | None = None) -> bool:
    if webhook.next_retry_at is None:
        return False
    return (now or datetime.now(timezone.utc)) < webhook.next_retry_at
