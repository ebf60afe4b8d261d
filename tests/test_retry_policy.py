from datetime import datetime, timedelta, timezone

import pytest

from sitehooks.models.webhook import BrokenReason, FailedHow, Webhook, WebhookState
from sitehooks.services.retry_policy import (
    RetryPolicy,
    clear_failures,
    is_waiting_for_retry,
    unbreak,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def webhook():
    return Webhook(
        site_id=1,
        webhook_id=1,
        enabled=True,
        sent_up_to_event_id=3,
        retried_num_times=0,
        retry_extra_times=0,
    )


def test_backoff_doubles_and_is_capped():
    policy = RetryPolicy(max_attempts=10, base_seconds=2, max_seconds=30)
    assert [policy.backoff_seconds(n) for n in range(1, 7)] == [2, 4, 8, 16, 30, 30]


def test_from_settings_uses_configured_values():
    policy = RetryPolicy.from_settings()
    assert policy.max_attempts >= 1
    assert policy.base_seconds <= policy.max_seconds


def test_record_failure_schedules_retry(webhook):
    policy = RetryPolicy(max_attempts=3, base_seconds=2, max_seconds=60)
    policy.record_failure(webhook, FailedHow.ERROR_STATUS_CODE, "HTTP 500", now=NOW)

    assert webhook.retried_num_times == 1
    assert webhook.failed_since == NOW
    assert webhook.last_failed_how == "ErrorStatusCode"
    assert webhook.last_err_msg_or_resp == "HTTP 500"
    assert webhook.next_retry_at == NOW + timedelta(seconds=2)
    assert webhook.broken_reason is None
    assert is_waiting_for_retry(webhook, NOW + timedelta(seconds=1))
    assert not is_waiting_for_retry(webhook, NOW + timedelta(seconds=2))


def test_failed_since_is_the_first_failure(webhook):
    policy = RetryPolicy(max_attempts=5)
    policy.record_failure(webhook, FailedHow.REQUEST_TIMEOUT, "timeout", now=NOW)
    later = NOW + timedelta(minutes=1)
    policy.record_failure(webhook, FailedHow.COULD_NOT_CONNECT, "refused", now=later)

    assert webhook.failed_since == NOW
    assert webhook.last_failed_how == "CouldNotConnect"
    assert webhook.next_retry_at == later + timedelta(seconds=4)


def test_broken_after_max_attempts(webhook):
    policy = RetryPolicy(max_attempts=3)
    for _ in range(3):
        policy.record_failure(webhook, FailedHow.ERROR_STATUS_CODE, "HTTP 503", now=NOW)

    assert webhook.retried_num_times == 3
    assert webhook.broken_reason == BrokenReason.TOO_MANY_RETRIES.value
    assert webhook.next_retry_at is None
    assert webhook.state == WebhookState.BROKEN


def test_manual_failure_keeps_retry_count(webhook):
    policy = RetryPolicy(max_attempts=3)
    policy.record_failure(webhook, FailedHow.ERROR_STATUS_CODE, "HTTP 500", now=NOW)
    retry_at = webhook.next_retry_at

    policy.record_failure(
        webhook, FailedHow.COULD_NOT_CONNECT, "refused", manual=True, now=NOW + timedelta(seconds=1)
    )
    assert webhook.retried_num_times == 1
    assert webhook.next_retry_at == retry_at
    assert webhook.last_failed_how == "CouldNotConnect"


def test_long_error_is_truncated(webhook):
    policy = RetryPolicy()
    policy.record_failure(webhook, FailedHow.ERROR_STATUS_CODE, "x" * 5000, now=NOW)
    assert len(webhook.last_err_msg_or_resp) == 2000


def test_clear_failures(webhook):
    policy = RetryPolicy(max_attempts=1)
    policy.record_failure(webhook, FailedHow.ERROR_STATUS_CODE, "HTTP 500", now=NOW)
    assert webhook.state == WebhookState.BROKEN

    clear_failures(webhook)
    assert webhook.failed_since is None
    assert webhook.last_failed_how is None
    assert webhook.last_err_msg_or_resp is None
    assert webhook.retried_num_times == 0
    assert webhook.broken_reason is None
    assert webhook.state == WebhookState.RUNNING


def test_unbreak_keeps_last_error(webhook):
    policy = RetryPolicy(max_attempts=1)
    policy.record_failure(webhook, FailedHow.REQUEST_FAILED, "boom", now=NOW)

    unbreak(webhook)
    assert webhook.broken_reason is None
    assert webhook.retried_num_times == 0
    assert webhook.next_retry_at is None
    assert webhook.last_failed_how == "RequestFailed"
    assert webhook.last_err_msg_or_resp == "boom"
