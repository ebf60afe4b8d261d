from datetime import datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from sitehooks.models.base import Base, UTCDateTime, utcnow

ADMINS_GROUP_ID = 19
SYSBOT_USER_ID = 2
DEFAULT_WEBHOOK_ID = 1


class WebhookState(str, Enum):
    NEW = "New"
    RUNNING = "Running"
    PAUSED = "Paused"
    BROKEN = "Broken"


class FailedHow(str, Enum):
    COULD_NOT_CONNECT = "CouldNotConnect"
    REQUEST_TIMEOUT = "RequestTimeout"
    REQUEST_FAILED = "RequestFailed"
    ERROR_STATUS_CODE = "ErrorStatusCode"


class BrokenReason(str, Enum):
    TOO_MANY_RETRIES = "TooManyRetries"


class Webhook(Base):
    __tablename__ = "webhooks"

    site_id: Mapped[int] = mapped_column(Integer, nullable=False)
    webhook_id: Mapped[int] = mapped_column(Integer, nullable=False)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, default=ADMINS_GROUP_ID)
    run_as_id: Mapped[int] = mapped_column(Integer, nullable=False, default=SYSBOT_USER_ID)
    send_to_url: Mapped[str] = mapped_column(String(2048), nullable=False, default="")
    send_custom_headers: Mapped[dict | None] = mapped_column(JSON)
    secret: Mapped[str | None] = mapped_column(String(128))  # HMAC-SHA256 signing key
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Delivery cursor
    sent_up_to_event_id: Mapped[int | None] = mapped_column(BigInteger)
    sent_up_to_when: Mapped[datetime | None] = mapped_column(UTCDateTime)

    # Failure bookkeeping
    failed_since: Mapped[datetime | None] = mapped_column(UTCDateTime)
    last_failed_how: Mapped[str | None] = mapped_column(String(50))
    last_err_msg_or_resp: Mapped[str | None] = mapped_column(Text)
    retried_num_times: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    retry_extra_times: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_retry_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    broken_reason: Mapped[str | None] = mapped_column(String(50))

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("site_id", "webhook_id"),
        CheckConstraint(
            "broken_reason IS NULL OR last_failed_how IS NOT NULL",
            name="failed_brokenreason",
        ),
        CheckConstraint(
            "(failed_since IS NULL) = (last_failed_how IS NULL)",
            name="failed_since_how",
        ),
    )

    @property
    def state(self) -> WebhookState:
        if self.broken_reason:
            return WebhookState.BROKEN
        if self.enabled:
            return WebhookState.RUNNING
        if self.sent_up_to_event_id is None:
            return WebhookState.NEW
        return WebhookState.PAUSED
