from datetime import datetime

from sqlalchemy import JSON, BigInteger, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from sitehooks.models.base import Base, UTCDateTime

MANUAL_RETRY_NR = -1


class WebhookReqOut(Base):
    """One outbound delivery attempt. Only the response or failure columns
    get filled in after the row is created."""

    __tablename__ = "webhook_reqs_out"

    site_id: Mapped[int] = mapped_column(Integer, nullable=False)
    req_nr: Mapped[int] = mapped_column(BigInteger, nullable=False)
    webhook_id: Mapped[int] = mapped_column(Integer, nullable=False)

    sent_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    sent_to_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    sent_by_app_version: Mapped[str] = mapped_column(String(50), nullable=False)
    sent_api_version: Mapped[str] = mapped_column(String(20), nullable=False)
    sent_event_types: Mapped[list] = mapped_column(JSON, nullable=False)
    sent_event_ids: Mapped[list] = mapped_column(JSON, nullable=False)
    sent_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    sent_headers: Mapped[dict | None] = mapped_column(JSON)
    retry_nr: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # -1 = manual

    failed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    failed_how: Mapped[str | None] = mapped_column(String(50))
    err_msg: Mapped[str | None] = mapped_column(Text)

    resp_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    resp_status: Mapped[int | None] = mapped_column(Integer)
    resp_status_text: Mapped[str | None] = mapped_column(String(255))
    resp_headers: Mapped[dict | None] = mapped_column(JSON)
    resp_body: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("site_id", "req_nr"),
        Index("ix_webhook_reqs_out_site_webhook_sent", "site_id", "webhook_id", "sent_at"),
    )

    @property
    def is_ok(self) -> bool:
        return self.resp_status is not None and 200 <= self.resp_status <= 299
