from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, BigInteger, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from sitehooks.models.base import Base, UTCDateTime, utcnow


class EventType(str, Enum):
    PAGE_CREATED = "PageCreated"
    PAGE_UPDATED = "PageUpdated"
    POST_CREATED = "PostCreated"
    POST_UPDATED = "PostUpdated"
    POST_APPROVED = "PostApproved"
    PAT_CREATED = "PatCreated"
    USER_BANNED = "UserBanned"


class Event(Base):
    """One entry of a site's activity log. Never updated once appended."""

    __tablename__ = "events"

    site_id: Mapped[int] = mapped_column(Integer, nullable=False)
    event_id: Mapped[int] = mapped_column(BigInteger, nullable=False)  # monotonic per site
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    event_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    private_to_user_id: Mapped[int | None] = mapped_column(Integer)  # None = public
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("site_id", "event_id"),
        Index("ix_events_site_event", "site_id", "event_id"),
    )
