import logging
from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitehooks.models.event import Event, EventType
from sitehooks.models.webhook import SYSBOT_USER_ID
from sitehooks.schemas.event import LastEventInfo, event_create_adapter

logger = logging.getLogger(__name__)


async def append_event(
    db: AsyncSession,
    site_id: int,
    event_type: EventType | str,
    event_data: dict,
    private_to_user_id: int | None = None,
) -> Event:
    """Append an event to the site's log, giving it the next event id.

    The payload is validated against the schema for its event type, so a
    PostCreated event must carry a post, a UserBanned event a ban, etc.
    """
    validated = event_create_adapter.validate_python(
        {"event_type": EventType(event_type).value, "event_data": event_data}
    )

    result = await db.execute(
        select(func.max(Event.event_id)).where(Event.site_id == site_id)
    )
    last_id = result.scalar_one_or_none() or 0

    event = Event(
        site_id=site_id,
        event_id=last_id + 1,
        event_type=validated.event_type,
        event_data=validated.event_data.model_dump(mode="json", exclude_none=True),
        private_to_user_id=private_to_user_id,
    )
    db.add(event)
    await db.flush()
    await db.refresh(event)
    logger.debug("Site %s: appended event %d (%s)", site_id, event.event_id, event.event_type)
    return event


async def get_tip_event_id(db: AsyncSession, site_id: int) -> int | None:
    result = await db.execute(
        select(func.max(Event.event_id)).where(Event.site_id == site_id)
    )
    return result.scalar_one_or_none()


async def get_last_event_info(db: AsyncSession, site_id: int) -> LastEventInfo:
    result = await db.execute(
        select(Event)
        .where(Event.site_id == site_id)
        .order_by(Event.event_id.desc())
        .limit(1)
    )
    last = result.scalar_one_or_none()
    return LastEventInfo(
        last_event_id=last.event_id if last else None,
        last_event_at=last.created_at if last else None,
        now=datetime.now(timezone.utc),
    )


async def get_events_after(
    db: AsyncSession,
    site_id: int,
    after_event_id: int,
    up_to_event_id: int,
    run_as_id: int,
    limit: int,
) -> list[Event]:
    """Events in (after_event_id, up_to_event_id] that run_as_id may see,
    lowest id first."""
    query = select(Event).where(
        Event.site_id == site_id,
        Event.event_id > after_event_id,
        Event.event_id <= up_to_event_id,
    )
    if run_as_id != SYSBOT_USER_ID:
        query = query.where(
            or_(
                Event.private_to_user_id.is_(None),
                Event.private_to_user_id == run_as_id,
            )
        )
    query = query.order_by(Event.event_id.asc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())
