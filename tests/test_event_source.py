import pydantic
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from sitehooks.models.event import EventType
from sitehooks.models.webhook import SYSBOT_USER_ID
from sitehooks.services import event_source
from tests.helpers import SITE_ID, post_data


@pytest.mark.asyncio
async def test_append_event_assigns_increasing_ids(db_session: AsyncSession):
    first = await event_source.append_event(db_session, SITE_ID, "PostCreated", post_data(2))
    second = await event_source.append_event(
        db_session, SITE_ID, EventType.POST_UPDATED, post_data(2, "Edited")
    )
    await db_session.commit()

    assert first.event_id == 1
    assert second.event_id == 2
    assert second.event_type == "PostUpdated"
    assert second.event_data["post"]["approved_html_sanitized"] == "<p>Edited</p>"
    assert second.created_at is not None


@pytest.mark.asyncio
async def test_event_ids_are_per_site(db_session: AsyncSession):
    await event_source.append_event(db_session, SITE_ID, "PostCreated", post_data(2))
    await event_source.append_event(db_session, SITE_ID, "PostCreated", post_data(3))
    other = await event_source.append_event(db_session, SITE_ID + 1, "PostCreated", post_data(2))
    await db_session.commit()

    assert other.event_id == 1
    assert await event_source.get_tip_event_id(db_session, SITE_ID) == 2
    assert await event_source.get_tip_event_id(db_session, SITE_ID + 1) == 1


@pytest.mark.asyncio
async def test_append_event_validates_payload_for_type(db_session: AsyncSession):
    # A UserBanned event needs a ban, not a post.
    with pytest.raises(pydantic.ValidationError):
        await event_source.append_event(db_session, SITE_ID, "UserBanned", post_data(2))


@pytest.mark.asyncio
async def test_append_event_unknown_type(db_session: AsyncSession):
    with pytest.raises(ValueError):
        await event_source.append_event(db_session, SITE_ID, "PostLiked", post_data(2))


@pytest.mark.asyncio
async def test_append_event_drops_unset_fields(db_session: AsyncSession):
    event = await event_source.append_event(
        db_session, SITE_ID, "UserBanned", {"ban": {"user_id": 7}}
    )
    assert event.event_data == {"ban": {"user_id": 7}}


@pytest.mark.asyncio
async def test_get_tip_event_id_empty_site(db_session: AsyncSession):
    assert await event_source.get_tip_event_id(db_session, SITE_ID) is None

    info = await event_source.get_last_event_info(db_session, SITE_ID)
    assert info.last_event_id is None
    assert info.last_event_at is None
    assert info.now is not None


@pytest.mark.asyncio
async def test_get_last_event_info(db_session: AsyncSession):
    await event_source.append_event(db_session, SITE_ID, "PostCreated", post_data(2))
    last = await event_source.append_event(db_session, SITE_ID, "PostCreated", post_data(3))
    await db_session.commit()

    info = await event_source.get_last_event_info(db_session, SITE_ID)
    assert info.last_event_id == last.event_id
    assert info.last_event_at == last.created_at


@pytest.mark.asyncio
async def test_get_events_after_is_ordered_and_bounded(db_session: AsyncSession):
    for post_nr in range(2, 8):
        await event_source.append_event(db_session, SITE_ID, "PostCreated", post_data(post_nr))
    await db_session.commit()

    events = await event_source.get_events_after(
        db_session, SITE_ID, 2, 5, SYSBOT_USER_ID, limit=10
    )
    assert [e.event_id for e in events] == [3, 4, 5]

    events = await event_source.get_events_after(
        db_session, SITE_ID, 2, 6, SYSBOT_USER_ID, limit=2
    )
    assert [e.event_id for e in events] == [3, 4]


@pytest.mark.asyncio
async def test_get_events_after_filters_private_events(db_session: AsyncSession):
    await event_source.append_event(db_session, SITE_ID, "PostCreated", post_data(2))
    await event_source.append_event(
        db_session, SITE_ID, "PostCreated", post_data(3), private_to_user_id=200
    )
    await event_source.append_event(
        db_session, SITE_ID, "PostCreated", post_data(4), private_to_user_id=300
    )
    await db_session.commit()

    as_200 = await event_source.get_events_after(db_session, SITE_ID, 0, 3, 200, limit=10)
    assert [e.event_id for e in as_200] == [1, 2]

    as_300 = await event_source.get_events_after(db_session, SITE_ID, 0, 3, 300, limit=10)
    assert [e.event_id for e in as_300] == [1, 3]

    # Sysbot sees everything.
    as_sysbot = await event_source.get_events_after(
        db_session, SITE_ID, 0, 3, SYSBOT_USER_ID, limit=10
    )
    assert [e.event_id for e in as_sysbot] == [1, 2, 3]
