from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class PageData(BaseModel):
    page_id: str = Field(min_length=1, max_length=100)
    page_type: int | None = None
    category_id: int | None = None
    title: str | None = None
    author_id: int | None = None


class PostData(BaseModel):
    post_id: int
    post_nr: int
    page_id: str = Field(min_length=1, max_length=100)
    parent_nr: int | None = None
    author_id: int | None = None
    approved_html_sanitized: str | None = None


class PatData(BaseModel):
    id: int
    username: str | None = None
    full_name: str | None = None
    is_group: bool = False


class BanData(BaseModel):
    user_id: int
    banned_by_id: int | None = None
    banned_till: datetime | None = None
    reason: str | None = None


class PagePayload(BaseModel):
    page: PageData


class PostPayload(BaseModel):
    post: PostData


class PatPayload(BaseModel):
    pat: PatData


class BanPayload(BaseModel):
    ban: BanData


class PageCreated(BaseModel):
    event_type: Literal["PageCreated"]
    event_data: PagePayload


class PageUpdated(BaseModel):
    event_type: Literal["PageUpdated"]
    event_data: PagePayload


class PostCreated(BaseModel):
    event_type: Literal["PostCreated"]
    event_data: PostPayload


class PostUpdated(BaseModel):
    event_type: Literal["PostUpdated"]
    event_data: PostPayload


class PostApproved(BaseModel):
    event_type: Literal["PostApproved"]
    event_data: PostPayload


class PatCreated(BaseModel):
    event_type: Literal["PatCreated"]
    event_data: PatPayload


class UserBanned(BaseModel):
    event_type: Literal["UserBanned"]
    event_data: BanPayload


# Keyed by event_type; the dispatcher never looks inside event_data.
EventCreate = Annotated[
    Union[
        PageCreated,
        PageUpdated,
        PostCreated,
        PostUpdated,
        PostApproved,
        PatCreated,
        UserBanned,
    ],
    Field(discriminator="event_type"),
]

event_create_adapter = TypeAdapter(EventCreate)


class LastEventInfo(BaseModel):
    last_event_id: int | None
    last_event_at: datetime | None
    now: datetime
