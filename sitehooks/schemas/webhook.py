from datetime import datetime

from pydantic import BaseModel, Field

from sitehooks.models.webhook import Webhook, WebhookState
from sitehooks.schemas.event import LastEventInfo


class WebhookUpsert(BaseModel):
    send_to_url: str | None = Field(default=None, max_length=2048)
    owner_id: int | None = None
    run_as_id: int | None = None
    send_custom_headers: dict[str, str] | None = None
    secret: str | None = Field(default=None, max_length=128)
    if_version: int | None = None


class WebhookAlter(BaseModel):
    set_paused: bool | None = None
    skip_to_now: bool = False
    if_version: int | None = None


class WebhookRetry(BaseModel):
    if_version: int | None = None


class WebhookResponse(BaseModel):
    site_id: int
    webhook_id: int
    owner_id: int
    run_as_id: int
    send_to_url: str
    send_custom_headers: dict[str, str] | None
    has_secret: bool = False
    enabled: bool
    version: int
    state: WebhookState
    sent_up_to_event_id: int | None
    sent_up_to_when: datetime | None
    failed_since: datetime | None
    last_failed_how: str | None
    last_err_msg_or_resp: str | None
    retried_num_times: int
    retry_extra_times: int
    next_retry_at: datetime | None
    broken_reason: str | None
    caught_up: bool | None = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_webhook(
        cls, webhook: Webhook, last_event: LastEventInfo | None = None
    ) -> "WebhookResponse":
        response = cls.model_validate(webhook)
        response.has_secret = bool(webhook.secret)
        if last_event is not None:
            response.caught_up = (
                last_event.last_event_id is None
                or (webhook.sent_up_to_event_id or 0) >= last_event.last_event_id
            )
        return response


class WebhookList(BaseModel):
    webhooks: list[WebhookResponse]
    last_event_info: LastEventInfo


class WebhookReqOutResponse(BaseModel):
    req_nr: int
    webhook_id: int
    sent_at: datetime
    sent_to_url: str
    sent_by_app_version: str
    sent_api_version: str
    sent_event_types: list[str]
    sent_event_ids: list[int]
    sent_json: dict
    sent_headers: dict | None
    retry_nr: int
    failed_at: datetime | None
    failed_how: str | None
    err_msg: str | None
    resp_at: datetime | None
    resp_status: int | None
    resp_status_text: str | None
    resp_headers: dict | None
    resp_body: str | None
    is_ok: bool

    model_config = {"from_attributes": True}
