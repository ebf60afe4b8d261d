from sitehooks.models.base import Base
from sitehooks.models.event import Event, EventType
from sitehooks.models.webhook import Webhook, WebhookState
from sitehooks.models.webhook_req_out import WebhookReqOut

__all__ = [
    "Base",
    "Event",
    "EventType",
    "Webhook",
    "WebhookReqOut",
    "WebhookState",
]
