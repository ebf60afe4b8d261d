import hashlib
import hmac
import json

from sitehooks import __version__
from sitehooks.models.event import Event
from sitehooks.models.webhook import Webhook

SIGNATURE_HEADER = "X-Sitehooks-Signature"


def build_body(webhook: Webhook, events: list[Event], api_version: str) -> dict:
    """The JSON body. Doesn't depend on the attempt, so a retry resends
    exactly the same bytes."""
    return {
        "site_id": webhook.site_id,
        "webhook_id": webhook.webhook_id,
        "api_version": api_version,
        "sent_by_app_version": __version__,
        "events": [
            {
                "id": event.event_id,
                "event_type": event.event_type,
                "created_at": event.created_at.isoformat(),
                "event_data": event.event_data,
            }
            for event in events
        ],
    }


def encode_body(body: dict) -> str:
    return json.dumps(body, default=str, sort_keys=True)


def sign(secret: str, body: str) -> str:
    digest = hmac.new(
        secret.encode("utf-8"),
        body.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"sha256={digest}"


def build_headers(webhook: Webhook, events: list[Event], req_nr: int) -> dict[str, str]:
    """Headers to log and send. The signature is added separately so it
    never ends up in the request log."""
    headers = dict(webhook.send_custom_headers or {})
    headers.update({
        "Content-Type": "application/json",
        "User-Agent": f"sitehooks/{__version__}",
        "X-Sitehooks-Request-Nr": str(req_nr),
        "X-Sitehooks-Event-Types": ",".join(sorted({e.event_type for e in events})),
    })
    return headers
