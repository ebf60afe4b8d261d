class WebhookConfigError(ValueError):
    """Rejected webhook configuration or an action it doesn't allow."""


class WebhookConflictError(Exception):
    """The admin acted on a stale view of the webhook."""


class CursorOrderError(RuntimeError):
    """The delivery cursor would move backwards or re-send a delivered event."""
