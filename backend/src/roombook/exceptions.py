"""Domain exceptions raised by the reconciliation pipeline."""


class WebhookAuthenticationError(Exception):
    """The access token header is missing or does not match."""


class MalformedPayloadError(Exception):
    """The request body is not a recognizable gateway event."""

