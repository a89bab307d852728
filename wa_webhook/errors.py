"""
Error taxonomy for webhook ingestion.

Each WebhookError subclass carries the HTTP status code and the public
error text rendered to the provider. Referenced entities that are not found
are not errors: repository lookups return None and handlers treat that as a
no-op.
"""

from fastapi import status


class WebhookError(Exception):
    """Base class for failures scoped to a single webhook request."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error: str = "Server error"


class AuthenticationFailure(WebhookError):
    """Missing or invalid payload signature."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Unauthorized"


class MalformedPayload(WebhookError):
    """Body is not a JSON object, or does not fit the event it claims to be."""

    status_code = status.HTTP_400_BAD_REQUEST
    error = "Invalid JSON"


class PersistenceError(WebhookError):
    """A database read or write failed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Server error"


class ConflictError(Exception):
    """
    A unique constraint rejected an insert.

    Raised by the repository and handled by callers that implement
    insert-then-read semantics; never surfaced to the HTTP layer.
    """
