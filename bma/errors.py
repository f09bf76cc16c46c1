"""Error taxonomy for the BMA backend.

Every error carries the HTTP status code the route layer answers with.
None of them is retried anywhere.
"""


class BMAError(Exception):
    """Base class for errors surfaced to HTTP callers."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BMAError):
    """Malformed request body or path parameter."""

    status_code = 400


class NotFoundError(BMAError):
    """A referenced address does not exist."""

    status_code = 404


class UpstreamError(BMAError):
    """The LLM provider failed or returned unusable content."""


class ProviderUnavailableError(UpstreamError):
    """The provider could not be reached (including a missing API key)."""


class EmptyResponseError(UpstreamError):
    """The provider returned no candidate text."""


class MalformedResponseError(UpstreamError):
    """The reply holds no JSON object, or the object does not parse."""


class StoreError(BMAError):
    """Connection, query or write failure in the document store."""


class InstructionsFetchError(StoreError):
    """Loading the operator instructions failed for a reason other than absence."""


class PropertyDetailsMissingError(StoreError):
    """The primary address has no extracted property details."""
