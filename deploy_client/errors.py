"""
Error taxonomy for the deploy API client.

Transport failures (network, timeout) and application failures (a response
whose ``status`` is not ``"success"``, or an HTTP error status) are kept apart
so the poller can decide which ones are worth another tick.
"""

FATAL_STATUS_CODES = frozenset({401, 403, 404})


class DeployAPIError(RuntimeError):
    """Base class for every error raised by the deploy API client."""


class TransportError(DeployAPIError):
    """The request never produced a usable HTTP response."""


class ApplicationError(DeployAPIError):
    """The server answered, but reported a failure."""

    def __init__(
        self, text: str, status_code: int | None = None, message: str | None = None
    ):
        super().__init__(text)
        self.status_code = status_code
        self.message = message

    @property
    def is_fatal(self) -> bool:
        """True when retrying cannot help (bad credentials, unknown resource)."""
        return self.status_code in FATAL_STATUS_CODES
