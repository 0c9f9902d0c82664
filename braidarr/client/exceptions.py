"""Client-side exceptions."""


class ClientError(Exception):
    """Base class for client errors."""


class SessionExpiredError(ClientError):
    """The session could not be renewed; the user must authenticate again.

    The failure that ended the session is attached as ``__cause__``.
    """


class SessionCancelledError(ClientError):
    """A queued request was dropped because the session was ended locally (logout)."""


class RefreshTimeoutError(ClientError):
    """The refresh call did not complete in time."""


class ApiError(ClientError):
    """Non-success response from the API."""

    def __init__(self, status_code: int, detail: str | None = None, code: str | None = None):
        self.status_code = status_code
        self.detail = detail
        self.code = code
        super().__init__(f"{status_code} {code or 'error'}: {detail or ''}".strip())
