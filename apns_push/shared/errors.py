"""
MODULE OVERVIEW:
The exception hierarchy shared by the transport, the token signer and the provider.

WHAT IS HAPPENING HERE:
Only two kinds of failure ever leave `APNsProvider.send()`: a ConfigurationError
(the signing key is unusable, so no request could be authenticated) and a ValueError
for an empty device list. Everything below TransportError is caught per device and
reported as data in the SendResult.
"""


class APNsError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(APNsError):
    """Credential material or provider options are unusable."""


class TransportError(APNsError):
    """The HTTP/2 session or one of its streams failed."""


class SessionClosedError(TransportError):
    """The session was closed locally or lost before the request finished."""


class ConnectionTerminatedError(TransportError):
    def __init__(self, error_code: int, last_stream_id: int | None = None, additional_data: bytes | None = None):
        self.error_code = error_code
        self.last_stream_id = last_stream_id
        self.additional_data = additional_data
        super().__init__(f"peer sent GOAWAY error_code={error_code} last_stream_id={last_stream_id}")


class StreamResetError(TransportError):
    def __init__(self, stream_id: int, error_code: int):
        self.stream_id = stream_id
        self.error_code = error_code
        super().__init__(f"stream {stream_id} reset error_code={error_code}")


class RequestTimeoutError(TransportError):
    """No complete response arrived within the request timeout."""


class MalformedResponseError(APNsError):
    """A rejection body could not be parsed as JSON."""

    def __init__(self, status: str, body: str):
        self.status = status
        self.body = body
        super().__init__(f"status={status} body is not valid JSON: {body[:80]!r}")
