"""Test doubles for the signer, the clock and the HTTP/2 session."""

import asyncio
import itertools

from apns_push.client.h2_session import H2Response
from apns_push.shared.errors import SessionClosedError


class CountingSigner:
    """Returns token-1, token-2, ... so tests can tell fresh tokens from cached ones."""

    def __init__(self, error: Exception | None = None):
        self.calls = 0
        self.error = error
        self._counter = itertools.count(1)

    def generate(self) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return f"token-{next(self._counter)}"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSession:
    """Stands in for Http2Session; answers per device from `responses`."""

    HANG = "hang"

    def __init__(self, authority: str):
        self.authority = authority
        self.destroyed = False
        self.started = False
        self.closed = False
        self.pings = 0
        self.connect_error: Exception | None = None
        self.responses: dict[str, object] = {}
        self.requests: list[dict[str, str]] = []
        self.bodies: list[bytes] = []

    def start(self) -> None:
        self.started = True

    async def wait_connected(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error

    async def request(self, headers, body=b""):
        await self.wait_connected()
        if self.destroyed:
            raise SessionClosedError("fake session destroyed")
        headers = dict(headers)
        self.requests.append(headers)
        self.bodies.append(body)
        device = headers[":path"].rsplit("/", 1)[-1]
        result = self.responses.get(device, H2Response(status="200", headers={"apns-id": f"id-{device}"}, body=b""))
        if isinstance(result, BaseException):
            raise result
        if result == self.HANG:
            await asyncio.Event().wait()
        return result

    async def ping(self) -> None:
        self.pings += 1

    async def close(self) -> None:
        self.closed = True
        self.destroyed = True


class FakeSessionFactory:
    def __init__(self):
        self.sessions: list[FakeSession] = []
        self.configure = None

    def __call__(self, authority: str) -> FakeSession:
        session = FakeSession(authority)
        if self.configure is not None:
            self.configure(session)
        self.sessions.append(session)
        return session


