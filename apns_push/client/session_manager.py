"""
MODULE OVERVIEW:
Owner of the one HTTP/2 session a provider talks through, and of its keepalive task.

WHAT IS HAPPENING HERE:
Connecting is lazy. `ensure_connected()` is called at the top of every send; if there is
no session, or the one we hold has died (peer closed it, GOAWAY, network error), a fresh
session is created and its connect is kicked off in the background. We do not wait for
it here: the first request on the session waits, and if the connect failed that request
fails with a TransportError like any other transport problem.

Each live session gets exactly one keepalive task. It sends an HTTP/2 PING every
`ping_interval_s` so APNs doesn't drop us for being idle. The task belongs to its
session: whenever the session is replaced or shut down, the task is cancelled first.
"""
import asyncio
from typing import Callable

from loguru import logger

from apns_push.client.h2_session import Http2Session
from apns_push.shared.client_utils import make_session_stats, mark_connected
from apns_push.shared.errors import TransportError
from apns_push.shared.models import DEFAULT_PING_INTERVAL_S

class SessionManager:
    def __init__(
        self,
        authority: str,
        ping_interval_s: float = DEFAULT_PING_INTERVAL_S,
        session_factory: Callable[[str], Http2Session] = Http2Session,
    ):
        self.authority = authority
        self.ping_interval_s = ping_interval_s if ping_interval_s and ping_interval_s > 0 else DEFAULT_PING_INTERVAL_S
        self._session_factory = session_factory
        self._session: Http2Session | None = None
        self._keepalive_task: asyncio.Task | None = None
        self.stats = make_session_stats()

    @property
    def session(self) -> Http2Session | None:
        return self._session

    @property
    def reconnect_count(self) -> int:
        return self.stats["reconnect_count"]

    def ensure_connected(self) -> None:
        if self._session is not None and not self._session.destroyed:
            return

        if self._session is not None:
            self.stats["reconnect_count"] += 1
            logger.info(f"authority={self.authority} event=reconnect reason=session_destroyed")

        self._cancel_keepalive()
        session = self._session_factory(self.authority)
        session.start()
        self._session = session
        self._keepalive_task = asyncio.create_task(self._keepalive(session))

    async def _keepalive(self, session: Http2Session) -> None:
        try:
            await session.wait_connected()
        except TransportError:
            # The first request on this session reports the failure.
            return
        mark_connected(self.stats)

        while not session.destroyed:
            await asyncio.sleep(self.ping_interval_s)
            if session.destroyed:
                break
            self.stats["pings_sent"] += 1
            try:
                await asyncio.wait_for(session.ping(), timeout=self.ping_interval_s)
                logger.debug(f"authority={self.authority} event=ping reason=ack")
            except (TransportError, asyncio.TimeoutError) as e:
                self.stats["ping_failures"] += 1
                logger.debug(f"authority={self.authority} event=ping reason='{e!r}'")

    def _cancel_keepalive(self) -> asyncio.Task | None:
        task, self._keepalive_task = self._keepalive_task, None
        if task is not None and not task.done():
            task.cancel()
        return task

    async def shutdown(self) -> None:
        """
        Cancel the keepalive and close the session.
        Expects a live session; with none held it only logs.
        """
        task = self._cancel_keepalive()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

        if self._session is None:
            logger.warning(f"authority={self.authority} event=shutdown reason=no_session")
            return
        session, self._session = self._session, None
        await session.close()
