"""
MODULE OVERVIEW:
A single multiplexed HTTP/2 session to one authority, built on the `h2` state machine.

WHAT IS HAPPENING HERE:
`h2` does no I/O of its own. We own an asyncio (reader, writer) pair and shuttle bytes
between the socket and the H2Connection: every method that changes protocol state
(`send_headers`, `ping`, ...) produces bytes we must write, and every chunk we read turns
into a list of events (`ResponseReceived`, `DataReceived`, `StreamEnded`, ...) that we
route to whichever request is waiting on that stream id.

One background task reads the socket for the whole life of the session. Each request is
just a Future keyed by stream id; the read loop resolves it when the stream ends, or
fails it when the stream is reset or the connection dies. That is the whole trick behind
running hundreds of requests concurrently over one TCP connection.

Real-world application: this is what APNs expects from a provider. One long-lived
connection, PING frames to keep it from idling out, and many concurrent streams.
"""
import asyncio
import os
import ssl
from dataclasses import dataclass, field
from typing import Iterable
from urllib.parse import urlsplit

import h2.events
import h2.exceptions
from h2.config import H2Configuration
from h2.connection import H2Connection
from h2.errors import ErrorCodes
from loguru import logger

from apns_push.shared.errors import (
    ConnectionTerminatedError,
    SessionClosedError,
    StreamResetError,
    TransportError,
)

READ_CHUNK = 65535
DEFAULT_CONNECT_TIMEOUT_S = 10.0


@dataclass
class H2Response:
    status: str
    headers: dict[str, str]
    body: bytes


@dataclass
class _Stream:
    future: asyncio.Future
    status: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    data: bytearray = field(default_factory=bytearray)


class Http2Session:
    def __init__(
        self,
        authority: str,
        ssl_context: ssl.SSLContext | None = None,
        connect_timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S,
    ):
        parts = urlsplit(authority)
        if parts.scheme not in ("https", "http") or not parts.hostname:
            raise ValueError(f"unsupported authority {authority!r}")
        self.authority = authority
        self.scheme = parts.scheme
        self.host = parts.hostname
        self.port = parts.port or (443 if parts.scheme == "https" else 80)
        self.authority_header = parts.netloc
        self.connect_timeout_s = connect_timeout_s
        self._ssl_context = ssl_context

        self._conn = H2Connection(H2Configuration(client_side=True, header_encoding="utf-8"))
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._connect_task: asyncio.Task | None = None
        self._reader_task: asyncio.Task | None = None
        self._connected: asyncio.Future | None = None

        self._streams: dict[int, _Stream] = {}
        self._pings: dict[bytes, asyncio.Future] = {}
        self._window_updated = asyncio.Event()
        self._stream_slot_freed = asyncio.Event()

        self._goaway = False
        self._close_error: TransportError | None = None

    # ==========================
    # LIFECYCLE
    # ==========================
    @property
    def destroyed(self) -> bool:
        """True once no new stream can be opened on this session."""
        return self._close_error is not None or self._goaway

    @property
    def connected(self) -> bool:
        return self._reader_task is not None and not self.destroyed

    def start(self) -> None:
        if self._connected is not None:
            return
        self._connected = asyncio.get_running_loop().create_future()
        # Nobody may ever await a failed connect (e.g. shutdown before the first request).
        self._connected.add_done_callback(lambda f: f.cancelled() or f.exception())
        self._connect_task = asyncio.create_task(self._connect())

    async def wait_connected(self) -> None:
        if self._connected is None:
            raise SessionClosedError(f"session to {self.authority} was never started")
        # shield: one waiter timing out must not cancel the connect for everyone else
        await asyncio.shield(self._connected)

    async def _connect(self) -> None:
        ssl_context = None
        if self.scheme == "https":
            ssl_context = self._ssl_context or self._default_ssl_context()
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    self.host,
                    self.port,
                    ssl=ssl_context,
                    server_hostname=self.host if ssl_context else None,
                ),
                timeout=self.connect_timeout_s,
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"authority={self.authority} event=connect_failed reason='{e!r}'")
            self._teardown(SessionClosedError(f"cannot connect to {self.authority}: {e!r}"))
            return

        if self._close_error is not None:
            writer.close()
            return

        if ssl_context is not None:
            ssl_object = writer.get_extra_info("ssl_object")
            protocol = ssl_object.selected_alpn_protocol() if ssl_object else None
            if protocol != "h2":
                writer.close()
                self._teardown(SessionClosedError(f"{self.authority} did not negotiate h2 (got {protocol!r})"))
                return

        self._reader, self._writer = reader, writer
        self._conn.initiate_connection()
        self._writer.write(self._conn.data_to_send())
        self._reader_task = asyncio.create_task(self._read_loop())
        self._connected.set_result(None)
        logger.info(f"authority={self.authority} event=connect reason=established")

    async def close(self) -> None:
        if self._close_error is None and self._writer is not None:
            try:
                self._conn.close_connection()
                self._writer.write(self._conn.data_to_send())
            except (OSError, h2.exceptions.ProtocolError) as e:
                logger.debug(f"authority={self.authority} event=goaway_failed reason='{e!r}'")
        self._teardown(SessionClosedError(f"session to {self.authority} closed"))

        pending = [t for t in (self._connect_task, self._reader_task) if t is not None and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self._writer is not None:
            try:
                await self._writer.wait_closed()
            except OSError as e:
                logger.debug(f"authority={self.authority} event=close reason='{e!r}'")
        logger.info(f"authority={self.authority} event=disconnect reason=closed")

    def _teardown(self, error: TransportError) -> None:
        if self._close_error is not None:
            return
        self._close_error = error

        if self._connected is not None and not self._connected.done():
            self._connected.set_exception(error)
        for stream in self._streams.values():
            if not stream.future.done():
                stream.future.set_exception(error)
        for ping in self._pings.values():
            if not ping.done():
                ping.set_exception(error)
        # Wake body senders and slot waiters so they notice the closed session.
        self._window_updated.set()
        self._stream_slot_freed.set()

        if self._writer is not None:
            self._writer.close()
        if self._reader_task is not None and self._reader_task is not asyncio.current_task():
            self._reader_task.cancel()

    # ==========================
    # REQUESTS
    # ==========================
    async def request(self, headers: Iterable[tuple[str, str]], body: bytes = b"") -> H2Response:
        await self.wait_connected()
        self._raise_if_destroyed()
        await self._wait_for_stream_slot()

        # No await between the slot check and send_headers, so the slot cannot be taken.
        stream_id = self._conn.get_next_available_stream_id()
        stream = _Stream(future=asyncio.get_running_loop().create_future())
        self._streams[stream_id] = stream
        try:
            self._conn.send_headers(stream_id, list(headers), end_stream=not body)
            if body:
                await self._send_body(stream_id, stream, body)
            else:
                await self._flush()
            return await stream.future
        except asyncio.CancelledError:
            self._reset_stream(stream_id)
            raise
        except h2.exceptions.ProtocolError as e:
            raise TransportError(f"stream {stream_id} to {self.authority} failed: {e!r}") from e
        finally:
            self._streams.pop(stream_id, None)
            if stream.future.done() and not stream.future.cancelled():
                # failed by a teardown while we were still uploading the body
                stream.future.exception()
            self._stream_slot_freed.set()
            self._close_if_drained()

    async def _wait_for_stream_slot(self) -> None:
        """
        Queue behind the peer's SETTINGS_MAX_CONCURRENT_STREAMS instead of failing.
        APNs lowers this limit (down to 1 before the first authenticated request), and
        a device that merely waited for a slot is not a failed delivery.
        """
        while self._conn.open_outbound_streams >= self._conn.remote_settings.max_concurrent_streams:
            self._stream_slot_freed.clear()
            await self._stream_slot_freed.wait()
            self._raise_if_destroyed()

    async def _send_body(self, stream_id: int, stream: _Stream, body: bytes) -> None:
        view = memoryview(body)
        while view:
            self._raise_if_closed()
            if stream.future.done():
                # reset by the peer before we finished uploading
                return
            window = min(self._conn.local_flow_control_window(stream_id), self._conn.max_outbound_frame_size)
            if window <= 0:
                self._window_updated.clear()
                await self._flush()
                await self._window_updated.wait()
                continue
            chunk, view = view[:window], view[window:]
            self._conn.send_data(stream_id, chunk.tobytes())
        self._conn.end_stream(stream_id)
        await self._flush()

    def _reset_stream(self, stream_id: int) -> None:
        if self._close_error is not None or self._writer is None:
            return
        try:
            self._conn.reset_stream(stream_id, error_code=ErrorCodes.CANCEL)
        except h2.exceptions.StreamClosedError:
            return
        self._writer.write(self._conn.data_to_send())

    async def ping(self) -> None:
        """Send a PING frame and wait for the peer's ACK."""
        await self.wait_connected()
        self._raise_if_destroyed()
        opaque = os.urandom(8)
        ack = asyncio.get_running_loop().create_future()
        self._pings[opaque] = ack
        try:
            self._conn.ping(opaque)
            await self._flush()
            await ack
        finally:
            self._pings.pop(opaque, None)

    async def _flush(self) -> None:
        data = self._conn.data_to_send()
        if not data:
            return
        self._raise_if_closed()
        self._writer.write(data)
        try:
            await self._writer.drain()
        except OSError as e:
            error = SessionClosedError(f"connection to {self.authority} lost: {e!r}")
            self._teardown(error)
            raise error from e

    def _raise_if_closed(self) -> None:
        if self._close_error is not None:
            raise self._close_error

    def _raise_if_destroyed(self) -> None:
        self._raise_if_closed()
        if self._goaway:
            raise SessionClosedError(f"{self.authority} is going away; open a new session")

    # ==========================
    # READ LOOP
    # ==========================
    async def _read_loop(self) -> None:
        try:
            while self._close_error is None:
                data = await self._reader.read(READ_CHUNK)
                if not data:
                    self._teardown(SessionClosedError(f"{self.authority} closed the connection"))
                    return
                for event in self._conn.receive_data(data):
                    self._handle_event(event)
                outgoing = self._conn.data_to_send()
                if outgoing and self._close_error is None:
                    self._writer.write(outgoing)
        except (OSError, h2.exceptions.ProtocolError) as e:
            logger.warning(f"authority={self.authority} event=error reason='{e!r}'")
            self._teardown(SessionClosedError(f"connection to {self.authority} lost: {e!r}"))

    def _handle_event(self, event: h2.events.Event) -> None:
        if isinstance(event, h2.events.ResponseReceived):
            stream = self._streams.get(event.stream_id)
            if stream is not None:
                stream.headers = dict(event.headers)
                stream.status = stream.headers.get(":status")
        elif isinstance(event, h2.events.DataReceived):
            self._conn.acknowledge_received_data(event.flow_controlled_length, event.stream_id)
            stream = self._streams.get(event.stream_id)
            if stream is not None:
                stream.data += event.data
        elif isinstance(event, h2.events.StreamEnded):
            stream = self._streams.get(event.stream_id)
            if stream is not None and not stream.future.done():
                stream.future.set_result(H2Response(status=stream.status or "", headers=stream.headers, body=bytes(stream.data)))
            self._stream_slot_freed.set()
        elif isinstance(event, h2.events.StreamReset):
            stream = self._streams.get(event.stream_id)
            if stream is not None and not stream.future.done():
                stream.future.set_exception(StreamResetError(event.stream_id, int(event.error_code)))
            self._window_updated.set()
            self._stream_slot_freed.set()
        elif isinstance(event, h2.events.RemoteSettingsChanged):
            self._window_updated.set()
            self._stream_slot_freed.set()
        elif isinstance(event, h2.events.WindowUpdated):
            self._window_updated.set()
        elif isinstance(event, h2.events.PingAckReceived):
            ack = self._pings.get(event.ping_data)
            if ack is not None and not ack.done():
                ack.set_result(None)
        elif isinstance(event, h2.events.ConnectionTerminated):
            self._on_goaway(event)

    def _on_goaway(self, event: h2.events.ConnectionTerminated) -> None:
        self._goaway = True
        error = ConnectionTerminatedError(int(event.error_code), event.last_stream_id, event.additional_data)
        logger.warning(f"authority={self.authority} event=goaway reason='{error}'")
        # Streams above last_stream_id were never processed; the rest may still complete.
        last_stream_id = event.last_stream_id or 0
        for stream_id, stream in self._streams.items():
            if stream_id > last_stream_id and not stream.future.done():
                stream.future.set_exception(error)
        self._close_if_drained()

    def _close_if_drained(self) -> None:
        if self._goaway and all(stream.future.done() for stream in self._streams.values()):
            self._teardown(SessionClosedError(f"{self.authority} went away"))

    @staticmethod
    def _default_ssl_context() -> ssl.SSLContext:
        context = ssl.create_default_context()
        context.set_alpn_protocols(["h2"])
        return context
