"""
An in-process HTTP/2 server that plays the part of the APNs gateway.

Behaviour is scripted per device token (the last segment of `:path`):
  responses[device] = (status, body)   answer with that status/body (default 200, empty)
  reset_devices                        RST_STREAM the request
  drop_devices                         close the whole TCP connection
  hang_devices                         never answer
  goaway_devices                       send GOAWAY naming the previous stream as the last one processed

max_concurrent_streams, when set before the client connects, is advertised in the
server's SETTINGS and enforced by the server's h2 state machine.
"""
import asyncio
import uuid

import h2.events
import h2.exceptions
import h2.settings
from h2.config import H2Configuration
from h2.connection import H2Connection
from h2.errors import ErrorCodes


class GatewayStub:
    def __init__(self):
        self.responses: dict[str, tuple[int, bytes]] = {}
        self.reset_devices: set[str] = set()
        self.drop_devices: set[str] = set()
        self.hang_devices: set[str] = set()
        self.goaway_devices: set[str] = set()
        self.max_concurrent_streams: int | None = None

        self.requests: list[dict[str, str]] = []
        self.bodies: dict[str, bytes] = {}
        self.connections = 0
        self.pings = 0
        self.peak_open_streams = 0
        self.protocol_errors: list[Exception] = []

        self._server: asyncio.AbstractServer | None = None
        self._writers: set[asyncio.StreamWriter] = set()
        self.port: int | None = None

    @property
    def authority(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        for writer in list(self._writers):
            writer.close()
        self._server.close()
        await self._server.wait_closed()

    def _new_connection(self) -> H2Connection:
        conn = H2Connection(H2Configuration(client_side=False, header_encoding="utf-8"))
        if self.max_concurrent_streams is not None:
            conn.local_settings = h2.settings.Settings(
                client=False,
                initial_values={h2.settings.SettingCodes.MAX_CONCURRENT_STREAMS: self.max_concurrent_streams},
            )
        conn.initiate_connection()
        return conn

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.add(writer)
        conn = self._new_connection()
        writer.write(conn.data_to_send())
        streams: dict[int, dict] = {}
        try:
            while True:
                data = await reader.read(65535)
                if not data:
                    break
                events = conn.receive_data(data)
                self.peak_open_streams = max(self.peak_open_streams, conn.open_inbound_streams)
                for event in events:
                    if isinstance(event, h2.events.RequestReceived):
                        streams[event.stream_id] = {"headers": dict(event.headers), "body": bytearray()}
                    elif isinstance(event, h2.events.DataReceived):
                        conn.acknowledge_received_data(event.flow_controlled_length, event.stream_id)
                        if event.stream_id in streams:
                            streams[event.stream_id]["body"] += event.data
                    elif isinstance(event, h2.events.StreamEnded):
                        stream = streams.pop(event.stream_id, None)
                        if stream is not None and not self._respond(conn, event.stream_id, stream):
                            return
                    elif isinstance(event, h2.events.PingReceived):
                        self.pings += 1
                writer.write(conn.data_to_send())
                await writer.drain()
        except h2.exceptions.ProtocolError as e:
            self.protocol_errors.append(e)
        except (ConnectionError, asyncio.CancelledError):
            pass
        finally:
            self._writers.discard(writer)
            writer.close()

    def _respond(self, conn: H2Connection, stream_id: int, stream: dict) -> bool:
        headers = stream["headers"]
        device = headers[":path"].rsplit("/", 1)[-1]
        self.requests.append(headers)
        self.bodies[device] = bytes(stream["body"])

        if device in self.drop_devices:
            return False
        if device in self.reset_devices:
            conn.reset_stream(stream_id, error_code=ErrorCodes.INTERNAL_ERROR)
            return True
        if device in self.hang_devices:
            return True
        if device in self.goaway_devices:
            conn.close_connection(error_code=ErrorCodes.NO_ERROR, last_stream_id=max(stream_id - 2, 0))
            return True

        status, body = self.responses.get(device, (200, b""))
        conn.send_headers(stream_id, [(":status", str(status)), ("apns-id", str(uuid.uuid4()))], end_stream=not body)
        if body:
            conn.send_data(stream_id, body, end_stream=True)
        return True
