"""
MODULE OVERVIEW:
The public entry point: APNsProvider.send() fans one notification out to many devices.

WHAT IS HAPPENING HERE:
One call to `send()` does four things in order:
  1. Makes sure a session exists (connecting lazily if needed).
  2. Takes ONE token snapshot from the TokenCache. Every device in this call is
     authenticated with the same bearer token, even if the cache window expires mid-flight.
  3. Builds one request per device and runs them all concurrently on the shared session.
  4. Waits for every single outcome (no short-circuit on the first failure) and
     partitions them into `sent` and `failed`.

Per-device isolation is the point: one expired device token or one reset stream must not
change how the other devices are accounted for. The only things that make `send()` itself
raise are an empty device list and a token that can't be signed at all.
"""
import asyncio
from typing import Iterable, Mapping
from urllib.parse import urlsplit

from loguru import logger

from apns_push.client.executor import RequestExecutor
from apns_push.client.notification import NotificationCompiler
from apns_push.client.session_manager import SessionManager
from apns_push.client.token import AuthToken, TokenSigner
from apns_push.client.token_cache import TokenCache
from apns_push.shared.models import NotificationRequest, ProviderOptions, SendResult

# Rejections meaning our bearer token, not the device, is the problem.
PROVIDER_TOKEN_REASONS = {"ExpiredProviderToken", "InvalidProviderToken"}


def normalize_devices(device_tokens: str | Iterable[str]) -> list[str]:
    devices = [device_tokens] if isinstance(device_tokens, str) else list(device_tokens)
    if not devices:
        raise ValueError("at least one device token is required")
    for device in devices:
        if not isinstance(device, str) or not device:
            raise ValueError(f"invalid device token {device!r}")
    return devices


class APNsProvider:
    def __init__(
        self,
        options: ProviderOptions,
        signer: TokenSigner | None = None,
        session_manager: SessionManager | None = None,
    ):
        self.options = options
        self.authority = options.resolve_authority()
        parts = urlsplit(self.authority)
        self._scheme = parts.scheme
        self._authority_header = parts.netloc

        self.tokens = TokenCache(signer or AuthToken(options.token))
        self.sessions = session_manager or SessionManager(self.authority, options.ping_interval_s)
        self.executor = RequestExecutor(options.request_timeout_s)

    async def __aenter__(self) -> "APNsProvider":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self.sessions.session is not None:
            await self.shutdown()

    async def send(self, notification: NotificationCompiler, device_tokens: str | Iterable[str]) -> SendResult:
        devices = normalize_devices(device_tokens)

        self.sessions.ensure_connected()
        session = self.sessions.session
        token = self.tokens.get_token()

        body = notification.compile()
        extra_headers = notification.headers()
        requests = [self.build_request(device, token, extra_headers, body) for device in devices]

        outcomes = await asyncio.gather(*(self.executor.execute(session, request) for request in requests))
        result = SendResult.from_outcomes(list(outcomes))

        self._check_provider_token(result)
        logger.info(f"authority={self.authority} event=send devices={len(devices)} sent={len(result.sent)} failed={len(result.failed)}")
        return result

    def build_request(self, device: str, token: str, extra_headers: Mapping[str, str], body: bytes) -> NotificationRequest:
        headers = {
            ":method": "POST",
            ":scheme": self._scheme,
            ":authority": self._authority_header,
            ":path": f"/3/device/{device}",
            "authorization": f"bearer {token}",
        }
        headers.update({name.lower(): str(value) for name, value in extra_headers.items()})
        # HTTP/2 requires pseudo-headers ahead of regular ones
        ordered = sorted(headers.items(), key=lambda item: not item[0].startswith(":"))
        return NotificationRequest(headers=ordered, body=body, device=device)

    def _check_provider_token(self, result: SendResult) -> None:
        if any(failure.reason in PROVIDER_TOKEN_REASONS for failure in result.failed):
            logger.warning(f"authority={self.authority} event=token_rejected reason=provider_token")
            self.tokens.invalidate()

    async def shutdown(self) -> None:
        await self.sessions.shutdown()
