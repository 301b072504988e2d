import threading
import time
from typing import Callable

from loguru import logger

from apns_push.client.token import TokenSigner
from apns_push.shared.models import TOKEN_TTL_S


class TokenCache:
    """
    Hands out the same signed token for TOKEN_TTL_S seconds after it was issued.
    Only one token is cached; the first access after the window elapses re-signs.
    """

    def __init__(self, signer: TokenSigner, ttl_s: float = TOKEN_TTL_S, clock: Callable[[], float] = time.monotonic):
        self.signer = signer
        self.ttl_s = ttl_s
        self._clock = clock
        self._lock = threading.Lock()
        self._value: str | None = None
        self._issued_at: float | None = None

    @property
    def issued_at(self) -> float | None:
        return self._issued_at

    def get_token(self) -> str:
        with self._lock:
            now = self._clock()
            if self._value is not None and now - self._issued_at < self.ttl_s:
                return self._value
            # A signer failure leaves the previous slot untouched.
            value = self.signer.generate()
            self._value, self._issued_at = value, now
            logger.info(f"event=token_refresh ttl_s={self.ttl_s}")
            return value

    def invalidate(self) -> None:
        """Forget the cached token so the next access signs a fresh one."""
        with self._lock:
            self._value = None
            self._issued_at = None
