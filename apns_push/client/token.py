"""
MODULE OVERVIEW:
The provider authentication token signer.

WHAT IS HAPPENING HERE:
APNs token auth is a plain ES256 JWT: the header names the signing key (`kid`), the
claims name the team (`iss`) and the issue time (`iat`). Apple rejects tokens older
than an hour and also rejects tokens regenerated too often, which is why the provider
wraps this signer in a TokenCache instead of calling it per request.
"""
import time
from pathlib import Path
from typing import Callable, Protocol

import jwt
from loguru import logger

from apns_push.shared.errors import ConfigurationError
from apns_push.shared.models import TokenOptions

ALGORITHM = "ES256"


class TokenSigner(Protocol):
    def generate(self) -> str: ...


class AuthToken:
    def __init__(self, options: TokenOptions, clock: Callable[[], float] = time.time):
        if not options.key.strip():
            raise ConfigurationError("signing key is empty")
        if not options.key_id or not options.team_id:
            raise ConfigurationError("key_id and team_id are required")
        self.options = options
        self._clock = clock

    @classmethod
    def from_file(cls, path: str | Path, key_id: str, team_id: str) -> "AuthToken":
        key_path = Path(path).expanduser()
        try:
            key = key_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"cannot read signing key {key_path}: {e}") from e
        return cls(TokenOptions(key=key, key_id=key_id, team_id=team_id))

    def generate(self) -> str:
        issued_at = int(self._clock())
        try:
            token = jwt.encode(
                {"iss": self.options.team_id, "iat": issued_at},
                self.options.key,
                algorithm=ALGORITHM,
                headers={"kid": self.options.key_id},
            )
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise ConfigurationError(f"cannot sign provider token with key_id={self.options.key_id}: {e}") from e
        logger.debug(f"key_id={self.options.key_id} team_id={self.options.team_id} event=token_signed iat={issued_at}")
        return token
