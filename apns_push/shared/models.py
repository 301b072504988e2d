"""
MODULE OVERVIEW:
This module defines the data structures shared by the provider, the transport and the CLI.

WHAT IS HAPPENING HERE:
Construction options are Pydantic v2 models, frozen so that a provider's authority and
credentials can't drift after it is built. Per-device outcomes are small frozen dataclasses
forming a tagged union: every request resolves to exactly one of them, and the provider
partitions them into a SendResult.
"""
from dataclasses import dataclass, field
from typing import Any, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_PING_INTERVAL_S = 300.0
DEFAULT_REQUEST_TIMEOUT_S = 30.0
TOKEN_TTL_S = 3000.0

AUTHORITY_PRODUCTION = "https://api.push.apple.com:443"
AUTHORITY_SANDBOX = "https://api.development.push.apple.com:443"


class TokenOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str = Field(repr=False)
    key_id: str
    team_id: str


class ProviderOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: TokenOptions
    production: bool = False
    ping_interval_s: float = DEFAULT_PING_INTERVAL_S
    request_timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S
    authority: str | None = None

    # WHAT IS HAPPENING HERE:
    # A zero, negative or missing interval would mean "ping constantly" or "never";
    # both are nonsense for a keepalive, so we quietly fall back to the default.
    @field_validator("ping_interval_s", mode="before")
    @classmethod
    def _default_ping_interval(cls, value: Any) -> Any:
        if value is None or (isinstance(value, (int, float)) and value <= 0):
            return DEFAULT_PING_INTERVAL_S
        return value

    @field_validator("request_timeout_s", mode="before")
    @classmethod
    def _default_request_timeout(cls, value: Any) -> Any:
        if value is None or (isinstance(value, (int, float)) and value <= 0):
            return DEFAULT_REQUEST_TIMEOUT_S
        return value

    def resolve_authority(self) -> str:
        if self.authority:
            return self.authority
        return AUTHORITY_PRODUCTION if self.production else AUTHORITY_SANDBOX


@dataclass(frozen=True)
class NotificationRequest:
    headers: list[tuple[str, str]]
    body: bytes
    device: str


@dataclass(frozen=True)
class Delivered:
    device: str
    apns_id: str | None = None


@dataclass(frozen=True)
class Rejected:
    device: str
    status: str
    response: Any


@dataclass(frozen=True)
class TransportFailed:
    device: str
    error: BaseException


@dataclass(frozen=True)
class MalformedResponse:
    device: str
    status: str
    error: BaseException


DeviceOutcome = Union[Delivered, Rejected, TransportFailed, MalformedResponse]


@dataclass(frozen=True)
class FailedDelivery:
    device: str
    status: str | None = None
    response: Any = None
    error: BaseException | None = None

    @classmethod
    def from_outcome(cls, outcome: DeviceOutcome) -> "FailedDelivery":
        if isinstance(outcome, Rejected):
            return cls(device=outcome.device, status=outcome.status, response=outcome.response)
        if isinstance(outcome, MalformedResponse):
            return cls(device=outcome.device, status=outcome.status, error=outcome.error)
        if isinstance(outcome, TransportFailed):
            return cls(device=outcome.device, error=outcome.error)
        raise TypeError(f"{outcome!r} is not a failed outcome")

    @property
    def reason(self) -> str | None:
        """The APNs `reason` string of a rejection, if the gateway sent one."""
        if isinstance(self.response, dict):
            return self.response.get("reason")
        return None


@dataclass
class SendResult:
    sent: list[str] = field(default_factory=list)
    failed: list[FailedDelivery] = field(default_factory=list)

    @classmethod
    def from_outcomes(cls, outcomes: list[DeviceOutcome]) -> "SendResult":
        result = cls()
        for outcome in outcomes:
            if isinstance(outcome, Delivered):
                result.sent.append(outcome.device)
            else:
                result.failed.append(FailedDelivery.from_outcome(outcome))
        return result
