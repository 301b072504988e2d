"""
MODULE OVERVIEW:
The notification compiler: turns a notification object into APNs request headers and a JSON body.

WHAT IS HAPPENING HERE:
The provider does not care what a notification says. It only asks two questions:
"which `apns-*` headers go on the request?" and "what bytes go in the body?".
Anything answering those two questions (the NotificationCompiler protocol) can be sent.
APNsNotification is the stock implementation covering the common `aps` dictionary keys.
"""
import json
from typing import Any, Literal, Mapping, Protocol
from pydantic import BaseModel, Field

PushType = Literal["alert", "background", "voip", "complication", "fileprovider", "mdm", "location", "liveactivity"]


class NotificationCompiler(Protocol):
    def headers(self) -> Mapping[str, str]: ...

    def compile(self) -> bytes: ...


class APNsNotification(BaseModel):
    # aps dictionary
    alert: str | dict[str, Any] | None = None
    badge: int | None = None
    sound: str | dict[str, Any] | None = None
    category: str | None = None
    thread_id: str | None = None
    content_available: bool = False
    mutable_content: bool = False

    # custom keys placed next to `aps`
    payload: dict[str, Any] = Field(default_factory=dict)

    # request headers
    topic: str | None = None
    push_type: PushType | None = None
    priority: Literal[5, 10] | None = None
    expiry: int | None = None
    collapse_id: str | None = None
    id: str | None = None

    def headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.topic:
            headers["apns-topic"] = self.topic
        push_type = self.push_type or ("background" if self._is_background() else "alert")
        headers["apns-push-type"] = push_type
        if self.priority is not None:
            headers["apns-priority"] = str(self.priority)
        if self.expiry is not None:
            headers["apns-expiration"] = str(self.expiry)
        if self.collapse_id:
            headers["apns-collapse-id"] = self.collapse_id
        if self.id:
            headers["apns-id"] = self.id
        return headers

    def aps(self) -> dict[str, Any]:
        aps: dict[str, Any] = {}
        if self.alert is not None:
            aps["alert"] = self.alert
        if self.badge is not None:
            aps["badge"] = self.badge
        if self.sound is not None:
            aps["sound"] = self.sound
        if self.category:
            aps["category"] = self.category
        if self.thread_id:
            aps["thread-id"] = self.thread_id
        if self.content_available:
            aps["content-available"] = 1
        if self.mutable_content:
            aps["mutable-content"] = 1
        return aps

    def compile(self) -> bytes:
        body = {**self.payload, "aps": self.aps()}
        return json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    def _is_background(self) -> bool:
        return self.content_available and self.alert is None and self.badge is None and self.sound is None
