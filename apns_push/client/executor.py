"""
MODULE OVERVIEW:
Runs one notification request on the shared session and turns whatever happens into a DeviceOutcome.

WHAT IS HAPPENING HERE:
`execute()` never raises (cancellation aside). A reset stream, a dropped connection, a
connect that never succeeded, a request that outlived its timeout: all of these come back
as TransportFailed. A response with status "200" is Delivered; any other status is
Rejected with the JSON body APNs sends (`{"reason": "BadDeviceToken"}` and friends).
A rejection body that isn't JSON becomes MalformedResponse instead of an exception
escaping into the provider's fan-in.
"""
import asyncio
import json

from loguru import logger

from apns_push.client.h2_session import H2Response, Http2Session
from apns_push.shared.client_utils import mask_device
from apns_push.shared.errors import MalformedResponseError, RequestTimeoutError, TransportError
from apns_push.shared.models import (
    DEFAULT_REQUEST_TIMEOUT_S,
    Delivered,
    DeviceOutcome,
    MalformedResponse,
    NotificationRequest,
    Rejected,
    TransportFailed,
)

SUCCESS_STATUS = "200"


class RequestExecutor:
    def __init__(self, timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S):
        self.timeout_s = timeout_s

    async def execute(self, session: Http2Session, request: NotificationRequest) -> DeviceOutcome:
        device = request.device
        try:
            response = await asyncio.wait_for(session.request(request.headers, request.body), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            error = RequestTimeoutError(f"no response for device {mask_device(device)} within {self.timeout_s}s")
            logger.warning(f"device={mask_device(device)} event=timeout timeout_s={self.timeout_s}")
            return TransportFailed(device=device, error=error)
        except (TransportError, OSError) as e:
            logger.warning(f"device={mask_device(device)} event=transport_error reason='{e!r}'")
            return TransportFailed(device=device, error=e)
        return classify_response(device, response)


def classify_response(device: str, response: H2Response) -> DeviceOutcome:
    status = response.status
    if status == SUCCESS_STATUS:
        logger.debug(f"device={mask_device(device)} status={status} event=delivered")
        return Delivered(device=device, apns_id=response.headers.get("apns-id"))

    text = response.body.decode("utf-8", errors="replace")
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        logger.warning(f"device={mask_device(device)} status={status} event=malformed_response")
        return MalformedResponse(device=device, status=status, error=MalformedResponseError(status, text))

    logger.warning(f"device={mask_device(device)} status={status} event=rejected body={text}")
    return Rejected(device=device, status=status, response=parsed)
