import httpx
import logging
from typing import Optional

from errors import HeartbeatDeliveryError

logger = logging.getLogger("RconHeartbeat.Notifications")


class HeartbeatClient:
    """Pushes a heartbeat to the external uptime collector (push monitor URL)."""

    def __init__(self, url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def notify(self) -> None:
        """
        Send one heartbeat.

        Raises:
            HeartbeatDeliveryError: the request failed or the collector did not answer 2xx
        """
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(self.url, timeout=self.timeout)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise HeartbeatDeliveryError(f"Error sending heartbeat to {self.url}: {e}") from e

        if not response.is_success:
            raise HeartbeatDeliveryError(
                f"Heartbeat rejected: status={response.status_code}, response={response.text[:200]}",
                status_code=response.status_code,
            )

        logger.info(f"[HEARTBEAT] Sent to {self.url}")
