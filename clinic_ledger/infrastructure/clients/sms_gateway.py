"""SMS gateway HTTP client (Hubtel personalized batch API)"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx

from clinic_ledger.config import settings
from clinic_ledger.domain.exceptions import ConfigurationError, GatewayError
from clinic_ledger.infrastructure.observability.metrics import gateway_failure_counter, gateway_latency_histogram
from clinic_ledger.utils.phone import format_phone_number

SEND_PATH = "/v1/messages/batch/personalized/send"
STATUS_PATH = "/v1/messages/{message_id}"


@dataclass
class GatewayDelivery:
    """Gateway-assigned identifiers for one recipient"""

    message_id: Optional[str]
    status: str = "sent"


@dataclass
class GatewayResponse:
    batch_id: Optional[str]
    deliveries: List[GatewayDelivery] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)


def _first(mapping: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = mapping.get(key)
        if value:
            return str(value)
    return None


def parse_send_response(result: Dict[str, Any], recipient_count: int) -> GatewayResponse:
    """
    Map a send response onto one delivery per recipient.

    The gateway may answer with one message entry per recipient or with an
    aggregate-only payload; in the latter case every recipient shares the
    aggregate message id (if any).
    """
    batch_id = _first(result, "batchId", "id", "batch_id")
    messages = result.get("messages") or (result.get("data") or {}).get("messages") or []
    if not isinstance(messages, list):
        messages = []

    fallback_id = _first(result, "messageId", "id")
    deliveries = []
    for index in range(recipient_count):
        message = messages[index] if index < len(messages) and isinstance(messages[index], dict) else {}
        deliveries.append(
            GatewayDelivery(
                message_id=_first(message, "messageId", "id", "message_id") or fallback_id,
                status=str(message.get("status") or "sent"),
            )
        )
    return GatewayResponse(batch_id=batch_id, deliveries=deliveries, raw=result)


class SmsGatewayClient:
    """Client for the external SMS gateway"""

    def __init__(
        self,
        base_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.sms_api_base).rstrip("/")
        self.client_id = client_id if client_id is not None else settings.sms_client_id
        self.client_secret = client_secret if client_secret is not None else settings.sms_client_secret
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    def _auth(self) -> httpx.BasicAuth:
        if not self.client_id or not self.client_secret:
            raise ConfigurationError("SMS gateway credentials not configured")
        return httpx.BasicAuth(self.client_id, self.client_secret)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            auth=self._auth(),
            transport=self.transport,
            headers={"Accept": "application/json"},
        )

    async def send_personalized(
        self,
        sender: str,
        recipients: Sequence[Tuple[str, str]],
    ) -> GatewayResponse:
        """
        Send one personalized message per (phone, content) pair in a single batch.

        Raises:
            ConfigurationError: When credentials are missing
            GatewayError: On timeout, transport errors, HTTP errors, or an unreadable response
        """
        payload = {
            "From": sender,
            "personalizedRecipients": [
                {"To": format_phone_number(phone, settings.default_country_code), "Content": content}
                for phone, content in recipients
            ],
        }

        async with self._client() as client:
            try:
                with gateway_latency_histogram.time():
                    response = await client.post(f"{self.base_url}{SEND_PATH}", json=payload)
                    response.raise_for_status()
                result = response.json() if response.content else {}
                if not isinstance(result, dict):
                    result = {"data": result}
                return parse_send_response(result, len(recipients))

            except httpx.TimeoutException as e:
                gateway_failure_counter.inc()
                raise GatewayError(f"SMS gateway timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                gateway_failure_counter.inc()
                raise GatewayError(
                    f"SMS gateway error: {e.response.status_code} {e.response.text[:200]}"
                ) from e
            except httpx.RequestError as e:
                gateway_failure_counter.inc()
                raise GatewayError(f"SMS gateway unreachable: {e}") from e
            except ValueError as e:
                gateway_failure_counter.inc()
                raise GatewayError(f"Invalid response from SMS gateway: {e}") from e

    async def get_message_status(self, message_id: str) -> Dict[str, Any]:
        """
        Fetch delivery status for a message or batch id.

        The payload is returned untouched; only HTTP success is checked.
        """
        message_id = (message_id or "").strip()
        if not message_id:
            raise GatewayError("Message ID or Batch ID is required")

        path = STATUS_PATH.format(message_id=quote(message_id, safe=""))
        async with self._client() as client:
            try:
                response = await client.get(f"{self.base_url}{path}")
                response.raise_for_status()
                return response.json()
            except httpx.TimeoutException as e:
                raise GatewayError(f"SMS gateway timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise GatewayError(f"SMS gateway error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise GatewayError(f"SMS gateway unreachable: {e}") from e
            except ValueError as e:
                raise GatewayError(f"Invalid response from SMS gateway: {e}") from e
