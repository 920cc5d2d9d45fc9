"""WhatsApp notification transport over the Z-API HTTP interface.

Send failures are reported as SendResult values and never raised, so one
bad number or a provider outage cannot abort a reminder sweep.
"""

from typing import Any, Optional

import httpx

from recharge_engine.config import get_config
from recharge_engine.logging_config import get_logger
from recharge_engine.models import SendResult, WhatsAppConfig
from recharge_engine.utils.identifiers import normalize_phone

logger = get_logger(__name__)


def _describe_http_error(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    detail = body.get("message") if isinstance(body, dict) else None
    return f"Z-API error: {response.status_code} - {detail or response.reason_phrase}"


class ZApiTransport:
    """Sends text messages through a Z-API instance.

    Args:
        settings: WhatsApp settings (uses global configuration if not provided)
        client: Pre-built httpx client, mainly for tests with MockTransport
    """

    def __init__(
        self,
        settings: Optional[WhatsAppConfig] = None,
        client: Optional[httpx.Client] = None,
    ):
        self._settings = settings if settings is not None else get_config().whatsapp_settings
        self._client = client or httpx.Client(timeout=self._settings.timeout_seconds)
        self._owns_client = client is None

    @property
    def is_configured(self) -> bool:
        """True when the integration is active and both credentials are set."""
        return self._settings.is_configured

    def _instance_url(self, action: str) -> str:
        s = self._settings
        return f"{s.base_url.rstrip('/')}/instances/{s.instance_id}/token/{s.api_key}/{action}"

    def _headers(self) -> dict:
        return {"Client-Token": self._settings.client_token or self._settings.api_key}

    def send_message(self, phone_number: str, message: str) -> SendResult:
        """Send a text message.

        Args:
            phone_number: Phone in any format; normalised to digits with country code
            message: Message text (WhatsApp markdown)

        Returns:
            SendResult with the provider message id on success
        """
        if not self.is_configured:
            return SendResult(success=False, error="WhatsApp integration not configured")

        phone = normalize_phone(phone_number, self._settings.country_code)
        if not phone:
            return SendResult(success=False, error="Missing phone number")

        try:
            response = self._client.post(
                self._instance_url("send-text"),
                json={"phone": phone, "message": message},
                headers=self._headers(),
                timeout=self._settings.timeout_seconds,
            )
        except httpx.TimeoutException:
            logger.warning("whatsapp_send_timeout", phone_suffix=phone[-4:])
            return SendResult(success=False, error="Timeout calling Z-API")
        except httpx.HTTPError as e:
            logger.warning("whatsapp_send_failed", phone_suffix=phone[-4:], error=str(e))
            return SendResult(success=False, error=f"Connection error calling Z-API: {e}")

        if response.is_error:
            error = _describe_http_error(response)
            logger.warning("whatsapp_send_rejected", phone_suffix=phone[-4:], status_code=response.status_code)
            return SendResult(success=False, error=error)

        data: Any
        try:
            data = response.json()
        except ValueError:
            data = {}
        message_id = None
        if isinstance(data, dict):
            message_id = data.get("messageId") or data.get("id")

        logger.info("whatsapp_message_sent", phone_suffix=phone[-4:], message_id=message_id)
        return SendResult(success=True, message_id=message_id)

    def send_reminder(self, phone_number: str, message: str) -> SendResult:
        """Send an expiry reminder. Same contract as send_message."""
        return self.send_message(phone_number, message)

    def test_connection(self) -> dict:
        """Query the instance status endpoint.

        Returns:
            Dictionary with success, and details or error
        """
        if not self.is_configured:
            return {"success": False, "error": "WhatsApp integration not configured"}

        try:
            response = self._client.get(
                self._instance_url("status"),
                headers=self._headers(),
                timeout=self._settings.timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.warning("whatsapp_connection_test_failed", error=str(e))
            return {"success": False, "error": f"Connection error calling Z-API: {e}"}

        if response.is_error:
            return {"success": False, "error": _describe_http_error(response)}

        try:
            details = response.json()
        except ValueError:
            details = response.text
        return {"success": True, "details": details}

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


_transport: Optional[ZApiTransport] = None


def get_notification_transport() -> ZApiTransport:
    """Get global WhatsApp transport instance."""
    global _transport
    if _transport is None:
        _transport = ZApiTransport()
    return _transport


def reset_notification_transport() -> None:
    """Close and drop the global transport."""
    global _transport
    if _transport is not None:
        _transport.close()
    _transport = None


def set_notification_transport(transport: Optional[ZApiTransport]) -> None:
    """Replace the global transport (None drops it)."""
    global _transport
    _transport = transport
