"""
Twilio Messaging Client - WhatsApp sends and Content API templates

Talks to the Twilio REST API directly over httpx with HTTP basic auth
(account SID / auth token).

Docs:
- Messages: https://www.twilio.com/docs/messaging/api/message-resource
- Content API: https://www.twilio.com/docs/content/content-api-resources
- Webhook security: https://www.twilio.com/docs/usage/webhooks/webhooks-security
"""

import base64
import hashlib
import hmac
import json
import logging
from typing import Optional, Dict, Any, List, Tuple
from urllib.parse import urlparse

import httpx

from ..config import get_engage_settings
from ..errors import TwilioAPIError

logger = logging.getLogger(__name__)


# Twilio delivery status -> internal status
TWILIO_STATUS_MAP: Dict[str, str] = {
    "queued": "pending",
    "sent": "sent",
    "delivered": "delivered",
    "read": "read",
    "failed": "failed",
    "undelivered": "failed",
}


def format_whatsapp_number(phone_number: str) -> str:
    """Normalise a phone number to Twilio's `whatsapp:+E164` address form."""
    cleaned = "".join(phone_number.split())
    if cleaned.startswith("whatsapp:"):
        return cleaned
    return f"whatsapp:{cleaned}"


def strip_whatsapp_prefix(address: str) -> str:
    """`whatsapp:+62812...` -> `+62812...`"""
    return address.replace("whatsapp:", "", 1) if address else address


def is_twilio_media_url(url: Optional[str]) -> bool:
    """Only Twilio-hosted https URLs may receive the account credentials."""
    if not url:
        return False
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    return parsed.scheme == "https" and (host == "twilio.com" or host.endswith(".twilio.com"))


def compute_twilio_signature(url: str, params: Dict[str, Any], auth_token: str) -> str:
    """
    Compute the X-Twilio-Signature for a request.

    The full URL is followed by every POST parameter, sorted by name, with
    the name and value concatenated; the result is HMAC-SHA1 signed with the
    auth token and base64 encoded.
    """
    payload = url + "".join(f"{k}{v}" for k, v in sorted(params.items()))
    mac = hmac.new(auth_token.encode(), payload.encode(), hashlib.sha1).digest()
    return base64.b64encode(mac).decode()


def verify_twilio_signature(
    url: str, params: Dict[str, Any], signature: Optional[str], auth_token: Optional[str]
) -> bool:
    """Check an X-Twilio-Signature header value."""
    if not signature or not auth_token:
        return False
    expected = compute_twilio_signature(url, params, auth_token)
    return hmac.compare_digest(expected, signature)


class TwilioMessagingClient:
    """
    Async client for the Twilio Messages and Content APIs.
    """

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the messaging client.

        Args:
            account_sid: Twilio account SID (defaults to settings)
            auth_token: Twilio auth token (defaults to settings)
            from_number: WhatsApp sender address, e.g. whatsapp:+628979118504
            transport: Optional httpx transport (used by tests)
        """
        settings = get_engage_settings()
        self.account_sid = account_sid or settings.twilio_account_sid
        self.auth_token = auth_token or settings.twilio_auth_token
        self.from_number = from_number or settings.twilio_whatsapp_from
        self.api_base_url = settings.twilio_api_base_url
        self.content_base_url = settings.twilio_content_base_url
        self.status_callback = settings.twilio_webhook_url

        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if not (self.account_sid and self.auth_token):
            raise ValueError("Twilio credentials are not configured")
        if self._client is None:
            self._client = httpx.AsyncClient(
                auth=(self.account_sid, self.auth_token),
                timeout=30.0,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    @staticmethod
    def _raise_for_error(response: httpx.Response):
        """Turn a Twilio error body into TwilioAPIError."""
        if response.is_success:
            return
        try:
            body = response.json()
        except ValueError:
            body = {}
        message = body.get("message") or response.text or f"HTTP {response.status_code}"
        logger.error(f"Twilio API error {body.get('code')}: {message}")
        raise TwilioAPIError(
            message=message,
            code=body.get("code"),
            more_info=body.get("more_info"),
            status=response.status_code,
        )

    @property
    def _messages_url(self) -> str:
        return f"{self.api_base_url}/Accounts/{self.account_sid}/Messages.json"

    # =========================================================================
    # Messages
    # =========================================================================

    async def send_template(
        self,
        to: str,
        content_sid: str,
        content_variables: Dict[str, str],
        status_callback: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send an approved WhatsApp template.

        Templates can be sent outside the 24-hour window.

        Args:
            to: Recipient phone number (E.164 or whatsapp: address)
            content_sid: Twilio Content SID (HX...)
            content_variables: Variable values keyed by template variable name
            status_callback: Delivery status webhook (defaults to settings)

        Returns:
            Twilio message resource (sid, status, ...)
        """
        client = await self._get_client()

        data = {
            "From": self.from_number,
            "To": format_whatsapp_number(to),
            "ContentSid": content_sid,
            "ContentVariables": json.dumps(content_variables),
            "StatusCallback": status_callback or self.status_callback,
            "StatusCallbackMethod": "POST",
        }

        response = await client.post(self._messages_url, data=data)
        self._raise_for_error(response)

        result = response.json()
        logger.info(f"Template {content_sid} sent to {to}: {result.get('sid')}")
        return result

    async def send_message(
        self,
        to: str,
        body: str,
        media_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send a free-form WhatsApp message (text or media with caption).

        Only allowed while the customer's 24-hour window is open; Twilio
        answers 63016 otherwise.
        """
        client = await self._get_client()

        data = {
            "From": self.from_number,
            "To": format_whatsapp_number(to),
            "Body": body,
        }
        if media_url:
            data["MediaUrl"] = media_url

        response = await client.post(self._messages_url, data=data)
        self._raise_for_error(response)

        result = response.json()
        logger.info(f"WhatsApp message sent to {to}: {result.get('sid')}")
        return result

    async def fetch_media(self, media_url: str) -> Tuple[bytes, Optional[str]]:
        """
        Download inbound media. Twilio media URLs require basic auth.

        Returns:
            (content bytes, content type)
        """
        if not is_twilio_media_url(media_url):
            raise ValueError("Media URL is not hosted by Twilio")

        client = await self._get_client()
        response = await client.get(media_url, follow_redirects=True)
        self._raise_for_error(response)
        return response.content, response.headers.get("content-type")

    # =========================================================================
    # Content API (templates)
    # =========================================================================

    async def list_content_templates(self, page_size: int = 50) -> List[Dict[str, Any]]:
        """
        List every Content API template, following pagination.
        """
        client = await self._get_client()

        templates: List[Dict[str, Any]] = []
        url: Optional[str] = f"{self.content_base_url}/Content"
        params: Optional[Dict[str, Any]] = {"PageSize": page_size}

        while url:
            response = await client.get(url, params=params)
            self._raise_for_error(response)
            result = response.json()

            templates.extend(result.get("contents", []))
            url = result.get("meta", {}).get("next_page_url")
            params = None  # next_page_url already carries the query

        return templates

    async def get_content_template(self, content_sid: str) -> Dict[str, Any]:
        """Fetch one Content API template."""
        client = await self._get_client()
        response = await client.get(f"{self.content_base_url}/Content/{content_sid}")
        self._raise_for_error(response)
        return response.json()

    async def get_approval_status(self, content_sid: str) -> Optional[str]:
        """
        WhatsApp approval status of a template (approved, pending, rejected...).

        Returns None when the template was never submitted for approval.
        """
        client = await self._get_client()
        response = await client.get(
            f"{self.content_base_url}/Content/{content_sid}/ApprovalRequests"
        )
        if response.status_code == 404:
            return None
        self._raise_for_error(response)
        whatsapp = response.json().get("whatsapp") or {}
        return whatsapp.get("status")

