"""
Domain errors raised by the engage services.

Routes translate these into HTTP responses; services never build
responses themselves.
"""

from typing import Optional, Tuple


class WindowError(Exception):
    """Outbound free-form send blocked by the conversation window."""

    code = "WINDOW_ERROR"
    status_code = 400

    def __init__(self, message: str, conversation_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.conversation_id = conversation_id


class ConversationClosedError(WindowError):
    """Conversation was closed; a new inbound message is needed to reopen."""

    code = "CONVERSATION_CLOSED"


class WindowExpiredError(WindowError):
    """More than 24h since the last customer message; templates only."""

    code = "WINDOW_EXPIRED"


# Known Twilio error codes -> (user-facing message, HTTP status)
TWILIO_ERROR_MESSAGES = {
    21408: ("Permission to send media is not enabled for this number", 403),
    21610: ("Message cannot be sent to this WhatsApp number", 400),
    21614: ("Message body is required when not sending media", 400),
    21623: ("Media file size exceeds limit (20MB)", 400),
    21624: ("Media file type not supported by WhatsApp", 400),
    30008: ("Unknown WhatsApp recipient - number may not be registered", 400),
    63016: ("Media URL could not be accessed or downloaded", 400),
    63017: ("Media file is corrupted or invalid", 400),
}


class TwilioAPIError(Exception):
    """Non-2xx answer from the Twilio REST API."""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        more_info: Optional[str] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.more_info = more_info
        self.status = status

    def user_facing(self) -> Tuple[str, int]:
        """Message and HTTP status to show the caller."""
        if self.code in TWILIO_ERROR_MESSAGES:
            return TWILIO_ERROR_MESSAGES[self.code]
        return self.message or "Failed to send message", 500
