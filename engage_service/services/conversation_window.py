"""
Conversation Window Tracker - WhatsApp 24-hour customer service window

A conversation's window opens on every inbound customer message and
lapses `conversation_window_hours` later. While open, agents may send
free-form messages; once lapsed only approved templates may reach the
customer. A periodic sweep closes lapsed conversations; the next inbound
message then starts a fresh conversation.

States:
- open, window open: free-form replies allowed
- open, window lapsed: templates only, waiting for the sweep
- closed: swept; nothing can be sent on this thread
"""

import logging
from typing import Optional, List
from datetime import datetime, timedelta
from sqlalchemy.orm import Session, joinedload

from database.database import SessionLocal
from database.models import Conversation
from ..config import get_engage_settings
from ..errors import ConversationClosedError, WindowExpiredError
from ..models import (
    ConversationStatus,
    VisibilityStatus,
    WindowStatusItem,
    WindowReportResponse,
)

logger = logging.getLogger(__name__)


def window_length() -> timedelta:
    return timedelta(hours=get_engage_settings().conversation_window_hours)


def record_inbound(conversation: Conversation, at: Optional[datetime] = None) -> Conversation:
    """
    Roll the window forward for an inbound customer message.

    A dormant campaign conversation becomes active: the customer replied.
    """
    at = at or datetime.utcnow()

    conversation.last_customer_message_at = at
    conversation.conversation_window_expires_at = at + window_length()
    conversation.is_within_window = True
    conversation.status = ConversationStatus.OPEN.value
    conversation.last_message_at = at

    if conversation.visibility_status == VisibilityStatus.DORMANT.value:
        conversation.visibility_status = VisibilityStatus.ACTIVE.value
        logger.info(f"Campaign conversation {conversation.id} activated by customer reply")

    return conversation


def is_window_open(conversation: Conversation, now: Optional[datetime] = None) -> bool:
    """True while the expiry is set and still in the future."""
    now = now or datetime.utcnow()
    expires_at = conversation.conversation_window_expires_at
    return expires_at is not None and now < expires_at


def ensure_can_send(conversation: Conversation, now: Optional[datetime] = None) -> None:
    """
    Gate a free-form outbound send.

    Raises:
        ConversationClosedError: the conversation was closed
        WindowExpiredError: the 24h window lapsed or never opened
    """
    if conversation.status == ConversationStatus.CLOSED.value:
        raise ConversationClosedError(
            "This conversation is closed. Wait for the customer to message again.",
            conversation_id=conversation.id,
        )

    if not is_window_open(conversation, now):
        raise WindowExpiredError(
            "The 24-hour conversation window has expired. "
            "Only template messages can be sent until the customer replies.",
            conversation_id=conversation.id,
        )


class ConversationWindowTracker:
    """
    Batch operations over conversation windows (sweep, report, refresh).
    """

    def __init__(self, db: Optional[Session] = None):
        """
        Initialize the tracker.

        Args:
            db: Optional database session.
        """
        self._db = db

    def _get_db(self) -> Session:
        """Get or create database session."""
        if self._db:
            return self._db
        return SessionLocal()

    def _close_db(self, db: Session):
        """Close database session if we created it."""
        if not self._db:
            db.close()

    def close_expired(self, now: Optional[datetime] = None) -> int:
        """
        Close every non-closed conversation whose window lapsed.

        Returns:
            Number of conversations closed
        """
        now = now or datetime.utcnow()
        db = self._get_db()
        try:
            expired = (
                db.query(Conversation)
                .filter(
                    Conversation.status != ConversationStatus.CLOSED.value,
                    Conversation.conversation_window_expires_at.isnot(None),
                    Conversation.conversation_window_expires_at < now,
                )
                .all()
            )

            for conversation in expired:
                conversation.status = ConversationStatus.CLOSED.value
                conversation.is_within_window = False

            db.commit()

            if expired:
                logger.info(f"Closed {len(expired)} expired conversations")
            return len(expired)

        except Exception:
            db.rollback()
            raise

        finally:
            self._close_db(db)

    def window_report(self, now: Optional[datetime] = None) -> WindowReportResponse:
        """
        Conversations expiring within the configured horizon, and those
        already expired but not yet closed.
        """
        now = now or datetime.utcnow()
        horizon = now + timedelta(minutes=get_engage_settings().window_expiring_soon_minutes)

        db = self._get_db()
        try:
            base = (
                db.query(Conversation)
                .options(joinedload(Conversation.contact))
                .filter(Conversation.status != ConversationStatus.CLOSED.value)
            )

            expiring_soon = (
                base.filter(
                    Conversation.status == ConversationStatus.OPEN.value,
                    Conversation.conversation_window_expires_at >= now,
                    Conversation.conversation_window_expires_at <= horizon,
                )
                .order_by(Conversation.conversation_window_expires_at)
                .all()
            )

            already_expired = (
                base.filter(Conversation.conversation_window_expires_at < now)
                .order_by(Conversation.conversation_window_expires_at)
                .all()
            )

            return WindowReportResponse(
                expiring_soon=[self._to_item(c, now) for c in expiring_soon],
                already_expired=[self._to_item(c, now) for c in already_expired],
                expiring_soon_count=len(expiring_soon),
                already_expired_count=len(already_expired),
            )

        finally:
            self._close_db(db)

    def refresh_flags(self, now: Optional[datetime] = None) -> int:
        """
        Recompute `is_within_window` for open conversations.

        Returns:
            Number of conversations whose flag changed
        """
        now = now or datetime.utcnow()
        db = self._get_db()
        try:
            conversations = (
                db.query(Conversation)
                .filter(Conversation.status != ConversationStatus.CLOSED.value)
                .all()
            )

            changed = 0
            for conversation in conversations:
                within = is_window_open(conversation, now)
                if bool(conversation.is_within_window) != within:
                    conversation.is_within_window = within
                    changed += 1

            db.commit()
            return changed

        except Exception:
            db.rollback()
            raise

        finally:
            self._close_db(db)

    def _to_item(self, conversation: Conversation, now: datetime) -> WindowStatusItem:
        contact = conversation.contact
        return WindowStatusItem(
            id=conversation.id,
            status=ConversationStatus(conversation.status),
            contact_name=contact.name if contact else None,
            contact_phone=contact.phone_number if contact else None,
            conversation_window_expires_at=conversation.conversation_window_expires_at,
            is_within_window=is_window_open(conversation, now),
        )


def get_window_tracker(db: Optional[Session] = None) -> ConversationWindowTracker:
    """Get a conversation window tracker instance."""
    return ConversationWindowTracker(db)
