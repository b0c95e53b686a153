"""
Conversation Service - Shared inbox management

Handles:
- Conversation listing scoped by role
- Message thread retrieval
- Free-form replies gated by the 24-hour window
- Status, priority and assignment updates
"""

import logging
from typing import Optional
from datetime import datetime
from sqlalchemy import or_, desc
from sqlalchemy.orm import Session, Query

from database.database import SessionLocal
from database.models import Contact, Conversation, Message, Profile
from ..auth import CurrentUser
from ..models import (
    ConversationStatus,
    ConversationPriority,
    VisibilityStatus,
    MessageDirection,
    MessageType,
    MessageStatus,
    ConversationResponse,
    ConversationListResponse,
    ConversationUpdateRequest,
    MessageResponse,
    MessageThreadResponse,
    SendMessageRequest,
    DEFAULT_CONTENT_TYPES,
    Role,
)
from ..clients.twilio_messaging import TwilioMessagingClient, format_whatsapp_number
from .conversation_window import ensure_can_send, is_window_open

logger = logging.getLogger(__name__)


def exclude_dormant(query: Query) -> Query:
    """Hide campaign threads that have not had a customer reply yet."""
    return query.filter(
        or_(
            Conversation.visibility_status == VisibilityStatus.ACTIVE.value,
            Conversation.visibility_status.is_(None),
        )
    )


def scope_conversations(db: Session, query: Query, user: CurrentUser) -> Query:
    """
    Restrict a conversation query to what the caller may see.

    - admin / general manager: everything
    - leader: their team's conversations, those assigned to team members,
      and unassigned ones
    - agent: assigned to them, or unassigned
    """
    if user.sees_everything:
        return query

    if user.role == Role.LEADER and user.team_id:
        member_ids = db.query(Profile.id).filter(Profile.team_id == user.team_id)
        return query.filter(
            or_(
                Conversation.team_id == user.team_id,
                Conversation.assigned_to.in_(member_ids),
                Conversation.assigned_to.is_(None),
            )
        )

    return query.filter(
        or_(
            Conversation.assigned_to == user.id,
            Conversation.assigned_to.is_(None),
        )
    )


class ConversationService:
    """
    Service for the shared inbox and conversation replies.
    """

    def __init__(self, db: Optional[Session] = None, client: Optional[TwilioMessagingClient] = None):
        """
        Initialize conversation service.

        Args:
            db: Optional database session.
            client: Twilio client used for replies
        """
        self._db = db
        self._client = client

    def _get_db(self) -> Session:
        """Get or create database session."""
        if self._db:
            return self._db
        return SessionLocal()

    def _close_db(self, db: Session):
        """Close database session if we created it."""
        if not self._db:
            db.close()

    def _get_scoped(self, db: Session, user: CurrentUser, conversation_id: str) -> Optional[Conversation]:
        query = db.query(Conversation).filter(Conversation.id == conversation_id)
        return scope_conversations(db, query, user).first()

    # =========================================================================
    # Inbox (Conversation List)
    # =========================================================================

    def get_inbox(
        self,
        user: CurrentUser,
        status: Optional[ConversationStatus] = None,
        search: Optional[str] = None,
        include_dormant: bool = False,
        page: int = 1,
        page_size: int = 50,
    ) -> ConversationListResponse:
        """
        Get the inbox for a staff member.

        Args:
            user: Caller
            status: Filter by status
            search: Match on contact name or phone number
            include_dormant: Include campaign threads the customer never answered
            page: 1-based page
            page_size: Page size

        Returns:
            Conversations, most recent activity first
        """
        db = self._get_db()
        try:
            query = db.query(Conversation).join(Contact, Conversation.contact_id == Contact.id)
            query = scope_conversations(db, query, user)

            if status:
                query = query.filter(Conversation.status == status.value)

            if not include_dormant:
                query = exclude_dormant(query)

            if search:
                pattern = f"%{search}%"
                query = query.filter(or_(Contact.name.ilike(pattern), Contact.phone_number.ilike(pattern)))

            total = query.count()

            conversations = (
                query.order_by(desc(Conversation.last_message_at), desc(Conversation.created_at))
                .offset((page - 1) * page_size)
                .limit(page_size)
                .all()
            )

            return ConversationListResponse(
                conversations=[self._to_conversation_response(db, c) for c in conversations],
                total=total,
                page=page,
                page_size=page_size,
            )

        finally:
            self._close_db(db)

    def get_conversation(self, user: CurrentUser, conversation_id: str) -> Optional[ConversationResponse]:
        """Get a single conversation."""
        db = self._get_db()
        try:
            conversation = self._get_scoped(db, user, conversation_id)
            if not conversation:
                return None
            return self._to_conversation_response(db, conversation)

        finally:
            self._close_db(db)

    def update_conversation(
        self, user: CurrentUser, conversation_id: str, data: ConversationUpdateRequest
    ) -> Optional[ConversationResponse]:
        """Update conversation status, priority or assignment."""
        db = self._get_db()
        try:
            conversation = self._get_scoped(db, user, conversation_id)
            if not conversation:
                return None

            if data.status is not None:
                conversation.status = data.status.value
                if data.status == ConversationStatus.CLOSED:
                    conversation.is_within_window = False

            if data.priority is not None:
                conversation.priority = data.priority.value

            if data.assigned_to is not None:
                if data.assigned_to == "":
                    conversation.assigned_to = None
                else:
                    assignee = db.query(Profile).filter(Profile.id == data.assigned_to).first()
                    if not assignee:
                        raise ValueError("Assignee not found")
                    conversation.assigned_to = assignee.id
                    conversation.team_id = assignee.team_id

            db.commit()

            return self._to_conversation_response(db, conversation)

        finally:
            self._close_db(db)

    # =========================================================================
    # Messages
    # =========================================================================

    def get_messages(
        self,
        user: CurrentUser,
        conversation_id: str,
        limit: int = 200,
    ) -> Optional[MessageThreadResponse]:
        """
        Get messages in a conversation thread, oldest first.
        """
        db = self._get_db()
        try:
            conversation = self._get_scoped(db, user, conversation_id)
            if not conversation:
                return None

            total = db.query(Message).filter(Message.conversation_id == conversation_id).count()

            # Newest page, then back to chronological order
            messages = (
                db.query(Message)
                .filter(Message.conversation_id == conversation_id)
                .order_by(desc(Message.timestamp))
                .limit(limit)
                .all()
            )
            messages = list(reversed(messages))

            names = self._sender_names(db, messages)

            return MessageThreadResponse(
                conversation=self._to_conversation_response(db, conversation),
                messages=[self._to_message_response(m, names.get(m.sent_by)) for m in messages],
                total_messages=total,
            )

        finally:
            self._close_db(db)

    async def send_message(
        self,
        user: CurrentUser,
        conversation_id: str,
        data: SendMessageRequest,
        now: Optional[datetime] = None,
    ) -> Optional[MessageResponse]:
        """
        Send a free-form reply.

        Raises:
            ConversationClosedError / WindowExpiredError: window gate
            TwilioAPIError: gateway rejected the send

        Returns:
            Stored outbound message, or None when the conversation is not found
        """
        now = now or datetime.utcnow()
        db = self._get_db()
        owns_client = self._client is None
        client = self._client or TwilioMessagingClient()
        try:
            conversation = self._get_scoped(db, user, conversation_id)
            if not conversation:
                return None

            contact = db.query(Contact).filter(Contact.id == conversation.contact_id).first()
            if not contact:
                return None

            # Check 24-hour window
            ensure_can_send(conversation, now)

            media_url = data.media_url if data.message_type != MessageType.TEXT else None

            result = await client.send_message(
                to=contact.phone_number,
                body=data.message,
                media_url=media_url,
            )

            media_content_type = None
            if data.message_type != MessageType.TEXT:
                media_content_type = data.media_content_type or DEFAULT_CONTENT_TYPES.get(data.message_type.value)

            message = Message(
                conversation_id=conversation.id,
                message_sid=result.get("sid"),
                direction=MessageDirection.OUTBOUND.value,
                message_type=data.message_type.value,
                content=data.message,
                media_url=media_url,
                media_content_type=media_content_type,
                from_number=client.from_number,
                to_number=format_whatsapp_number(contact.phone_number),
                sent_by=user.id,
                status=MessageStatus.SENT.value,
                timestamp=now,
            )
            db.add(message)

            conversation.last_message_at = now
            conversation.status = ConversationStatus.OPEN.value
            if conversation.assigned_to is None:
                conversation.assigned_to = user.id
                conversation.team_id = user.team_id

            db.commit()

            logger.info(f"Reply sent in conversation {conversation.id} by {user.id}: {message.message_sid}")

            return self._to_message_response(message, user.full_name)

        finally:
            if owns_client:
                await client.close()
            self._close_db(db)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _sender_names(self, db: Session, messages):
        ids = {m.sent_by for m in messages if m.sent_by}
        if not ids:
            return {}
        return dict(db.query(Profile.id, Profile.full_name).filter(Profile.id.in_(ids)).all())

    def _to_conversation_response(self, db: Session, conversation: Conversation) -> ConversationResponse:
        """Convert database conversation to response model."""
        contact = conversation.contact

        last_message = (
            db.query(Message)
            .filter(Message.conversation_id == conversation.id)
            .order_by(desc(Message.timestamp))
            .first()
        )

        preview = None
        if last_message:
            preview = (last_message.content or "")[:100] or f"[{last_message.message_type}]"

        return ConversationResponse(
            id=conversation.id,
            contact_id=conversation.contact_id,
            contact_name=contact.name if contact else None,
            contact_phone=contact.phone_number if contact else None,
            contact_profile_pic=contact.profile_picture_url if contact else None,
            status=ConversationStatus(conversation.status),
            priority=ConversationPriority(conversation.priority or "normal"),
            visibility_status=VisibilityStatus(conversation.visibility_status or "active"),
            assigned_to=conversation.assigned_to,
            created_by_campaign=conversation.created_by_campaign,
            last_message_preview=preview,
            last_message_at=conversation.last_message_at,
            last_customer_message_at=conversation.last_customer_message_at,
            conversation_window_expires_at=conversation.conversation_window_expires_at,
            is_within_window=is_window_open(conversation),
            created_at=conversation.created_at,
        )

    def _to_message_response(self, message: Message, sent_by_name: Optional[str] = None) -> MessageResponse:
        """Convert database message to response model."""
        return MessageResponse(
            id=message.id,
            conversation_id=message.conversation_id,
            message_sid=message.message_sid,
            direction=MessageDirection(message.direction),
            message_type=MessageType(message.message_type) if message.message_type else MessageType.TEXT,
            content=message.content,
            media_url=message.media_url,
            media_content_type=message.media_content_type,
            sent_by=message.sent_by,
            sent_by_name=sent_by_name,
            status=MessageStatus(message.status) if message.status else None,
            error_message=message.error_message,
            timestamp=message.timestamp,
            delivered_at=message.delivered_at,
            read_at=message.read_at,
        )


# Convenience function
def get_conversation_service(
    db: Optional[Session] = None, client: Optional[TwilioMessagingClient] = None
) -> ConversationService:
    """Get a conversation service instance."""
    return ConversationService(db, client)
