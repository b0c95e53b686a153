"""
Media Service - Inbound media proxy and outbound media upload

Twilio media URLs need the account's basic auth, so the dashboard reads
inbound media through this service. Outbound media is uploaded to the
hosted storage bucket, whose public URL is then handed to Twilio.
"""

import os
import uuid
import logging
from typing import Optional, Tuple
from datetime import datetime
from sqlalchemy.orm import Session

from database.database import SessionLocal
from database.models import Conversation, Message
from ..auth import CurrentUser
from ..models import ConversationStatus, MediaUploadResponse
from ..clients.twilio_messaging import TwilioMessagingClient
from ..clients.supabase_admin import SupabaseAdminClient
from .conversation_service import scope_conversations

logger = logging.getLogger(__name__)

# Twilio's WhatsApp media limit
MAX_FILE_SIZE = 20 * 1024 * 1024

ALLOWED_CONTENT_TYPES = {
    # Images
    "image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp", "image/bmp",
    # Videos
    "video/mp4", "video/webm", "video/avi", "video/mov", "video/quicktime",
    # Audio
    "audio/mpeg", "audio/mp3", "audio/wav", "audio/ogg", "audio/m4a", "audio/mp4",
    # Documents
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/plain",
    "text/csv",
}


def validate_upload(filename: str, content_type: Optional[str], size: int):
    """
    Raises:
        ValueError: empty, too large or unsupported file
    """
    if size == 0:
        raise ValueError("File is empty")
    if size > MAX_FILE_SIZE:
        raise ValueError("File size exceeds 20MB limit")
    if not content_type or content_type.lower() not in ALLOWED_CONTENT_TYPES:
        raise ValueError(f"File type {content_type or 'unknown'} is not supported")


def build_upload_path(conversation_id: str, filename: str, now: Optional[datetime] = None) -> str:
    """Storage path for an outbound file, unique per upload."""
    now = now or datetime.utcnow()
    extension = os.path.splitext(filename or "")[1].lower()
    suffix = uuid.uuid4().hex[:6]
    return f"conversations/{conversation_id}/media/{int(now.timestamp() * 1000)}_{suffix}{extension}"


class MediaService:
    """
    Service for message media.
    """

    def __init__(
        self,
        db: Optional[Session] = None,
        client: Optional[TwilioMessagingClient] = None,
        storage: Optional[SupabaseAdminClient] = None,
    ):
        self._db = db
        self._client = client
        self._storage = storage

    def _get_db(self) -> Session:
        """Get or create database session."""
        if self._db:
            return self._db
        return SessionLocal()

    def _close_db(self, db: Session):
        """Close database session if we created it."""
        if not self._db:
            db.close()

    async def fetch_message_media(
        self, user: CurrentUser, message_id: str
    ) -> Optional[Tuple[bytes, str]]:
        """
        Download a message's media with Twilio credentials.

        Returns:
            (content, content type), or None when the message has no media or
            is outside the caller's inbox
        """
        owns_client = self._client is None
        client = self._client or TwilioMessagingClient()
        db = self._get_db()
        try:
            message = db.query(Message).filter(Message.id == message_id).first()
            if not message or not message.media_url:
                return None

            query = db.query(Conversation).filter(Conversation.id == message.conversation_id)
            if not scope_conversations(db, query, user).first():
                return None

            content, fetched_type = await client.fetch_media(message.media_url)
            content_type = message.media_content_type or fetched_type or "application/octet-stream"
            return content, content_type

        finally:
            if owns_client:
                await client.close()
            self._close_db(db)

    async def upload_media(
        self,
        user: CurrentUser,
        conversation_id: str,
        filename: str,
        content_type: Optional[str],
        content: bytes,
    ) -> Optional[MediaUploadResponse]:
        """
        Store an outbound attachment and return its public URL.

        Raises:
            ValueError: invalid file or closed conversation
        """
        validate_upload(filename, content_type, len(content))

        owns_storage = self._storage is None
        storage = self._storage or SupabaseAdminClient()
        db = self._get_db()
        try:
            query = db.query(Conversation).filter(Conversation.id == conversation_id)
            conversation = scope_conversations(db, query, user).first()
            if not conversation:
                return None
            if conversation.status == ConversationStatus.CLOSED.value:
                raise ValueError("Cannot upload to closed conversation")

            path = build_upload_path(conversation_id, filename)
            url = await storage.upload_object(path, content, content_type)

            logger.info(f"Uploaded {filename} ({len(content)} bytes) to {path}")
            return MediaUploadResponse(url=url, path=path, content_type=content_type, size=len(content))

        finally:
            if owns_storage:
                await storage.close()
            self._close_db(db)


def get_media_service(
    db: Optional[Session] = None,
    client: Optional[TwilioMessagingClient] = None,
    storage: Optional[SupabaseAdminClient] = None,
) -> MediaService:
    """Get a media service instance."""
    return MediaService(db, client, storage)
