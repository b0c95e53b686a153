"""
Dashboard Service - Headline numbers for the dashboard home
"""

import logging
from typing import Optional
from datetime import datetime
from sqlalchemy import func
from sqlalchemy.orm import Session

from database.database import SessionLocal
from database.models import Campaign, CampaignMessage, Contact, Conversation
from ..auth import CurrentUser
from ..models import ConversationStatus, DashboardSummaryResponse
from .conversation_service import exclude_dormant, scope_conversations

logger = logging.getLogger(__name__)


class DashboardService:
    """
    Aggregate counts across conversations, contacts and campaigns.
    """

    def __init__(self, db: Optional[Session] = None):
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

    def get_summary(self, user: CurrentUser, now: Optional[datetime] = None) -> DashboardSummaryResponse:
        """
        Conversation counts follow the caller's default inbox (scoped, dormant
        campaign threads hidden); contact and campaign numbers are global.
        """
        now = now or datetime.utcnow()
        db = self._get_db()
        try:
            open_query = scope_conversations(
                db,
                exclude_dormant(db.query(Conversation).filter(Conversation.status == ConversationStatus.OPEN.value)),
                user,
            )
            open_count = open_query.count()
            within_window = open_query.filter(Conversation.conversation_window_expires_at > now).count()

            campaigns_by_status = dict(
                db.query(Campaign.status, func.count(Campaign.id)).group_by(Campaign.status).all()
            )
            message_counts = dict(
                db.query(CampaignMessage.status, func.count(CampaignMessage.id))
                .group_by(CampaignMessage.status)
                .all()
            )

            delivered = message_counts.get("delivered", 0)
            read = message_counts.get("read", 0)

            return DashboardSummaryResponse(
                open_conversations=open_count,
                conversations_within_window=within_window,
                total_contacts=db.query(Contact).count(),
                campaigns_by_status=campaigns_by_status,
                messages_sent=sum(message_counts.values()),
                messages_delivered=delivered + read,
                messages_read=read,
                messages_failed=message_counts.get("failed", 0),
            )

        finally:
            self._close_db(db)


def get_dashboard_service(db: Optional[Session] = None) -> DashboardService:
    """Get a dashboard service instance."""
    return DashboardService(db)
