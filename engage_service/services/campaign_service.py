"""
Campaign Service - Campaign CRUD, per-recipient messages and activation stats

Sending lives in campaign_sender; delivery updates in delivery_tracker.
"""

import math
import logging
from typing import Optional, List
from datetime import datetime
from sqlalchemy import func, desc
from sqlalchemy.orm import Session, joinedload

from database.database import SessionLocal
from database.models import (
    Campaign,
    CampaignMessage,
    Contact,
    ContactGroup,
    Conversation,
    Message,
    MessageTemplate,
)
from ..models import (
    ActivationDetail,
    ActivationStatsResponse,
    CampaignAnalyticsResponse,
    CampaignCreate,
    CampaignListResponse,
    CampaignMessageListResponse,
    CampaignMessageResponse,
    CampaignResponse,
    CampaignStatus,
    CampaignUpdate,
    MessageDirection,
    MessageStatus,
    VariableSource,
    VisibilityStatus,
)

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = (CampaignStatus.DRAFT.value, CampaignStatus.SCHEDULED.value)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(math.floor(value + 0.5)) if value >= 0 else -int(math.floor(-value + 0.5))


class CampaignService:
    """
    Service for campaign management and reporting.
    """

    def __init__(self, db: Optional[Session] = None):
        """
        Initialize campaign service.

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

    # =========================================================================
    # CRUD
    # =========================================================================

    def list_campaigns(
        self,
        status: Optional[CampaignStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> CampaignListResponse:
        """List campaigns, newest first."""
        db = self._get_db()
        try:
            query = db.query(Campaign)
            if status:
                query = query.filter(Campaign.status == status.value)

            total = query.count()
            campaigns = (
                query.options(joinedload(Campaign.template), joinedload(Campaign.analytics))
                .order_by(desc(Campaign.created_at))
                .offset((page - 1) * page_size)
                .limit(page_size)
                .all()
            )

            return CampaignListResponse(
                campaigns=[self._to_response(db, c) for c in campaigns],
                total=total,
                page=page,
                page_size=page_size,
            )

        finally:
            self._close_db(db)

    def get_campaign(self, campaign_id: str) -> Optional[CampaignResponse]:
        """Get a campaign with template name and analytics."""
        db = self._get_db()
        try:
            campaign = db.query(Campaign).filter(Campaign.id == campaign_id).first()
            if not campaign:
                return None
            return self._to_response(db, campaign)

        finally:
            self._close_db(db)

    def create_campaign(self, user_id: str, data: CampaignCreate) -> CampaignResponse:
        """
        Create a campaign draft (scheduled when `scheduled_at` is given).

        Raises:
            ValueError: template or a target group does not exist
        """
        db = self._get_db()
        try:
            self._validate_refs(db, data.template_id, data.target_segments)

            campaign = Campaign(
                name=data.name,
                description=data.description,
                template_id=data.template_id,
                status=(CampaignStatus.SCHEDULED if data.scheduled_at else CampaignStatus.DRAFT).value,
                target_segments=list(data.target_segments),
                template_variables=dict(data.template_variables or {}),
                variable_source=data.variable_source.value,
                scheduled_at=data.scheduled_at,
                created_by=user_id,
            )
            db.add(campaign)
            db.commit()
            db.refresh(campaign)

            logger.info(f"Created campaign {campaign.id} by {user_id}")
            return self._to_response(db, campaign)

        finally:
            self._close_db(db)

    def update_campaign(self, campaign_id: str, data: CampaignUpdate) -> Optional[CampaignResponse]:
        """
        Update a draft or scheduled campaign.

        Raises:
            ValueError: campaign already sent, or bad references
        """
        db = self._get_db()
        try:
            campaign = db.query(Campaign).filter(Campaign.id == campaign_id).first()
            if not campaign:
                return None

            if campaign.status not in EDITABLE_STATUSES:
                raise ValueError(f"Campaign cannot be edited. Current status: {campaign.status}")

            self._validate_refs(
                db,
                data.template_id if data.template_id is not None else None,
                data.target_segments if data.target_segments is not None else None,
            )

            if data.name is not None:
                campaign.name = data.name
            if data.description is not None:
                campaign.description = data.description
            if data.template_id is not None:
                campaign.template_id = data.template_id
            if data.target_segments is not None:
                campaign.target_segments = list(data.target_segments)
            if data.template_variables is not None:
                campaign.template_variables = dict(data.template_variables)
            if data.variable_source is not None:
                campaign.variable_source = data.variable_source.value
            if data.scheduled_at is not None:
                campaign.scheduled_at = data.scheduled_at
                campaign.status = CampaignStatus.SCHEDULED.value

            campaign.updated_at = datetime.utcnow()
            db.commit()
            db.refresh(campaign)
            return self._to_response(db, campaign)

        finally:
            self._close_db(db)

    def delete_campaign(self, campaign_id: str) -> bool:
        """
        Delete a campaign with its messages and analytics.

        Raises:
            ValueError: campaign is running
        """
        db = self._get_db()
        try:
            campaign = db.query(Campaign).filter(Campaign.id == campaign_id).first()
            if not campaign:
                return False

            if campaign.status == CampaignStatus.RUNNING.value:
                raise ValueError("Cannot delete a running campaign")

            db.delete(campaign)
            db.commit()
            return True

        finally:
            self._close_db(db)

    # =========================================================================
    # Reporting
    # =========================================================================

    def list_messages(
        self,
        campaign_id: str,
        status: Optional[MessageStatus] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Optional[CampaignMessageListResponse]:
        """Per-recipient messages of a campaign."""
        db = self._get_db()
        try:
            if not db.query(Campaign.id).filter(Campaign.id == campaign_id).first():
                return None

            query = (
                db.query(CampaignMessage, Contact.name)
                .outerjoin(Contact, CampaignMessage.contact_id == Contact.id)
                .filter(CampaignMessage.campaign_id == campaign_id)
            )
            if status:
                query = query.filter(CampaignMessage.status == status.value)

            total = query.count()
            rows = (
                query.order_by(desc(CampaignMessage.sent_at))
                .offset((page - 1) * page_size)
                .limit(page_size)
                .all()
            )

            messages = []
            for message, contact_name in rows:
                response = CampaignMessageResponse.model_validate(message)
                response.contact_name = contact_name
                messages.append(response)

            return CampaignMessageListResponse(
                messages=messages, total=total, page=page, page_size=page_size
            )

        finally:
            self._close_db(db)

    def get_activation_stats(self, campaign_id: str) -> Optional[ActivationStatsResponse]:
        """
        How many campaign recipients replied.

        A campaign conversation starts dormant and becomes active on the
        customer's first reply. Response delay is measured from the
        conversation's creation to the first inbound message.
        """
        db = self._get_db()
        try:
            campaign = db.query(Campaign).filter(Campaign.id == campaign_id).first()
            if not campaign:
                return None

            conversations = (
                db.query(Conversation)
                .options(joinedload(Conversation.contact))
                .filter(Conversation.created_by_campaign == campaign_id)
                .all()
            )

            total = len(conversations)
            activated = [c for c in conversations if c.visibility_status == VisibilityStatus.ACTIVE.value]
            dormant = [c for c in conversations if c.visibility_status == VisibilityStatus.DORMANT.value]

            status_counts = dict(
                db.query(CampaignMessage.status, func.count(CampaignMessage.id))
                .filter(CampaignMessage.campaign_id == campaign_id)
                .group_by(CampaignMessage.status)
                .all()
            )
            message_stats = {
                status: status_counts.get(status, 0)
                for status in ("sent", "delivered", "read", "failed")
            }

            details: List[ActivationDetail] = []
            for conversation in activated:
                first_inbound = (
                    db.query(func.min(Message.timestamp))
                    .filter(
                        Message.conversation_id == conversation.id,
                        Message.direction == MessageDirection.INBOUND.value,
                    )
                    .scalar()
                )
                if not first_inbound:
                    continue

                delay_hours = (first_inbound - conversation.created_at).total_seconds() / 3600
                details.append(ActivationDetail(
                    conversation_id=conversation.id,
                    contact_name=conversation.contact.name if conversation.contact else None,
                    phone_number=conversation.contact.phone_number if conversation.contact else None,
                    response_delay_hours=round_half_up(delay_hours),
                    activated_at=first_inbound,
                ))

            details.sort(key=lambda d: d.activated_at, reverse=True)

            avg_response = 0
            if details:
                avg_response = round_half_up(sum(d.response_delay_hours for d in details) / len(details))

            return ActivationStatsResponse(
                campaign_id=campaign.id,
                campaign_name=campaign.name,
                total_conversations=total,
                activated_conversations=len(activated),
                dormant_conversations=len(dormant),
                activation_rate=round_half_up(len(activated) / total * 100) if total else 0,
                avg_response_time_hours=avg_response,
                message_stats=message_stats,
                activated_details=details[:10],
            )

        finally:
            self._close_db(db)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _validate_refs(self, db: Session, template_id: Optional[str], segments: Optional[List[str]]):
        if template_id is not None:
            if not db.query(MessageTemplate.id).filter(MessageTemplate.id == template_id).first():
                raise ValueError("Template not found")

        if segments is not None:
            if not segments:
                raise ValueError("At least one target group is required")
            found = {
                gid for (gid,) in db.query(ContactGroup.id).filter(ContactGroup.id.in_(segments)).all()
            }
            missing = [s for s in segments if s not in found]
            if missing:
                raise ValueError(f"Contact group not found: {', '.join(missing)}")

    def _audience_size(self, db: Session, campaign: Campaign) -> int:
        segments = campaign.target_segments or []
        if not segments:
            return 0
        return db.query(Contact).filter(Contact.group_id.in_(segments)).count()

    def _to_response(self, db: Session, campaign: Campaign) -> CampaignResponse:
        """Convert database campaign to response model."""
        analytics = None
        if campaign.analytics:
            analytics = CampaignAnalyticsResponse.model_validate(campaign.analytics)

        return CampaignResponse(
            id=campaign.id,
            name=campaign.name,
            description=campaign.description,
            template_id=campaign.template_id,
            template_name=campaign.template.name if campaign.template else None,
            status=CampaignStatus(campaign.status),
            target_segments=campaign.target_segments or [],
            template_variables=campaign.template_variables or {},
            variable_source=VariableSource(campaign.variable_source or "manual"),
            audience_size=self._audience_size(db, campaign),
            analytics=analytics,
            scheduled_at=campaign.scheduled_at,
            sent_at=campaign.sent_at,
            created_by=campaign.created_by,
            created_at=campaign.created_at,
            updated_at=campaign.updated_at,
        )


def get_campaign_service(db: Optional[Session] = None) -> CampaignService:
    """Get a campaign service instance."""
    return CampaignService(db)
