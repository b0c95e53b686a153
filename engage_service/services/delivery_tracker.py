"""
Delivery Tracker - applies Twilio status callbacks

Each callback names a message SID and a Twilio status. The tracker maps
the status to the internal vocabulary, updates the matching campaign
message (and any conversation message with that SID), and on terminal
statuses recomputes the campaign's analytics row and completion state.

Status ranks: pending < sent < delivered < read. A callback never moves a
message to a lower rank (callbacks can arrive out of order); `failed`
always applies.
"""

import logging
from typing import Optional, Dict
from datetime import datetime
from sqlalchemy import func
from sqlalchemy.orm import Session

from database.database import SessionLocal
from database.models import Campaign, CampaignAnalytics, CampaignMessage, Message, TwilioWebhookLog
from ..models import CampaignStatus, MessageStatus
from ..clients.twilio_messaging import TWILIO_STATUS_MAP

logger = logging.getLogger(__name__)

STATUS_RANK = {
    MessageStatus.PENDING.value: 0,
    MessageStatus.SENT.value: 1,
    MessageStatus.DELIVERED.value: 2,
    MessageStatus.READ.value: 3,
}

# Statuses that change the campaign aggregates
ANALYTICS_TRIGGERS = ("delivered", "read", "failed")


def resolve_status(message_status: Optional[str], event_type: Optional[str]) -> Optional[str]:
    """
    Twilio status for a callback. WhatsApp read receipts arrive as
    EventType=READ rather than MessageStatus=read.

    Returns None when the callback carries neither field.
    """
    if event_type and event_type.upper() == "READ":
        return "read"
    if message_status:
        return message_status.lower()
    return None


def map_status(twilio_status: str) -> str:
    """Twilio status -> internal status; unknown values map to pending."""
    return TWILIO_STATUS_MAP.get(twilio_status, MessageStatus.PENDING.value)


def should_apply(current: Optional[str], new: str) -> bool:
    """Whether a status transition moves forward."""
    if new == MessageStatus.FAILED.value:
        return True
    if current == MessageStatus.FAILED.value:
        return False
    return STATUS_RANK.get(new, 0) >= STATUS_RANK.get(current or "pending", 0)


def round_rate(numerator: int, denominator: int) -> float:
    """Percentage rounded to 2 decimals, 0 for an empty denominator."""
    if denominator <= 0:
        return 0.0
    return round(numerator / denominator * 100, 2)


def _apply(row, internal_status: str, error_code: Optional[str], error_message: Optional[str], now: datetime) -> bool:
    """Apply a status to a campaign or conversation message row."""
    if not should_apply(row.status, internal_status):
        return False

    row.status = internal_status
    if internal_status == MessageStatus.FAILED.value:
        row.error_code = error_code
        row.error_message = error_message
    elif error_message:
        row.error_message = error_message

    if internal_status == MessageStatus.DELIVERED.value and not row.delivered_at:
        row.delivered_at = now
    elif internal_status == MessageStatus.READ.value:
        if not row.read_at:
            row.read_at = now
        if not row.delivered_at:
            row.delivered_at = now
    return True


class DeliveryTracker:
    """
    Applies delivery status callbacks to stored messages.
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

    def apply_status(
        self,
        message_sid: str,
        twilio_status: str,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Optional[str]]:
        """
        Apply one status callback.

        Args:
            message_sid: Twilio message SID
            twilio_status: Twilio status (queued, sent, delivered, read, failed, undelivered)
            error_code: Twilio ErrorCode, if any
            error_message: Twilio ErrorMessage, if any

        Returns:
            {"status": internal status, "campaign_id": ..., "conversation_id": ...}
        """
        now = now or datetime.utcnow()
        internal_status = map_status(twilio_status)

        if internal_status == MessageStatus.FAILED.value:
            logger.error(f"Message {twilio_status} - SID: {message_sid} code={error_code} error={error_message}")

        db = self._get_db()
        try:
            result = {"status": internal_status, "campaign_id": None, "conversation_id": None}

            campaign_message = (
                db.query(CampaignMessage)
                .filter(CampaignMessage.message_sid == message_sid)
                .first()
            )
            if campaign_message:
                result["campaign_id"] = campaign_message.campaign_id
                _apply(campaign_message, internal_status, error_code, error_message, now)

            message = db.query(Message).filter(Message.message_sid == message_sid).first()
            if message:
                result["conversation_id"] = message.conversation_id
                _apply(message, internal_status, error_code, error_message, now)

            db.commit()

            if not campaign_message and not message:
                logger.info(f"Status callback for unknown SID {message_sid}, ignoring")

            if campaign_message and internal_status in ANALYTICS_TRIGGERS:
                self.recompute_analytics(campaign_message.campaign_id, db=db)

            return result

        except Exception:
            db.rollback()
            raise

        finally:
            self._close_db(db)

    def replay_logged_callbacks(self, campaign_id: str, db: Optional[Session] = None) -> int:
        """
        Re-apply logged status callbacks for a campaign's messages.

        Twilio can call back before the sender has stored the message row;
        those callbacks were logged but matched nothing. Re-applying is
        idempotent because transitions only move forward.

        Returns:
            Number of rows whose status changed
        """
        own_session = db is None
        db = db or self._get_db()
        try:
            rows = {
                row.message_sid: row
                for row in db.query(CampaignMessage)
                .filter(CampaignMessage.campaign_id == campaign_id, CampaignMessage.message_sid.isnot(None))
                .all()
            }
            if not rows:
                return 0

            logs = (
                db.query(TwilioWebhookLog)
                .filter(
                    TwilioWebhookLog.webhook_type == "status",
                    TwilioWebhookLog.message_sid.in_(list(rows.keys())),
                )
                .order_by(TwilioWebhookLog.received_at, TwilioWebhookLog.id)
                .all()
            )

            changed = 0
            for log in logs:
                payload = log.payload or {}
                twilio_status = resolve_status(payload.get("MessageStatus"), payload.get("EventType"))
                if not twilio_status:
                    continue
                row = rows[log.message_sid]
                before = row.status
                _apply(
                    row,
                    map_status(twilio_status),
                    payload.get("ErrorCode"),
                    payload.get("ErrorMessage"),
                    log.received_at or datetime.utcnow(),
                )
                if row.status != before:
                    changed += 1

            db.commit()
            if changed:
                logger.info(f"Campaign {campaign_id}: replayed {changed} early status callbacks")
            return changed

        except Exception:
            db.rollback()
            raise

        finally:
            if own_session:
                self._close_db(db)

    def recompute_analytics(self, campaign_id: str, db: Optional[Session] = None) -> CampaignAnalytics:
        """
        Recount a campaign's messages and upsert its analytics row.

        Flips the campaign to completed once the sender has attempted every
        recipient and no message is pending or sent.
        """
        own_session = db is None
        db = db or self._get_db()
        try:
            counts = dict(
                db.query(CampaignMessage.status, func.count(CampaignMessage.id))
                .filter(CampaignMessage.campaign_id == campaign_id)
                .group_by(CampaignMessage.status)
                .all()
            )

            total_sent = sum(counts.values())
            total_read = counts.get(MessageStatus.READ.value, 0)
            total_delivered = counts.get(MessageStatus.DELIVERED.value, 0) + total_read
            total_failed = counts.get(MessageStatus.FAILED.value, 0)

            analytics = (
                db.query(CampaignAnalytics)
                .filter(CampaignAnalytics.campaign_id == campaign_id)
                .first()
            )
            if not analytics:
                analytics = CampaignAnalytics(campaign_id=campaign_id)
                db.add(analytics)

            analytics.total_sent = total_sent
            analytics.total_delivered = total_delivered
            analytics.total_read = total_read
            analytics.total_failed = total_failed
            analytics.delivery_rate = round_rate(total_delivered, total_sent)
            analytics.read_rate = round_rate(total_read, total_delivered)
            analytics.updated_at = datetime.utcnow()

            in_flight = counts.get(MessageStatus.PENDING.value, 0) + counts.get(MessageStatus.SENT.value, 0)
            if total_sent and in_flight == 0:
                campaign = db.query(Campaign).filter(Campaign.id == campaign_id).first()
                if campaign and campaign.status == CampaignStatus.RUNNING.value and campaign.sent_at:
                    campaign.status = CampaignStatus.COMPLETED.value
                    campaign.updated_at = datetime.utcnow()
                    logger.info(f"Campaign {campaign_id} completed")

            db.commit()
            return analytics

        except Exception:
            db.rollback()
            raise

        finally:
            if own_session:
                self._close_db(db)


def get_delivery_tracker(db: Optional[Session] = None) -> DeliveryTracker:
    """Get a delivery tracker instance."""
    return DeliveryTracker(db)
