"""
Campaign Sender - Batched WhatsApp template broadcast

Flow:
1. Validate the campaign (exists, draft or scheduled)
2. Mark it running
3. Resolve the template and target contacts (contacts in the target groups)
4. Send in batches; sends inside a batch run concurrently, batches are
   separated by a fixed delay
5. Record one campaign_messages row per recipient (sent or failed) and open
   a dormant conversation for each reached contact; each row is committed
   as soon as its send returns so status callbacks can find it
6. Re-apply status callbacks that arrived before their row existed, then
   recount analytics (a campaign with nothing left in flight completes)

Delivery progress after this point arrives through the status webhook
(see delivery_tracker).
"""

import asyncio
import logging
from typing import Optional, List, Dict, Any, Callable, Awaitable
from datetime import datetime
from sqlalchemy.orm import Session

from database.database import SessionLocal
from database.models import (
    Campaign,
    CampaignMessage,
    Contact,
    Conversation,
    MessageTemplate,
)
from ..config import get_engage_settings
from ..models import (
    CampaignStatus,
    CampaignSendResult,
    ConversationStatus,
    MessageStatus,
    VisibilityStatus,
)
from ..clients.twilio_messaging import TwilioMessagingClient
from .delivery_tracker import DeliveryTracker
from .template_personalizer import personalize, to_named_variables, variable_order_for

logger = logging.getLogger(__name__)

SENDABLE_STATUSES = (CampaignStatus.DRAFT.value, CampaignStatus.SCHEDULED.value)


class CampaignSender:
    """
    Sends a campaign's template to every contact in its target groups.
    """

    def __init__(
        self,
        db: Optional[Session] = None,
        client: Optional[TwilioMessagingClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the sender.

        Args:
            db: Optional database session.
            client: Twilio client (defaults to one built from settings)
            sleep: Coroutine used for the inter-batch delay
        """
        self._db = db
        self._client = client
        self._sleep = sleep

    def _get_db(self) -> Session:
        """Get or create database session."""
        if self._db:
            return self._db
        return SessionLocal()

    def _close_db(self, db: Session):
        """Close database session if we created it."""
        if not self._db:
            db.close()

    async def send_campaign(
        self,
        campaign_id: str,
        batch_size: Optional[int] = None,
        delay_between_batches_ms: Optional[int] = None,
    ) -> CampaignSendResult:
        """
        Send a campaign.

        Args:
            campaign_id: Campaign to send
            batch_size: Messages per batch (1..100)
            delay_between_batches_ms: Pause between batches in milliseconds

        Returns:
            Sent / failed counts

        Raises:
            ValueError: campaign missing, not sendable, no template or no contacts
        """
        settings = get_engage_settings()
        batch_size = batch_size or settings.campaign_batch_size
        if delay_between_batches_ms is None:
            delay_between_batches_ms = settings.campaign_batch_delay_ms

        db = self._get_db()
        owns_client = self._client is None
        client = self._client or TwilioMessagingClient()

        try:
            campaign = db.query(Campaign).filter(Campaign.id == campaign_id).first()
            if not campaign:
                raise ValueError("Campaign not found")

            if campaign.status not in SENDABLE_STATUSES:
                raise ValueError(f"Campaign cannot be sent. Current status: {campaign.status}")

            self._set_status(db, campaign, CampaignStatus.RUNNING)

            try:
                template = (
                    db.query(MessageTemplate)
                    .filter(MessageTemplate.id == campaign.template_id)
                    .first()
                )
                if not template:
                    raise ValueError("Template not found")

                contacts = self._get_target_contacts(db, campaign)
                if not contacts:
                    raise ValueError("No contacts found for this campaign")

                logger.info(
                    f"Sending campaign {campaign.id} to {len(contacts)} contacts "
                    f"(batch size {batch_size}, delay {delay_between_batches_ms}ms)"
                )

                sent, failed = await self._send_in_batches(
                    db, client, campaign, template, contacts, batch_size, delay_between_batches_ms
                )

                campaign.sent_at = datetime.utcnow()
                db.commit()

                tracker = DeliveryTracker(db)
                tracker.replay_logged_callbacks(campaign.id, db=db)
                tracker.recompute_analytics(campaign.id, db=db)

            except Exception as e:
                logger.error(f"Campaign send error for {campaign_id}: {e}")
                db.rollback()
                campaign = db.query(Campaign).filter(Campaign.id == campaign_id).first()
                if campaign:
                    self._set_status(db, campaign, CampaignStatus.FAILED)
                raise

            return CampaignSendResult(
                success=True,
                campaign_id=campaign_id,
                total_sent=sent,
                total_failed=failed,
                message=f"Campaign sent successfully. {sent} messages sent, {failed} failed.",
            )

        finally:
            if owns_client:
                await client.close()
            self._close_db(db)

    # =========================================================================
    # Batching
    # =========================================================================

    async def _send_in_batches(
        self,
        db: Session,
        client: TwilioMessagingClient,
        campaign: Campaign,
        template: MessageTemplate,
        contacts: List[Contact],
        batch_size: int,
        delay_ms: int,
    ):
        sent = 0
        failed = 0

        for start in range(0, len(contacts), batch_size):
            batch = contacts[start:start + batch_size]

            results = await asyncio.gather(
                *(self._send_one(db, client, campaign, template, contact) for contact in batch),
                return_exceptions=True,
            )

            for result in results:
                if isinstance(result, BaseException):
                    failed += 1
                else:
                    sent += 1

            # Delay between batches to stay under the gateway's rate limits
            if start + batch_size < len(contacts):
                await self._sleep(delay_ms / 1000)

        return sent, failed

    async def _send_one(
        self,
        db: Session,
        client: TwilioMessagingClient,
        campaign: Campaign,
        template: MessageTemplate,
        contact: Contact,
    ) -> Dict[str, Any]:
        """Send to one contact and record the outcome; re-raises send errors."""
        try:
            positional = personalize(template, campaign, contact)
            named = to_named_variables(positional, variable_order_for(template))

            result = await client.send_template(
                to=contact.phone_number,
                content_sid=template.template_id,
                content_variables=named,
            )
        except Exception as e:
            logger.error(f"Campaign {campaign.id}: send to {contact.phone_number} failed: {e}")
            self._record_failed(db, campaign.id, contact, e)
            db.commit()
            raise

        self._record_sent(db, campaign.id, contact, result.get("sid"), named)
        self._open_dormant_conversation(db, campaign.id, contact)
        db.commit()
        return result

    # =========================================================================
    # Persistence
    # =========================================================================

    def _get_target_contacts(self, db: Session, campaign: Campaign) -> List[Contact]:
        segments = campaign.target_segments or []
        if not segments:
            return []
        return (
            db.query(Contact)
            .filter(Contact.group_id.in_(segments))
            .order_by(Contact.created_at, Contact.id)
            .all()
        )

    def _record_sent(
        self, db: Session, campaign_id: str, contact: Contact, message_sid: Optional[str], template_data: Dict[str, str]
    ):
        db.add(CampaignMessage(
            campaign_id=campaign_id,
            contact_id=contact.id,
            message_sid=message_sid,
            phone_number=contact.phone_number,
            template_data=template_data,
            status=MessageStatus.SENT.value,
            sent_at=datetime.utcnow(),
        ))

    def _record_failed(self, db: Session, campaign_id: str, contact: Contact, error: Exception):
        db.add(CampaignMessage(
            campaign_id=campaign_id,
            contact_id=contact.id,
            phone_number=contact.phone_number,
            status=MessageStatus.FAILED.value,
            error_code=str(getattr(error, "code", "") or "") or None,
            error_message=str(error) or "Unknown error",
            sent_at=datetime.utcnow(),
        ))

    def _open_dormant_conversation(self, db: Session, campaign_id: str, contact: Contact):
        """Campaign recipients get a hidden thread that activates on reply."""
        existing = (
            db.query(Conversation)
            .filter(
                Conversation.contact_id == contact.id,
                Conversation.status != ConversationStatus.CLOSED.value,
            )
            .first()
        )
        if existing:
            return

        now = datetime.utcnow()
        db.add(Conversation(
            contact_id=contact.id,
            status=ConversationStatus.OPEN.value,
            visibility_status=VisibilityStatus.DORMANT.value,
            created_by_campaign=campaign_id,
            is_within_window=False,
            last_message_at=now,
        ))
        db.flush()

    def _set_status(self, db: Session, campaign: Campaign, status: CampaignStatus):
        campaign.status = status.value
        campaign.updated_at = datetime.utcnow()
        db.commit()


def get_campaign_sender(
    db: Optional[Session] = None, client: Optional[TwilioMessagingClient] = None
) -> CampaignSender:
    """Get a campaign sender instance."""
    return CampaignSender(db, client)
