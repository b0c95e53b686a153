"""
Template Service - WhatsApp templates mirrored from the Twilio Content API

Local rows keep the Content SID in `template_id`. A sync copies the body
text, sample variables and approval status into `twilio_metadata`; the
campaign sender relies on `original_body_text` and `variables` there to
order the ContentVariables it sends.
"""

import logging
from typing import Optional, List, Dict, Any
from datetime import datetime
from sqlalchemy import desc
from sqlalchemy.orm import Session

from database.database import SessionLocal
from database.models import Campaign, MessageTemplate
from ..models import (
    CampaignStatus,
    TemplateCreate,
    TemplateUpdate,
    TemplateResponse,
    TemplateStatus,
    TemplateSyncResponse,
)
from ..clients.twilio_messaging import TwilioMessagingClient
from .template_personalizer import extract_variable_order

logger = logging.getLogger(__name__)

APPROVAL_STATUS_MAP = {
    "approved": TemplateStatus.APPROVED,
    "pending": TemplateStatus.PENDING,
    "received": TemplateStatus.PENDING,
    "in_review": TemplateStatus.PENDING,
    "rejected": TemplateStatus.REJECTED,
    "paused": TemplateStatus.REJECTED,
    "disabled": TemplateStatus.REJECTED,
    "unsubmitted": TemplateStatus.DRAFT,
}


def categorize_template(name: str) -> str:
    """Guess a WhatsApp category from the template's friendly name."""
    lower = (name or "").lower()
    if any(word in lower for word in ("otp", "auth", "verify")):
        return "authentication"
    if any(word in lower for word in ("promo", "sale", "offer")):
        return "marketing"
    return "utility"


def extract_body(types: Dict[str, Any]) -> str:
    """Body text of the first content type that carries one."""
    for content in (types or {}).values():
        if isinstance(content, dict) and (content.get("body") or content.get("title")):
            return content.get("body") or content.get("title")
    return ""


class TemplateService:
    """
    Service for message templates.
    """

    def __init__(self, db: Optional[Session] = None, client: Optional[TwilioMessagingClient] = None):
        """
        Initialize template service.

        Args:
            db: Optional database session.
            client: Twilio client used for syncs
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

    # =========================================================================
    # CRUD
    # =========================================================================

    def list_templates(self, status: Optional[TemplateStatus] = None) -> List[TemplateResponse]:
        """List templates, newest first."""
        db = self._get_db()
        try:
            query = db.query(MessageTemplate)
            if status:
                query = query.filter(MessageTemplate.status == status.value)
            templates = query.order_by(desc(MessageTemplate.created_at)).all()
            return [TemplateResponse.model_validate(t) for t in templates]

        finally:
            self._close_db(db)

    def get_template(self, template_id: str) -> Optional[TemplateResponse]:
        """Get a template by ID."""
        db = self._get_db()
        try:
            template = db.query(MessageTemplate).filter(MessageTemplate.id == template_id).first()
            if not template:
                return None
            return TemplateResponse.model_validate(template)

        finally:
            self._close_db(db)

    def create_template(self, user_id: str, data: TemplateCreate) -> TemplateResponse:
        """Register a template by Content SID. Status stays pending until synced."""
        db = self._get_db()
        try:
            if db.query(MessageTemplate).filter(MessageTemplate.template_id == data.template_id).first():
                raise ValueError("A template with this Content SID already exists")

            template = MessageTemplate(
                name=data.name,
                template_id=data.template_id,
                category=data.category,
                language=data.language,
                body=data.body,
                variables=data.variables,
                status=TemplateStatus.PENDING.value,
                twilio_metadata={"original_body_text": data.body} if data.body else {},
                created_by=user_id,
            )
            db.add(template)
            db.commit()
            db.refresh(template)
            return TemplateResponse.model_validate(template)

        finally:
            self._close_db(db)

    def update_template(self, template_id: str, data: TemplateUpdate) -> Optional[TemplateResponse]:
        """Update local template fields."""
        db = self._get_db()
        try:
            template = db.query(MessageTemplate).filter(MessageTemplate.id == template_id).first()
            if not template:
                return None

            if data.name is not None:
                template.name = data.name
            if data.category is not None:
                template.category = data.category
            if data.body is not None:
                template.body = data.body
            if data.variables is not None:
                template.variables = data.variables
            if data.status is not None:
                template.status = data.status.value

            template.updated_at = datetime.utcnow()
            db.commit()
            db.refresh(template)
            return TemplateResponse.model_validate(template)

        finally:
            self._close_db(db)

    def delete_template(self, template_id: str) -> bool:
        """
        Delete a local template.

        Raises:
            ValueError: a campaign still uses it
        """
        db = self._get_db()
        try:
            template = db.query(MessageTemplate).filter(MessageTemplate.id == template_id).first()
            if not template:
                return False

            in_use = (
                db.query(Campaign)
                .filter(Campaign.template_id == template_id)
                .filter(Campaign.status.in_([CampaignStatus.DRAFT.value, CampaignStatus.SCHEDULED.value, CampaignStatus.RUNNING.value]))
                .count()
            )
            if in_use:
                raise ValueError("Template is used by an active campaign")

            db.delete(template)
            db.commit()
            return True

        finally:
            self._close_db(db)

    # =========================================================================
    # Twilio sync
    # =========================================================================

    async def sync_all(self, user_id: str) -> TemplateSyncResponse:
        """
        Pull every Content API template and upsert it locally by Content SID.
        """
        owns_client = self._client is None
        client = self._client or TwilioMessagingClient()
        db = self._get_db()
        try:
            contents = await client.list_content_templates()

            created = 0
            updated = 0
            errors: List[str] = []

            for content in contents:
                try:
                    approval = await client.get_approval_status(content["sid"])
                    is_new = self._upsert_from_content(db, user_id, content, approval)
                    db.commit()
                    if is_new:
                        created += 1
                    else:
                        updated += 1
                except Exception as e:
                    db.rollback()
                    logger.error(f"Failed to sync template {content.get('friendly_name')}: {e}")
                    errors.append(f"Failed to sync template {content.get('friendly_name')}: {e}")

            logger.info(f"Template sync: {created} created, {updated} updated, {len(errors)} errors")
            return TemplateSyncResponse(
                synced=created + updated, created=created, updated=updated, errors=errors
            )

        finally:
            if owns_client:
                await client.close()
            self._close_db(db)

    async def sync_one(self, template_id: str, user_id: str) -> Optional[TemplateResponse]:
        """Refresh one local template from the Content API."""
        owns_client = self._client is None
        client = self._client or TwilioMessagingClient()
        db = self._get_db()
        try:
            template = db.query(MessageTemplate).filter(MessageTemplate.id == template_id).first()
            if not template:
                return None
            if not template.template_id:
                raise ValueError("Template has no Twilio Content SID")

            content = await client.get_content_template(template.template_id)
            approval = await client.get_approval_status(template.template_id)
            self._upsert_from_content(db, user_id, content, approval)
            db.commit()
            db.refresh(template)
            return TemplateResponse.model_validate(template)

        finally:
            if owns_client:
                await client.close()
            self._close_db(db)

    def _upsert_from_content(
        self, db: Session, user_id: str, content: Dict[str, Any], approval: Optional[str]
    ) -> bool:
        """Create or update a template from a Content API resource. Returns True if created."""
        sid = content["sid"]
        types = content.get("types") or {}
        samples = content.get("variables") or {}
        body = extract_body(types)

        # Templates never submitted for WhatsApp approval are usable as-is
        if approval is None:
            status = TemplateStatus.APPROVED
        else:
            status = APPROVAL_STATUS_MAP.get(approval.lower(), TemplateStatus.PENDING)

        template = db.query(MessageTemplate).filter(MessageTemplate.template_id == sid).first()
        is_new = template is None
        if is_new:
            template = MessageTemplate(template_id=sid, created_by=user_id)
            db.add(template)

        template.name = content.get("friendly_name") or sid
        template.category = categorize_template(template.name)
        template.language = content.get("language") or "en"
        template.body = body or "No content"
        template.variables = extract_variable_order(body, samples)
        template.status = status.value
        template.twilio_metadata = {
            "original_body_text": body,
            "variables": samples,
            "types": types,
            "approval_status": approval,
            "date_created": content.get("date_created"),
            "date_updated": content.get("date_updated"),
            "synced_at": datetime.utcnow().isoformat(),
        }
        template.updated_at = datetime.utcnow()
        return is_new


def get_template_service(
    db: Optional[Session] = None, client: Optional[TwilioMessagingClient] = None
) -> TemplateService:
    """Get a template service instance."""
    return TemplateService(db, client)
