"""
Engage Service API Routes

FastAPI routes for:
- Conversations (shared inbox, replies, window sweep)
- Campaigns (CRUD, send, messages, activation stats)
- Templates (CRUD, Twilio Content API sync)
- Contacts and contact groups (CRUD, CSV import)
- Media (inbound proxy, outbound upload)
- Webhooks (Twilio status callbacks and incoming messages)
"""

import logging
from typing import Optional, List
from datetime import datetime
from fastapi import APIRouter, HTTPException, Request, Response, Query, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse, PlainTextResponse

from .auth import CurrentUser, get_current_user, require_permission, verify_cron_secret
from .config import get_engage_settings
from .errors import WindowError, TwilioAPIError
from .rbac import Permission
from .models import (
    # Conversations
    ConversationResponse,
    ConversationListResponse,
    ConversationUpdateRequest,
    ConversationStatus,
    MessageResponse,
    MessageThreadResponse,
    SendMessageRequest,
    WindowReportResponse,
    AutoCloseResponse,
    # Campaigns
    CampaignCreate,
    CampaignUpdate,
    CampaignResponse,
    CampaignListResponse,
    CampaignStatus,
    CampaignMessageListResponse,
    MessageStatus,
    SendCampaignRequest,
    CampaignSendResult,
    ActivationStatsResponse,
    # Templates
    TemplateCreate,
    TemplateUpdate,
    TemplateResponse,
    TemplateStatus,
    TemplateSyncResponse,
    # Contacts
    ContactCreate,
    ContactUpdate,
    ContactResponse,
    ContactListResponse,
    ContactImportResponse,
    ContactGroupCreate,
    ContactGroupUpdate,
    ContactGroupResponse,
    GroupContactsRequest,
    # Media
    MediaUploadResponse,
)

logger = logging.getLogger(__name__)

# Create router
engage_router = APIRouter(prefix="/api", tags=["Engage"])


# =============================================================================
# Dependencies & error mapping
# =============================================================================


def rate_limited(endpoint: str):
    """
    Build a dependency counting the caller's requests to `endpoint`.

    Over quota answers 429 with Retry-After.
    """

    async def dependency(user: CurrentUser = Depends(get_current_user)) -> None:
        from services.rate_limiter import get_rate_limiter

        allowed, retry_after = await get_rate_limiter().check_rate_limit(user.id, endpoint)
        if not allowed:
            raise HTTPException(
                status_code=429,
                detail="Rate limit exceeded",
                headers={"Retry-After": str(retry_after)},
            )

    return dependency


def window_error_response(error: WindowError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={"error": error.message, "code": error.code, "details": error.conversation_id},
    )


def twilio_error_response(error: TwilioAPIError) -> JSONResponse:
    message, status = error.user_facing()
    logger.error(f"Twilio API error {error.code}: {error.message}")
    return JSONResponse(
        status_code=status,
        content={
            "error": message,
            "code": error.code,
            "details": error.message,
            "more_info": error.more_info,
        },
    )


def _signed_url(request: Request) -> str:
    """URL Twilio signed: the public base URL plus path and query."""
    base = get_engage_settings().app_base_url.rstrip("/")
    url = f"{base}{request.url.path}"
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return url


# =============================================================================
# Conversation Routes
# =============================================================================


@engage_router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(
    user: CurrentUser = Depends(require_permission(Permission.VIEW_CONVERSATIONS)),
    status: Optional[ConversationStatus] = None,
    search: Optional[str] = None,
    include_dormant: bool = False,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
):
    """Shared inbox, scoped to what the caller may see."""
    from .services.conversation_service import get_conversation_service

    service = get_conversation_service()
    return service.get_inbox(user, status, search, include_dormant, page, page_size)


@engage_router.post("/conversations/auto-close", response_model=AutoCloseResponse)
async def auto_close_conversations(_: None = Depends(verify_cron_secret)):
    """Close every conversation whose 24-hour window has lapsed."""
    from .services.conversation_window import get_window_tracker

    closed = get_window_tracker().close_expired()
    return AutoCloseResponse(
        success=True,
        closed_count=closed,
        message=f"Closed {closed} expired conversations",
    )


@engage_router.get("/conversations/auto-close", response_model=WindowReportResponse)
async def window_report(_: None = Depends(verify_cron_secret)):
    """Conversations about to lapse and those already lapsed but not yet closed."""
    from .services.conversation_window import get_window_tracker

    return get_window_tracker().window_report()


@engage_router.get("/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: str,
    user: CurrentUser = Depends(require_permission(Permission.VIEW_CONVERSATIONS)),
):
    """Get a conversation."""
    from .services.conversation_service import get_conversation_service

    result = get_conversation_service().get_conversation(user, conversation_id)
    if not result:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return result


@engage_router.patch("/conversations/{conversation_id}", response_model=ConversationResponse)
async def update_conversation(
    conversation_id: str,
    data: ConversationUpdateRequest,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CONVERSATIONS)),
):
    """Update status, priority or assignment."""
    from .services.conversation_service import get_conversation_service

    try:
        result = get_conversation_service().update_conversation(user, conversation_id, data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return result


@engage_router.get("/conversations/{conversation_id}/messages", response_model=MessageThreadResponse)
async def get_conversation_messages(
    conversation_id: str,
    user: CurrentUser = Depends(require_permission(Permission.VIEW_CONVERSATIONS)),
    limit: int = Query(200, ge=1, le=1000),
):
    """Conversation thread, oldest message first."""
    from .services.conversation_service import get_conversation_service

    result = get_conversation_service().get_messages(user, conversation_id, limit)
    if not result:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return result


@engage_router.post("/conversations/{conversation_id}/messages", response_model=MessageResponse)
async def send_conversation_message(
    conversation_id: str,
    data: SendMessageRequest,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CONVERSATIONS)),
    _: None = Depends(rate_limited("conversation_send")),
):
    """Send a free-form reply inside the 24-hour window."""
    from .services.conversation_service import get_conversation_service

    try:
        result = await get_conversation_service().send_message(user, conversation_id, data)
    except WindowError as e:
        return window_error_response(e)
    except TwilioAPIError as e:
        return twilio_error_response(e)

    if not result:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return result


# =============================================================================
# Campaign Routes
# =============================================================================


@engage_router.get("/campaigns", response_model=CampaignListResponse)
async def list_campaigns(
    user: CurrentUser = Depends(require_permission(Permission.VIEW_CAMPAIGNS)),
    status: Optional[CampaignStatus] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    """List campaigns."""
    from .services.campaign_service import get_campaign_service

    return get_campaign_service().list_campaigns(status, page, page_size)


@engage_router.post("/campaigns", response_model=CampaignResponse, status_code=201)
async def create_campaign(
    data: CampaignCreate,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CAMPAIGNS)),
):
    """Create a campaign draft."""
    from .services.campaign_service import get_campaign_service

    try:
        return get_campaign_service().create_campaign(user.id, data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@engage_router.get("/campaigns/{campaign_id}", response_model=CampaignResponse)
async def get_campaign(
    campaign_id: str,
    user: CurrentUser = Depends(require_permission(Permission.VIEW_CAMPAIGNS)),
):
    """Get a campaign with analytics."""
    from .services.campaign_service import get_campaign_service

    result = get_campaign_service().get_campaign(campaign_id)
    if not result:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return result


@engage_router.put("/campaigns/{campaign_id}", response_model=CampaignResponse)
async def update_campaign(
    campaign_id: str,
    data: CampaignUpdate,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CAMPAIGNS)),
):
    """Update a draft or scheduled campaign."""
    from .services.campaign_service import get_campaign_service

    try:
        result = get_campaign_service().update_campaign(campaign_id, data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return result


@engage_router.delete("/campaigns/{campaign_id}")
async def delete_campaign(
    campaign_id: str,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CAMPAIGNS)),
):
    """Delete a campaign that is not running."""
    from .services.campaign_service import get_campaign_service

    try:
        deleted = get_campaign_service().delete_campaign(campaign_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not deleted:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return {"success": True}


@engage_router.post("/campaigns/{campaign_id}/send", response_model=CampaignSendResult)
async def send_campaign(
    campaign_id: str,
    data: Optional[SendCampaignRequest] = None,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CAMPAIGNS)),
    _: None = Depends(rate_limited("campaign_send")),
):
    """Send a campaign to its target groups in batches."""
    from .services.campaign_sender import get_campaign_sender

    data = data or SendCampaignRequest()
    logger.info(f"Campaign {campaign_id} send requested by {user.id}")

    try:
        return await get_campaign_sender().send_campaign(
            campaign_id,
            batch_size=data.batch_size,
            delay_between_batches_ms=data.delay_between_batches,
        )
    except ValueError as e:
        status_code = 404 if str(e) == "Campaign not found" else 400
        raise HTTPException(status_code=status_code, detail=str(e))
    except TwilioAPIError as e:
        return twilio_error_response(e)


@engage_router.get("/campaigns/{campaign_id}/messages", response_model=CampaignMessageListResponse)
async def list_campaign_messages(
    campaign_id: str,
    user: CurrentUser = Depends(require_permission(Permission.VIEW_CAMPAIGNS)),
    status: Optional[MessageStatus] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
):
    """Per-recipient delivery status."""
    from .services.campaign_service import get_campaign_service

    result = get_campaign_service().list_messages(campaign_id, status, page, page_size)
    if result is None:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return result


@engage_router.get("/campaigns/{campaign_id}/activation-stats", response_model=ActivationStatsResponse)
async def get_activation_stats(
    campaign_id: str,
    user: CurrentUser = Depends(require_permission(Permission.VIEW_CAMPAIGNS)),
):
    """How many recipients replied to the campaign."""
    from .services.campaign_service import get_campaign_service

    result = get_campaign_service().get_activation_stats(campaign_id)
    if not result:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return result


# =============================================================================
# Template Routes
# =============================================================================


@engage_router.get("/templates", response_model=List[TemplateResponse])
async def list_templates(
    user: CurrentUser = Depends(require_permission(Permission.VIEW_CAMPAIGNS)),
    status: Optional[TemplateStatus] = None,
):
    """List message templates."""
    from .services.template_service import get_template_service

    return get_template_service().list_templates(status)


@engage_router.post("/templates", response_model=TemplateResponse, status_code=201)
async def create_template(
    data: TemplateCreate,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CAMPAIGNS)),
):
    """Register a template by Content SID."""
    from .services.template_service import get_template_service

    try:
        return get_template_service().create_template(user.id, data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@engage_router.post("/templates/sync", response_model=TemplateSyncResponse)
async def sync_templates(
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CAMPAIGNS)),
):
    """Pull every template from the Twilio Content API."""
    from .services.template_service import get_template_service

    try:
        return await get_template_service().sync_all(user.id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TwilioAPIError as e:
        return twilio_error_response(e)


@engage_router.get("/templates/{template_id}", response_model=TemplateResponse)
async def get_template(
    template_id: str,
    user: CurrentUser = Depends(require_permission(Permission.VIEW_CAMPAIGNS)),
):
    """Get a template."""
    from .services.template_service import get_template_service

    result = get_template_service().get_template(template_id)
    if not result:
        raise HTTPException(status_code=404, detail="Template not found")
    return result


@engage_router.put("/templates/{template_id}", response_model=TemplateResponse)
async def update_template(
    template_id: str,
    data: TemplateUpdate,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CAMPAIGNS)),
):
    """Update local template fields."""
    from .services.template_service import get_template_service

    result = get_template_service().update_template(template_id, data)
    if not result:
        raise HTTPException(status_code=404, detail="Template not found")
    return result


@engage_router.delete("/templates/{template_id}")
async def delete_template(
    template_id: str,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CAMPAIGNS)),
):
    """Delete a template no active campaign uses."""
    from .services.template_service import get_template_service

    try:
        deleted = get_template_service().delete_template(template_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not deleted:
        raise HTTPException(status_code=404, detail="Template not found")
    return {"success": True}


@engage_router.post("/templates/{template_id}/sync", response_model=TemplateResponse)
async def sync_template(
    template_id: str,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CAMPAIGNS)),
):
    """Refresh one template from the Twilio Content API."""
    from .services.template_service import get_template_service

    try:
        result = await get_template_service().sync_one(template_id, user.id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TwilioAPIError as e:
        return twilio_error_response(e)

    if not result:
        raise HTTPException(status_code=404, detail="Template not found")
    return result


# =============================================================================
# Contact Routes
# =============================================================================


@engage_router.get("/contacts", response_model=ContactListResponse)
async def list_contacts(
    user: CurrentUser = Depends(require_permission(Permission.VIEW_CONTACTS)),
    search: Optional[str] = None,
    group_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
):
    """List contacts."""
    from .services.contact_service import get_contact_service

    return get_contact_service().list_contacts(search, group_id, page, page_size)


@engage_router.post("/contacts", response_model=ContactResponse, status_code=201)
async def create_contact(
    data: ContactCreate,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CONTACTS)),
):
    """Create a contact."""
    from .services.contact_service import get_contact_service

    try:
        return get_contact_service().create_contact(user.id, data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@engage_router.post("/contacts/import", response_model=ContactImportResponse)
async def import_contacts(
    file: UploadFile = File(...),
    group_id: Optional[str] = Form(None),
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CONTACTS)),
):
    """Bulk import contacts from a CSV file."""
    from .services.contact_service import get_contact_service

    content = await file.read()
    try:
        return get_contact_service().import_csv(user.id, content, group_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@engage_router.get("/contacts/{contact_id}", response_model=ContactResponse)
async def get_contact(
    contact_id: str,
    user: CurrentUser = Depends(require_permission(Permission.VIEW_CONTACTS)),
):
    """Get a contact."""
    from .services.contact_service import get_contact_service

    result = get_contact_service().get_contact(contact_id)
    if not result:
        raise HTTPException(status_code=404, detail="Contact not found")
    return result


@engage_router.put("/contacts/{contact_id}", response_model=ContactResponse)
async def update_contact(
    contact_id: str,
    data: ContactUpdate,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CONTACTS)),
):
    """Update a contact."""
    from .services.contact_service import get_contact_service

    try:
        result = get_contact_service().update_contact(contact_id, data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result:
        raise HTTPException(status_code=404, detail="Contact not found")
    return result


@engage_router.delete("/contacts/{contact_id}")
async def delete_contact(
    contact_id: str,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CONTACTS)),
):
    """Delete a contact and its conversations."""
    from .services.contact_service import get_contact_service

    if not get_contact_service().delete_contact(contact_id):
        raise HTTPException(status_code=404, detail="Contact not found")
    return {"success": True}


# =============================================================================
# Contact Group Routes
# =============================================================================


@engage_router.get("/groups", response_model=List[ContactGroupResponse])
async def list_groups(
    user: CurrentUser = Depends(require_permission(Permission.VIEW_CONTACTS)),
):
    """List contact groups."""
    from .services.contact_service import get_contact_service

    return get_contact_service().list_groups()


@engage_router.post("/groups", response_model=ContactGroupResponse, status_code=201)
async def create_group(
    data: ContactGroupCreate,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CONTACTS)),
):
    """Create a contact group."""
    from .services.contact_service import get_contact_service

    try:
        return get_contact_service().create_group(user.id, data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@engage_router.get("/groups/{group_id}", response_model=ContactGroupResponse)
async def get_group(
    group_id: str,
    user: CurrentUser = Depends(require_permission(Permission.VIEW_CONTACTS)),
):
    """Get a contact group."""
    from .services.contact_service import get_contact_service

    result = get_contact_service().get_group(group_id)
    if not result:
        raise HTTPException(status_code=404, detail="Group not found")
    return result


@engage_router.put("/groups/{group_id}", response_model=ContactGroupResponse)
async def update_group(
    group_id: str,
    data: ContactGroupUpdate,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CONTACTS)),
):
    """Update a contact group."""
    from .services.contact_service import get_contact_service

    try:
        result = get_contact_service().update_group(group_id, data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result:
        raise HTTPException(status_code=404, detail="Group not found")
    return result


@engage_router.delete("/groups/{group_id}")
async def delete_group(
    group_id: str,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CONTACTS)),
):
    """Delete a group; its contacts are kept without a group."""
    from .services.contact_service import get_contact_service

    if not get_contact_service().delete_group(group_id):
        raise HTTPException(status_code=404, detail="Group not found")
    return {"success": True}


@engage_router.get("/groups/{group_id}/contacts", response_model=ContactListResponse)
async def list_group_contacts(
    group_id: str,
    user: CurrentUser = Depends(require_permission(Permission.VIEW_CONTACTS)),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
):
    """Contacts in a group."""
    from .services.contact_service import get_contact_service

    result = get_contact_service().list_group_contacts(group_id, page, page_size)
    if result is None:
        raise HTTPException(status_code=404, detail="Group not found")
    return result


@engage_router.post("/groups/{group_id}/contacts", response_model=ContactGroupResponse)
async def add_group_contacts(
    group_id: str,
    data: GroupContactsRequest,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CONTACTS)),
):
    """Move contacts into a group."""
    from .services.contact_service import get_contact_service

    result = get_contact_service().add_contacts_to_group(group_id, data.contact_ids)
    if not result:
        raise HTTPException(status_code=404, detail="Group not found")
    return result


@engage_router.delete("/groups/{group_id}/contacts", response_model=ContactGroupResponse)
async def remove_group_contacts(
    group_id: str,
    data: GroupContactsRequest,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CONTACTS)),
):
    """Take contacts out of a group."""
    from .services.contact_service import get_contact_service

    result = get_contact_service().remove_contacts_from_group(group_id, data.contact_ids)
    if not result:
        raise HTTPException(status_code=404, detail="Group not found")
    return result


# =============================================================================
# Media Routes
# =============================================================================


@engage_router.get("/media/{message_id}")
async def get_message_media(
    message_id: str,
    user: CurrentUser = Depends(require_permission(Permission.VIEW_CONVERSATIONS)),
):
    """Stream a message's media through Twilio basic auth."""
    from .services.media_service import get_media_service

    try:
        result = await get_media_service().fetch_message_media(user, message_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TwilioAPIError as e:
        logger.error(f"Failed to fetch media for message {message_id}: {e.message}")
        raise HTTPException(status_code=500, detail="Failed to fetch media")

    if not result:
        raise HTTPException(status_code=404, detail="Media not found")

    content, content_type = result
    return Response(
        content=content,
        media_type=content_type,
        headers={"Cache-Control": "public, max-age=86400"},
    )


@engage_router.post("/upload/media", response_model=MediaUploadResponse)
async def upload_media(
    file: UploadFile = File(...),
    conversation_id: str = Form(..., alias="conversationId"),
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_CONVERSATIONS)),
):
    """Upload an outbound attachment and return its public URL."""
    from .services.media_service import get_media_service
    from .clients.supabase_admin import SupabaseAdminError

    content = await file.read()
    try:
        result = await get_media_service().upload_media(
            user, conversation_id, file.filename, file.content_type, content
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SupabaseAdminError as e:
        raise HTTPException(status_code=500, detail=f"Failed to upload file: {e.message}")

    if not result:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return result


# =============================================================================
# Webhook Routes
# =============================================================================


@engage_router.post("/webhooks/twilio")
async def receive_status_callback(request: Request):
    """Receive Twilio message status callbacks."""
    from .webhooks.twilio_webhook import get_webhook_handler, WebhookType

    form = await request.form()
    payload = dict(form)

    handler = get_webhook_handler()
    if not handler.verify_signature(_signed_url(request), payload, request.headers.get("X-Twilio-Signature")):
        logger.warning("Invalid Twilio webhook signature")
        raise HTTPException(status_code=403, detail="Invalid signature")

    handler.log_webhook(WebhookType.STATUS, payload, dict(request.headers))
    handler.handle_status_callback(payload)

    # Twilio retries anything but a quick 200
    return PlainTextResponse("OK")


@engage_router.get("/webhooks/twilio")
async def describe_status_webhook(test: Optional[str] = None):
    """Describe the status webhook; `?test=connectivity` checks reachability."""
    settings = get_engage_settings()
    if test == "connectivity":
        return {
            "status": "success",
            "message": "Webhook is reachable and responding",
            "timestamp": datetime.utcnow().isoformat(),
            "endpoint": "/api/webhooks/twilio",
            "webhookUrl": settings.twilio_webhook_url,
        }

    return {
        "message": "Twilio WhatsApp Status Webhook",
        "endpoint": "/api/webhooks/twilio",
        "webhookUrl": settings.twilio_webhook_url,
        "timestamp": datetime.utcnow().isoformat(),
        "status": "Active and ready to receive callbacks",
        "instructions": [
            "This endpoint receives Twilio status callbacks",
            "Configure in Twilio Console or use StatusCallback parameter",
            "Supported statuses: queued, sent, delivered, read, failed, undelivered",
            "Add ?test=connectivity to test webhook connectivity",
        ],
    }


@engage_router.post("/webhooks/twilio/incoming")
async def receive_incoming_message(request: Request):
    """Receive incoming WhatsApp messages."""
    from .webhooks.twilio_webhook import get_webhook_handler, WebhookType

    form = await request.form()
    payload = dict(form)

    handler = get_webhook_handler()
    if not handler.verify_signature(_signed_url(request), payload, request.headers.get("X-Twilio-Signature")):
        logger.warning("Invalid Twilio webhook signature")
        raise HTTPException(status_code=403, detail="Invalid signature")

    handler.log_webhook(WebhookType.INCOMING, payload, dict(request.headers))
    handler.handle_incoming_message(payload)

    return PlainTextResponse("OK")


@engage_router.get("/webhooks/twilio/incoming")
async def describe_incoming_webhook():
    """Describe the incoming message webhook."""
    settings = get_engage_settings()
    return {
        "message": "Twilio WhatsApp Incoming Message Webhook",
        "endpoint": "/api/webhooks/twilio/incoming",
        "webhookUrl": f"{settings.twilio_webhook_url}/incoming",
        "timestamp": datetime.utcnow().isoformat(),
        "instructions": [
            "This endpoint receives incoming WhatsApp messages",
            "Configure in Twilio Console WhatsApp sandbox",
            'Set as "When a message comes in" webhook URL',
        ],
    }
