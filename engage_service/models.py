"""
Pydantic models for Engage Service API requests and responses.

Covers: Profiles, Teams, Users, Contacts, Groups, Templates, Campaigns,
Conversations, Messages, Webhooks
"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum

from .config import MIN_BATCH_SIZE, MAX_BATCH_SIZE, MIN_BATCH_DELAY_MS, MAX_BATCH_DELAY_MS


# =============================================================================
# Enums
# =============================================================================


class Role(str, Enum):
    """Staff roles, most to least privileged."""
    ADMIN = "admin"
    GENERAL_MANAGER = "general_manager"
    LEADER = "leader"
    AGENT = "agent"


class CampaignStatus(str, Enum):
    """Campaign lifecycle."""
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class VariableSource(str, Enum):
    """Where contact-related template variables come from."""
    MANUAL = "manual"
    CONTACT = "contact"


class MessageStatus(str, Enum):
    """Internal delivery status."""
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class ConversationStatus(str, Enum):
    """Conversation status."""
    OPEN = "open"
    PENDING = "pending"
    CLOSED = "closed"


class ConversationPriority(str, Enum):
    """Conversation priority."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class VisibilityStatus(str, Enum):
    """Campaign-created threads stay dormant until the customer replies."""
    ACTIVE = "active"
    DORMANT = "dormant"


class MessageDirection(str, Enum):
    """Message direction."""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageType(str, Enum):
    """Message content type."""
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    MEDIA = "media"


class TemplateStatus(str, Enum):
    """WhatsApp approval state of a template."""
    APPROVED = "approved"
    PENDING = "pending"
    REJECTED = "rejected"
    DRAFT = "draft"


# Media type -> required content-type prefix (None = anything goes)
CONTENT_TYPE_PREFIXES: Dict[str, Optional[str]] = {
    "image": "image/",
    "video": "video/",
    "audio": "audio/",
    "document": None,
}

DEFAULT_CONTENT_TYPES: Dict[str, str] = {
    "image": "image/jpeg",
    "video": "video/mp4",
    "audio": "audio/mpeg",
    "document": "application/pdf",
}


# =============================================================================
# Profile Models
# =============================================================================


class ProfileResponse(BaseModel):
    """Staff profile."""
    id: str
    email: str
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    role: Role
    team_id: Optional[str] = None
    team_name: Optional[str] = None
    is_active: bool = True
    permissions: List[str] = []
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProfileUpdate(BaseModel):
    """Self-service profile update."""
    full_name: Optional[str] = Field(None, max_length=200)
    avatar_url: Optional[str] = Field(None, max_length=500)


class ProfileSetupRequest(BaseModel):
    """First-login profile setup."""
    full_name: str = Field(..., min_length=2, max_length=200)
    avatar_url: Optional[str] = None


# =============================================================================
# Team Models
# =============================================================================


class TeamCreate(BaseModel):
    """Create a team."""
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    leader_id: Optional[str] = None


class TeamUpdate(BaseModel):
    """Update a team."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None


class TeamMemberResponse(BaseModel):
    """Team member summary."""
    id: str
    email: str
    full_name: Optional[str] = None
    role: Role

    class Config:
        from_attributes = True


class TeamResponse(BaseModel):
    """Team with leader and members."""
    id: str
    name: str
    description: Optional[str] = None
    leader_id: Optional[str] = None
    leader_name: Optional[str] = None
    member_count: int = 0
    members: List[TeamMemberResponse] = []
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TeamListResponse(BaseModel):
    """List of teams."""
    teams: List[TeamResponse]
    total: int


class SetTeamLeaderRequest(BaseModel):
    """Assign a team leader."""
    leader_id: str


class AddTeamMemberRequest(BaseModel):
    """Add one member."""
    user_id: str


class BulkAddMembersRequest(BaseModel):
    """Add several members at once."""
    user_ids: List[str] = Field(..., min_length=1)


class BulkAddMembersResponse(BaseModel):
    """Result of a bulk member add."""
    added: List[str]
    skipped: List[str]


# =============================================================================
# User Management Models
# =============================================================================


class UserCreate(BaseModel):
    """Create a staff account (hosted auth user + profile)."""
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=2, max_length=200)
    role: Role = Role.AGENT
    team_id: Optional[str] = None


class UserUpdate(BaseModel):
    """Admin update of a staff account."""
    full_name: Optional[str] = Field(None, max_length=200)
    role: Optional[Role] = None
    team_id: Optional[str] = None
    is_active: Optional[bool] = None


class PasswordResetRequest(BaseModel):
    """Admin password reset."""
    password: str = Field(..., min_length=6)


class UserListResponse(BaseModel):
    """List of staff profiles."""
    users: List[ProfileResponse]
    total: int


# =============================================================================
# Contact Models
# =============================================================================


class ContactCreate(BaseModel):
    """Create a contact."""
    name: Optional[str] = Field(None, max_length=200)
    phone_number: str = Field(..., min_length=5, max_length=32, description="E.164 format, e.g. +6281234567890")
    email: Optional[str] = None
    group_id: Optional[str] = None
    custom_fields: Dict[str, Any] = {}
    tags: List[str] = []


class ContactUpdate(BaseModel):
    """Update contact fields."""
    name: Optional[str] = Field(None, max_length=200)
    phone_number: Optional[str] = Field(None, min_length=5, max_length=32)
    email: Optional[str] = None
    group_id: Optional[str] = None
    custom_fields: Optional[Dict[str, Any]] = None
    tags: Optional[List[str]] = None
    notes: Optional[str] = None


class ContactResponse(BaseModel):
    """Contact record."""
    id: str
    name: Optional[str] = None
    phone_number: str
    email: Optional[str] = None
    group_id: Optional[str] = None
    group_name: Optional[str] = None
    custom_fields: Dict[str, Any] = {}
    tags: List[str] = []
    profile_picture_url: Optional[str] = None
    last_interaction_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ContactListResponse(BaseModel):
    """Paginated contact list."""
    contacts: List[ContactResponse]
    total: int
    page: int = 1
    page_size: int = 50


class ContactImportResponse(BaseModel):
    """CSV import outcome."""
    imported: int
    skipped: int
    errors: List[str] = []


# =============================================================================
# Contact Group Models
# =============================================================================


class ContactGroupCreate(BaseModel):
    """Create a contact group."""
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    color: Optional[str] = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")


class ContactGroupUpdate(BaseModel):
    """Update a contact group."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    color: Optional[str] = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")


class ContactGroupResponse(BaseModel):
    """Contact group."""
    id: str
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    contact_count: int = 0
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class GroupContactsRequest(BaseModel):
    """Move contacts into / out of a group."""
    contact_ids: List[str] = Field(..., min_length=1)


# =============================================================================
# Template Models
# =============================================================================


class TemplateCreate(BaseModel):
    """Register a template by Twilio Content SID."""
    name: str = Field(..., min_length=1, max_length=200)
    template_id: str = Field(..., description="Twilio Content SID (HX...)")
    category: str = "marketing"
    language: str = "en"
    body: Optional[str] = None
    variables: List[str] = []


class TemplateUpdate(BaseModel):
    """Update local template fields."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    category: Optional[str] = None
    body: Optional[str] = None
    variables: Optional[List[str]] = None
    status: Optional[TemplateStatus] = None


class TemplateResponse(BaseModel):
    """Template record."""
    id: str
    name: str
    template_id: Optional[str] = None
    category: Optional[str] = None
    language: Optional[str] = None
    body: Optional[str] = None
    variables: List[str] = []
    status: TemplateStatus
    twilio_metadata: Dict[str, Any] = {}
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TemplateSyncResponse(BaseModel):
    """Outcome of a Twilio Content API sync."""
    synced: int
    created: int
    updated: int
    errors: List[str] = []


# =============================================================================
# Campaign Models
# =============================================================================


class CampaignCreate(BaseModel):
    """Create a campaign draft."""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    template_id: str
    target_segments: List[str] = Field(..., min_length=1, description="Contact group ids")
    template_variables: Dict[str, str] = {}
    variable_source: VariableSource = VariableSource.MANUAL
    scheduled_at: Optional[datetime] = None


class CampaignUpdate(BaseModel):
    """Update a draft or scheduled campaign."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    template_id: Optional[str] = None
    target_segments: Optional[List[str]] = None
    template_variables: Optional[Dict[str, str]] = None
    variable_source: Optional[VariableSource] = None
    scheduled_at: Optional[datetime] = None


class CampaignAnalyticsResponse(BaseModel):
    """Aggregate delivery counters."""
    total_sent: int = 0
    total_delivered: int = 0
    total_read: int = 0
    total_failed: int = 0
    delivery_rate: float = 0.0
    read_rate: float = 0.0
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CampaignResponse(BaseModel):
    """Campaign with template and analytics."""
    id: str
    name: str
    description: Optional[str] = None
    template_id: str
    template_name: Optional[str] = None
    status: CampaignStatus
    target_segments: List[str] = []
    template_variables: Dict[str, str] = {}
    variable_source: VariableSource = VariableSource.MANUAL
    audience_size: int = 0
    analytics: Optional[CampaignAnalyticsResponse] = None
    scheduled_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CampaignListResponse(BaseModel):
    """Paginated campaign list."""
    campaigns: List[CampaignResponse]
    total: int
    page: int = 1
    page_size: int = 20


class CampaignMessageResponse(BaseModel):
    """Per-recipient campaign message."""
    id: str
    campaign_id: str
    contact_id: Optional[str] = None
    contact_name: Optional[str] = None
    message_sid: Optional[str] = None
    phone_number: Optional[str] = None
    status: MessageStatus
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CampaignMessageListResponse(BaseModel):
    """Paginated campaign message list."""
    messages: List[CampaignMessageResponse]
    total: int
    page: int = 1
    page_size: int = 50


class SendCampaignRequest(BaseModel):
    """Batching options for a campaign send."""
    batch_size: int = Field(50, ge=MIN_BATCH_SIZE, le=MAX_BATCH_SIZE, alias="batchSize")
    delay_between_batches: int = Field(
        1000, ge=MIN_BATCH_DELAY_MS, le=MAX_BATCH_DELAY_MS, alias="delayBetweenBatches",
        description="Milliseconds to wait between batches",
    )

    class Config:
        populate_by_name = True


class CampaignSendResult(BaseModel):
    """Outcome of a campaign send."""
    success: bool
    campaign_id: str
    total_sent: int
    total_failed: int
    message: str


class ActivationDetail(BaseModel):
    """A campaign conversation the customer replied to."""
    conversation_id: str
    contact_name: Optional[str] = None
    phone_number: Optional[str] = None
    response_delay_hours: int
    activated_at: datetime


class ActivationStatsResponse(BaseModel):
    """How many campaign recipients replied."""
    campaign_id: str
    campaign_name: str
    total_conversations: int = 0
    activated_conversations: int = 0
    dormant_conversations: int = 0
    activation_rate: int = 0
    avg_response_time_hours: int = 0
    message_stats: Dict[str, int] = {}
    activated_details: List[ActivationDetail] = []


# =============================================================================
# Conversation Models
# =============================================================================


class ConversationResponse(BaseModel):
    """Conversation in the inbox."""
    id: str
    contact_id: str
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_profile_pic: Optional[str] = None

    status: ConversationStatus
    priority: ConversationPriority = ConversationPriority.NORMAL
    visibility_status: VisibilityStatus = VisibilityStatus.ACTIVE
    assigned_to: Optional[str] = None
    created_by_campaign: Optional[str] = None

    # Last message preview
    last_message_preview: Optional[str] = None
    last_message_at: Optional[datetime] = None
    last_customer_message_at: Optional[datetime] = None

    # 24hr window for free-form replies
    conversation_window_expires_at: Optional[datetime] = None
    is_within_window: bool = False

    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ConversationListResponse(BaseModel):
    """Inbox page."""
    conversations: List[ConversationResponse]
    total: int
    page: int = 1
    page_size: int = 50


class ConversationUpdateRequest(BaseModel):
    """Update conversation status, priority or assignment."""
    status: Optional[ConversationStatus] = None
    priority: Optional[ConversationPriority] = None
    assigned_to: Optional[str] = None


class MessageResponse(BaseModel):
    """Message in a conversation thread."""
    id: str
    conversation_id: str
    message_sid: Optional[str] = None

    direction: MessageDirection
    message_type: MessageType
    content: Optional[str] = None
    media_url: Optional[str] = None
    media_content_type: Optional[str] = None

    sent_by: Optional[str] = None
    sent_by_name: Optional[str] = None

    status: Optional[MessageStatus] = None
    error_message: Optional[str] = None

    timestamp: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MessageThreadResponse(BaseModel):
    """Conversation with its messages, oldest first."""
    conversation: ConversationResponse
    messages: List[MessageResponse]
    total_messages: int


class SendMessageRequest(BaseModel):
    """Free-form reply inside the conversation window."""
    message: str = Field(..., min_length=1, description="Message text or media caption")
    message_type: MessageType = MessageType.TEXT
    media_url: Optional[str] = None
    media_content_type: Optional[str] = None

    @model_validator(mode="after")
    def check_media(self):
        if self.message_type != MessageType.TEXT and not self.media_url:
            raise ValueError("Media URL is required for non-text message types")
        if self.media_url:
            if not self.media_url.startswith(("http://", "https://")):
                raise ValueError("Media URL must be a valid HTTP/HTTPS URL")
            prefix = CONTENT_TYPE_PREFIXES.get(self.message_type.value)
            if prefix and self.media_content_type and not self.media_content_type.startswith(prefix):
                raise ValueError("Media content type doesn't match message type")
        return self


class WindowStatusItem(BaseModel):
    """Conversation entry in the window report."""
    id: str
    status: ConversationStatus
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    conversation_window_expires_at: Optional[datetime] = None
    is_within_window: bool = False


class WindowReportResponse(BaseModel):
    """Conversations about to lapse and already lapsed."""
    expiring_soon: List[WindowStatusItem]
    already_expired: List[WindowStatusItem]
    expiring_soon_count: int
    already_expired_count: int


class AutoCloseResponse(BaseModel):
    """Outcome of the expiry sweep."""
    success: bool = True
    closed_count: int
    message: str


# =============================================================================
# Dashboard / Media / Webhook Models
# =============================================================================


class DashboardSummaryResponse(BaseModel):
    """Headline numbers for the dashboard."""
    open_conversations: int = 0
    conversations_within_window: int = 0
    total_contacts: int = 0
    campaigns_by_status: Dict[str, int] = {}
    messages_sent: int = 0
    messages_delivered: int = 0
    messages_read: int = 0
    messages_failed: int = 0


class MediaUploadResponse(BaseModel):
    """Uploaded media stored in the hosted bucket."""
    url: str
    path: str
    content_type: str
    size: int


class WebhookEventResponse(BaseModel):
    """Result of processing a single webhook callback."""
    success: bool
    event: str
    message_sid: Optional[str] = None
    status: Optional[str] = None
    campaign_id: Optional[str] = None
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    is_new_contact: bool = False


class EngageErrorResponse(BaseModel):
    """Error body for window and gateway failures."""
    error: str
    code: Optional[Any] = None
    details: Optional[str] = None
