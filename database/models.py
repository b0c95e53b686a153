"""
Database models for the omnichannel engagement dashboard
"""
import uuid
from sqlalchemy import Column, String, Integer, DateTime, Boolean, Text, ForeignKey, JSON, Float
from sqlalchemy.orm import relationship
from datetime import datetime
from .database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Staff - Profiles & Teams
# =============================================================================


class Team(Base):
    """
    A group of agents led by a team leader.
    """
    __tablename__ = "teams"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text)

    # Leader is a profile; kept as a plain reference to avoid a circular FK
    leader_id = Column(String(36), index=True)

    created_by = Column(String(36))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    members = relationship("Profile", back_populates="team")


class Profile(Base):
    """
    Staff profile. The id is the hosted-auth user id (JWT `sub`).
    """
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(200))
    avatar_url = Column(String(500))

    # RBAC
    role = Column(String(20), nullable=False, default="agent")  # admin, general_manager, leader, agent
    team_id = Column(String(36), ForeignKey("teams.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    team = relationship("Team", back_populates="members")


# =============================================================================
# Contacts
# =============================================================================


class ContactGroup(Base):
    """
    Named audience segment. Campaigns target one or more groups.
    """
    __tablename__ = "contact_groups"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text)
    color = Column(String(7), default="#3B82F6")  # Hex color for UI
    contact_count = Column(Integer, default=0)

    created_by = Column(String(36))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    contacts = relationship("Contact", back_populates="group")


class Contact(Base):
    """
    A customer reachable over WhatsApp. Phone number is the identity.
    """
    __tablename__ = "contacts"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(200))
    phone_number = Column(String(32), unique=True, nullable=False, index=True)  # E.164 (+6281234567890)
    email = Column(String(255))
    group_id = Column(String(36), ForeignKey("contact_groups.id", ondelete="SET NULL"), nullable=True, index=True)
    custom_fields = Column(JSON, default=dict)
    tags = Column(JSON, default=list)
    profile_picture_url = Column(String(500))
    notes = Column(Text)

    last_interaction_at = Column(DateTime)
    created_by = Column(String(36))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    group = relationship("ContactGroup", back_populates="contacts")
    conversations = relationship("Conversation", back_populates="contact", cascade="all, delete-orphan")


# =============================================================================
# Templates & Campaigns
# =============================================================================


class MessageTemplate(Base):
    """
    WhatsApp template mirrored from the Twilio Content API.
    `template_id` holds the Twilio Content SID (HX...).
    """
    __tablename__ = "message_templates"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(200), nullable=False)
    template_id = Column(String(64), unique=True, index=True)
    category = Column(String(30), default="marketing")  # marketing, utility, authentication
    language = Column(String(10), default="en")
    body = Column(Text)
    variables = Column(JSON, default=list)  # Declared variable names, in order
    status = Column(String(20), default="pending")  # approved, pending, rejected, draft

    # Raw Content API data: original_body_text, sample variables, approval links
    twilio_metadata = Column(JSON, default=dict)

    created_by = Column(String(36))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    campaigns = relationship("Campaign", back_populates="template")


class Campaign(Base):
    """
    Outbound template broadcast to one or more contact groups.
    """
    __tablename__ = "campaigns"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    template_id = Column(String(36), ForeignKey("message_templates.id"), nullable=False)

    # Lifecycle: draft -> scheduled -> running -> completed | failed
    status = Column(String(20), default="draft")

    # Audience: list of contact group ids
    target_segments = Column(JSON, default=list)

    # Personalisation
    template_variables = Column(JSON, default=dict)
    variable_source = Column(String(10), default="manual")  # manual, contact

    scheduled_at = Column(DateTime)
    # Set once every recipient has been attempted; completion waits for it
    sent_at = Column(DateTime)
    created_by = Column(String(36))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    template = relationship("MessageTemplate", back_populates="campaigns")
    messages = relationship("CampaignMessage", back_populates="campaign", cascade="all, delete-orphan")
    analytics = relationship("CampaignAnalytics", back_populates="campaign", uselist=False, cascade="all, delete-orphan")


class CampaignMessage(Base):
    """
    One outbound campaign message per recipient, tracked through
    Twilio status callbacks.
    """
    __tablename__ = "campaign_messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    campaign_id = Column(String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True)
    contact_id = Column(String(36), ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True)

    message_sid = Column(String(64), unique=True, index=True)  # Null when the send itself failed
    phone_number = Column(String(32))
    template_data = Column(JSON, default=dict)

    # Delivery: pending, sent, delivered, read, failed
    status = Column(String(20), default="pending")
    error_code = Column(String(20))
    error_message = Column(Text)

    sent_at = Column(DateTime)
    delivered_at = Column(DateTime)
    read_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    campaign = relationship("Campaign", back_populates="messages")


class CampaignAnalytics(Base):
    """
    Aggregate delivery counters, one row per campaign (upserted).
    """
    __tablename__ = "campaign_analytics"

    id = Column(String(36), primary_key=True, default=_uuid)
    campaign_id = Column(String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, unique=True)

    total_sent = Column(Integer, default=0)
    total_delivered = Column(Integer, default=0)
    total_read = Column(Integer, default=0)
    total_failed = Column(Integer, default=0)
    delivery_rate = Column(Float, default=0.0)  # Percent, 2 decimals
    read_rate = Column(Float, default=0.0)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    campaign = relationship("Campaign", back_populates="analytics")


# =============================================================================
# Conversations
# =============================================================================


class Conversation(Base):
    """
    A WhatsApp thread with a contact, gated by the 24-hour customer
    service window.
    """
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=_uuid)
    contact_id = Column(String(36), ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True)

    # Status
    status = Column(String(20), default="open")  # open, pending, closed
    priority = Column(String(10), default="normal")  # low, normal, high, urgent

    # Campaign-created threads stay dormant until the customer replies
    visibility_status = Column(String(10), default="active")  # active, dormant
    created_by_campaign = Column(String(36), ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True, index=True)

    # Assignment
    assigned_to = Column(String(36), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    team_id = Column(String(36), ForeignKey("teams.id", ondelete="SET NULL"), nullable=True)

    # 24-hour window tracking
    last_customer_message_at = Column(DateTime)
    conversation_window_expires_at = Column(DateTime, index=True)
    is_within_window = Column(Boolean, default=False)

    last_message_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    contact = relationship("Contact", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")


class Message(Base):
    """
    Individual messages within a conversation (inbound and free-form outbound).
    """
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)

    # Message identity
    message_sid = Column(String(64), unique=True)  # Twilio SID (SM.../MM...)
    direction = Column(String(10), nullable=False)  # inbound, outbound

    # Content
    message_type = Column(String(20), default="text")  # text, image, video, audio, document, media
    content = Column(Text)
    media_url = Column(String(1000))
    media_content_type = Column(String(100))

    from_number = Column(String(40))
    to_number = Column(String(40))
    sent_by = Column(String(36), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)

    # Delivery (outbound only)
    status = Column(String(20))
    error_code = Column(String(20))
    error_message = Column(Text)

    timestamp = Column(DateTime, default=datetime.utcnow)
    delivered_at = Column(DateTime)
    read_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")


class TwilioWebhookLog(Base):
    """
    Raw webhook payloads kept for debugging delivery issues.
    """
    __tablename__ = "twilio_webhook_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    webhook_type = Column(String(20), nullable=False)  # status, incoming
    message_sid = Column(String(64), index=True)
    payload = Column(JSON)
    raw_headers = Column(JSON)
    received_at = Column(DateTime, default=datetime.utcnow)
