"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic webhook payload models, see events.py.

All timestamps are ISO-8601 UTC strings with a Z suffix.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from wa_webhook.storage import Base
from wa_webhook.utils import utc_now_iso


MESSAGE_TYPES = ("text", "image", "video", "audio", "document", "sticker", "contact", "location")
MEDIA_TYPES = ("image", "video", "audio", "document", "sticker")


class WhatsAppAccount(Base):
    """
    A connected provider identity owned by this deployment.

    Table: whatsapp_accounts
    Unique: phone_number
    """
    __tablename__ = "whatsapp_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone_number = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=True)
    status = Column(String, nullable=False, default="connected")
    created_at = Column(String, nullable=False, default=utc_now_iso)
    updated_at = Column(String, nullable=False, default=utc_now_iso, onupdate=utc_now_iso)


class Contact(Base):
    """
    A chat (individual or group) scoped to an account.

    Table: contacts
    Unique: (account_id, jid)
    """
    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint("account_id", "jid", name="uq_contacts_account_jid"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("whatsapp_accounts.id"), nullable=False, index=True)
    jid = Column(String, nullable=False)
    name = Column(String, nullable=True)
    is_group = Column(Boolean, nullable=False, default=False)
    group_subject = Column(String, nullable=True)
    group_description = Column(Text, nullable=True)
    created_at = Column(String, nullable=False, default=utc_now_iso)
    updated_at = Column(String, nullable=False, default=utc_now_iso, onupdate=utc_now_iso)


class Message(Base):
    """
    A message in a chat.

    Table: messages
    Unique: (account_id, message_id) - message_id is the provider's id and
    is how later events (acks, edits, revokes, reactions) find the row.
    """
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("account_id", "message_id", name="uq_messages_account_message_id"),
        CheckConstraint(
            "type IN (" + ", ".join(f"'{t}'" for t in MESSAGE_TYPES) + ")",
            name="ck_messages_type",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("whatsapp_accounts.id"), nullable=False, index=True)
    chat_id = Column(Integer, ForeignKey("contacts.id"), nullable=False, index=True)
    sender_jid = Column(String, nullable=True)
    message_id = Column(String, nullable=False)
    type = Column(String, nullable=False, default="text")
    text = Column(Text, nullable=True)
    quoted_message = Column(Text, nullable=True)
    replied_to_id = Column(String, nullable=True)
    forwarded = Column(Boolean, nullable=False, default=False)
    view_once = Column(Boolean, nullable=False, default=False)
    created_at = Column(String, nullable=False, default=utc_now_iso)
    updated_at = Column(String, nullable=False, default=utc_now_iso, onupdate=utc_now_iso)


class MessageMedia(Base):
    """Media attachment metadata. At most one per message."""
    __tablename__ = "message_media"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=False, unique=True)
    media_type = Column(String, nullable=True)
    mime_type = Column(String, nullable=True)
    file_path = Column(String, nullable=True)
    caption = Column(Text, nullable=True)


class MessageLocation(Base):
    """Shared location. At most one per message."""
    __tablename__ = "message_locations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=False, unique=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    name = Column(String, nullable=True)
    address = Column(String, nullable=True)
    jpeg_thumbnail = Column(Text, nullable=True)  # base64


class MessageReaction(Base):
    """Append-only reaction log."""
    __tablename__ = "message_reactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=False, index=True)
    sender_jid = Column(String, nullable=True)
    reaction = Column(String, nullable=True)
    created_at = Column(String, nullable=False, default=utc_now_iso)


class MessageReceipt(Base):
    """Append-only delivery/read receipts, one row per acknowledged id."""
    __tablename__ = "message_receipts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=False, index=True)
    recipient_jid = Column(String, nullable=True)
    receipt_type = Column(String, nullable=True)
    description = Column(String, nullable=True)
    created_at = Column(String, nullable=False, default=utc_now_iso)


class GroupParticipant(Base):
    """
    Group membership.

    Table: group_participants
    Unique: (group_id, participant_jid); left_at is null while active.
    """
    __tablename__ = "group_participants"
    __table_args__ = (
        UniqueConstraint("group_id", "participant_jid", name="uq_group_participants_group_jid"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(Integer, ForeignKey("contacts.id"), nullable=False, index=True)
    participant_jid = Column(String, nullable=False)
    is_admin = Column(Boolean, nullable=False, default=False)
    joined_at = Column(String, nullable=True)
    left_at = Column(String, nullable=True)


class MessageRevoke(Base):
    __tablename__ = "message_revokes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=False, index=True)
    revoked_by_jid = Column(String, nullable=True)
    revoked_at = Column(String, nullable=False, default=utc_now_iso)
    revoked_for_me = Column(Boolean, nullable=False, default=False)


class MessageEdit(Base):
    __tablename__ = "message_edits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=False, index=True)
    edited_text = Column(Text, nullable=True)
    edited_at = Column(String, nullable=False, default=utc_now_iso)
