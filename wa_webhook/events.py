"""
Pydantic models for gateway webhook payloads, and the classifier that maps
a decoded body onto exactly one event variant.

Variants:
- RegularMessage: an inbound/outbound chat message (optionally with media,
  location, contact card or an embedded reaction)
- Acknowledgment: delivery/read receipts for a batch of message ids
- GroupParticipantChange: join/leave/promote/demote for a batch of jids
- MessageRevoked: a message was deleted
- MessageEdited: a message's text was edited
- Unknown: anything else; acknowledged without side effects
"""

import json
import logging
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from wa_webhook.errors import MalformedPayload
from wa_webhook.models import MEDIA_TYPES
from wa_webhook.utils import normalize_timestamp

logger = logging.getLogger(__name__)


# =============================================================================
# Nested Payload Models
# =============================================================================

class _Payload(BaseModel):
    model_config = {"populate_by_name": True, "extra": "ignore"}


class AccountRef(_Payload):
    """Connected account identification, when the gateway sends it."""
    phone_number: str = Field(..., min_length=1)
    name: Optional[str] = None


class MessageBody(_Payload):
    id: str = Field(..., min_length=1, description="Provider message id")
    text: Optional[str] = None
    quoted_message: Optional[str] = None
    replied_id: Optional[str] = None


class MessageRef(_Payload):
    id: str = Field(..., min_length=1, description="Provider message id")


class MediaPayload(_Payload):
    mime_type: Optional[str] = None
    media_path: Optional[str] = None
    caption: Optional[str] = None


class LocationPayload(_Payload):
    latitude: Optional[float] = Field(None, alias="degreesLatitude")
    longitude: Optional[float] = Field(None, alias="degreesLongitude")
    name: Optional[str] = None
    address: Optional[str] = None
    thumbnail: Optional[str] = Field(None, alias="JPEGThumbnail")


class ContactCardPayload(_Payload):
    display_name: Optional[str] = Field(None, alias="displayName")
    vcard: Optional[str] = None


class ReactionPayload(_Payload):
    target_id: Optional[str] = Field(None, alias="id", description="Provider id of the reacted message")
    reaction: Optional[str] = Field(None, alias="message")


class AckPayload(_Payload):
    ids: list[str] = Field(default_factory=list)
    sender_id: Optional[str] = None
    receipt_type: Optional[str] = None
    receipt_type_description: Optional[str] = None


class GroupParticipantsPayload(_Payload):
    chat_id: str = Field(..., min_length=1)
    jids: list[str] = Field(default_factory=list)
    action: str = Field(..., alias="type", description="join | leave | promote | demote")


# =============================================================================
# Event Variants
# =============================================================================

class _Event(_Payload):
    account: Optional[AccountRef] = None
    timestamp: Optional[str] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def normalize_event_timestamp(cls, v: Any) -> Optional[str]:
        """Accept ISO-8601 strings and epoch seconds/milliseconds."""
        return normalize_timestamp(v)


class RegularMessage(_Event):
    kind: Literal["message"] = "message"
    from_jid: Optional[str] = Field(None, alias="from")
    chat_id: Optional[str] = None
    pushname: Optional[str] = None
    message: MessageBody
    image: Optional[MediaPayload] = None
    video: Optional[MediaPayload] = None
    audio: Optional[MediaPayload] = None
    document: Optional[MediaPayload] = None
    sticker: Optional[MediaPayload] = None
    contact: Optional[ContactCardPayload] = None
    location: Optional[LocationPayload] = None
    reaction: Optional[ReactionPayload] = None
    forwarded: bool = False
    view_once: bool = False

    @model_validator(mode="before")
    @classmethod
    def drop_empty_attachments(cls, data: Any) -> Any:
        """Treat falsy attachment fields (null, {}, "") as absent."""
        if isinstance(data, dict):
            data = dict(data)
            for key in (*MEDIA_TYPES, "contact", "location", "reaction"):
                if key in data and not data[key]:
                    data[key] = None
            for key in ("forwarded", "view_once"):
                if key in data and data[key] is None:
                    data[key] = False
        return data

    @property
    def chat_jid(self) -> Optional[str]:
        return self.chat_id or self.from_jid

    @property
    def media_type(self) -> Optional[str]:
        """First media field present, in priority order."""
        for media_type in MEDIA_TYPES:
            if getattr(self, media_type) is not None:
                return media_type
        return None

    @property
    def message_type(self) -> str:
        """Message type by fixed priority: media, contact card, location, text."""
        media_type = self.media_type
        if media_type:
            return media_type
        if self.contact is not None:
            return "contact"
        if self.location is not None:
            return "location"
        return "text"


class Acknowledgment(_Event):
    kind: Literal["message.ack"] = "message.ack"
    payload: AckPayload


class GroupParticipantChange(_Event):
    kind: Literal["group.participants"] = "group.participants"
    payload: GroupParticipantsPayload


class MessageRevoked(_Event):
    kind: Literal["message_revoked"] = "message_revoked"
    revoked_message_id: str = Field(..., min_length=1)
    from_jid: Optional[str] = Field(None, alias="from")
    revoked_from_me: bool = False

    @field_validator("revoked_from_me", mode="before")
    @classmethod
    def default_revoked_from_me(cls, v: Any) -> Any:
        return False if v is None else v


class MessageEdited(_Event):
    kind: Literal["message_edited"] = "message_edited"
    message: MessageRef
    edited_text: Optional[str] = None


class Unknown(BaseModel):
    kind: Literal["unknown"] = "unknown"
    keys: list[str] = Field(default_factory=list, description="Top-level keys, for logging")


EventVariant = Union[
    RegularMessage,
    Acknowledgment,
    GroupParticipantChange,
    MessageRevoked,
    MessageEdited,
    Unknown,
]


# =============================================================================
# Parsing and Classification
# =============================================================================

def parse_payload(raw_body: bytes) -> dict:
    """
    Decode a verified request body.

    Raises:
        MalformedPayload: body is not valid JSON or not a JSON object
    """
    try:
        parsed = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error(f"Invalid JSON: {e}")
        raise MalformedPayload(f"Invalid JSON: {e}") from e

    if not isinstance(parsed, dict):
        logger.error(f"JSON body is a {type(parsed).__name__}, expected an object")
        raise MalformedPayload("JSON body must be an object")

    return parsed


def classify(parsed: dict) -> EventVariant:
    """
    Assign a decoded body to one event variant. First match wins:

    1. message present, no event/action -> RegularMessage
    2. event == "message.ack"           -> Acknowledgment
    3. event == "group.participants"    -> GroupParticipantChange
    4. action == "message_revoked"      -> MessageRevoked
    5. action == "message_edited"       -> MessageEdited
    6. otherwise                        -> Unknown

    Raises:
        MalformedPayload: the body matches a variant but lacks fields it needs
    """
    event = parsed.get("event")
    action = parsed.get("action")

    if parsed.get("message") and not event and not action:
        variant = RegularMessage
    elif event == "message.ack":
        variant = Acknowledgment
    elif event == "group.participants":
        variant = GroupParticipantChange
    elif action == "message_revoked":
        variant = MessageRevoked
    elif action == "message_edited":
        variant = MessageEdited
    else:
        logger.info(f"Unrecognized payload: event={event!r}, action={action!r}")
        return Unknown(keys=sorted(str(key) for key in parsed))

    try:
        return variant.model_validate(parsed)
    except ValidationError as e:
        logger.error(f"Payload does not fit {variant.__name__}: {e.error_count()} error(s)")
        raise MalformedPayload(str(e)) from e
