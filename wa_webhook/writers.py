"""
Sub-entity writers used by the event handlers.

Fan-out writers for a freshly stored message (media, location, contact
card, reaction) return a FanoutResult and never raise: the message row is
already committed and a redelivery of the same event is deduplicated, so
failing the request would not get the sub-entity written either. Failures
are logged and counted instead.

Receipt, membership, revoke and edit writers let PersistenceError
propagate so the request fails and the provider redelivers.
"""

import json
import logging
from typing import Optional

from wa_webhook.errors import ConflictError, PersistenceError
from wa_webhook.events import (
    ContactCardPayload,
    LocationPayload,
    ReactionPayload,
    RegularMessage,
)
from wa_webhook.metrics import record_fanout_failure
from wa_webhook.models import Message
from wa_webhook.repository import WebhookRepository

logger = logging.getLogger(__name__)

DELETED_MESSAGE_TEXT = "[Message was deleted]"

MEMBERSHIP_ACTIONS = ("join", "leave", "promote", "demote")


class FanoutResult:
    WRITTEN = "written"
    SKIPPED = "skipped"
    FAILED = "failed"


def _fanout(kind: str, message_pk: int, write) -> str:
    try:
        write()
    except ConflictError:
        logger.info(f"{kind} for message {message_pk} already recorded")
        return FanoutResult.SKIPPED
    except PersistenceError as e:
        logger.error(f"Failed to write {kind} for message {message_pk}: {e}")
        record_fanout_failure(kind)
        return FanoutResult.FAILED
    logger.debug(f"Wrote {kind} for message {message_pk}")
    return FanoutResult.WRITTEN


# =============================================================================
# Message fan-out
# =============================================================================

def write_media(repo: WebhookRepository, message_pk: int, event: RegularMessage) -> str:
    """Write one media row for the first media type present on the event."""
    media_type = event.media_type
    if media_type is None:
        return FanoutResult.SKIPPED
    media = getattr(event, media_type)
    return _fanout("media", message_pk, lambda: repo.insert_media(
        message_pk, media_type, media.mime_type, media.media_path, media.caption
    ))


def write_location(repo: WebhookRepository, message_pk: int, location: LocationPayload) -> str:
    return _fanout("location", message_pk, lambda: repo.insert_location(
        message_pk,
        location.latitude,
        location.longitude,
        location.name,
        location.address,
        location.thumbnail,
    ))


def serialize_contact_card(contact: ContactCardPayload) -> str:
    """Text representation of a shared contact card."""
    return json.dumps({"displayName": contact.display_name, "vcard": contact.vcard})


def write_contact_card(repo: WebhookRepository, message_pk: int, contact: ContactCardPayload) -> str:
    """Store a shared contact card as the message text."""
    text = serialize_contact_card(contact)
    return _fanout("contact card", message_pk, lambda: repo.update_message_text(message_pk, text))


def write_reaction(
    repo: WebhookRepository,
    account_id: int,
    sender_jid: Optional[str],
    reaction: ReactionPayload,
) -> str:
    """
    Append a reaction to the message it targets.

    Skipped when the reaction names no target or the target has not been
    ingested (yet).
    """
    if not reaction.target_id:
        logger.info("Reaction without target id, skipping")
        return FanoutResult.SKIPPED

    try:
        target = repo.find_message_by_provider_id(account_id, reaction.target_id)
    except PersistenceError as e:
        logger.error(f"Failed to look up reaction target {reaction.target_id}: {e}")
        record_fanout_failure("reaction")
        return FanoutResult.FAILED

    if target is None:
        logger.info(f"Reaction target {reaction.target_id} not found, skipping")
        return FanoutResult.SKIPPED

    return _fanout("reaction", target.id, lambda: repo.insert_reaction(
        target.id, sender_jid, reaction.reaction
    ))


# =============================================================================
# Receipts and membership
# =============================================================================

def write_receipt(
    repo: WebhookRepository,
    account_id: int,
    provider_message_id: str,
    recipient_jid: Optional[str],
    receipt_type: Optional[str],
    description: Optional[str],
    created_at: str,
) -> bool:
    """Append a receipt for one acknowledged id. False if the message is unknown."""
    message = repo.find_message_by_provider_id(account_id, provider_message_id)
    if message is None:
        logger.info(f"Ack for unknown message {provider_message_id}, skipping")
        return False
    repo.insert_receipt(message.id, recipient_jid, receipt_type, description, created_at)
    return True


def apply_membership_change(
    repo: WebhookRepository,
    group_id: int,
    action: str,
    participant_jid: str,
    event_time: str,
) -> bool:
    """
    Apply one participant action to a group.

    - join: create or reactivate the membership (non-admin, left_at cleared)
    - leave: close the active membership, if any
    - promote/demote: toggle is_admin on an existing membership only

    Returns True if a row was written.
    """
    if action == "join":
        repo.upsert_group_membership(group_id, participant_jid, event_time)
        return True
    if action == "leave":
        return repo.update_group_membership_left_at(group_id, participant_jid, event_time) > 0
    if action in ("promote", "demote"):
        return repo.update_group_membership_admin_flag(group_id, participant_jid, action == "promote") > 0

    logger.warning(f"Unsupported group participant action: {action!r}")
    return False


# =============================================================================
# Revokes and edits
# =============================================================================

def write_revoke(
    repo: WebhookRepository,
    message: Message,
    revoked_by_jid: Optional[str],
    revoked_at: str,
    revoked_for_me: bool,
) -> bool:
    """
    Record a revoke and replace the message text with the deletion placeholder.

    Returns False if the message was already revoked and shows the placeholder.
    """
    already_revoked = repo.find_revoke_by_message(message.id) is not None
    if already_revoked and message.text == DELETED_MESSAGE_TEXT:
        logger.info(f"Message {message.message_id} already revoked")
        return False
    if not already_revoked:
        repo.insert_revoke(message.id, revoked_by_jid, revoked_at, revoked_for_me)
    repo.update_message_text(message.id, DELETED_MESSAGE_TEXT)
    return True


def write_edit(repo: WebhookRepository, message: Message, edited_text: str, edited_at: str) -> None:
    """Append to the edit history and make the new text current."""
    repo.insert_edit(message.id, edited_text, edited_at)
    repo.update_message_text(message.id, edited_text)
