"""
Event handlers: translate one classified event into persistence operations.

Every handler is safe to repeat for the same event. Lookups that miss
(an ack for a message never ingested, a revoke of an unknown id, ...) are
no-ops rather than errors.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from wa_webhook.errors import ConflictError
from wa_webhook.events import (
    Acknowledgment,
    GroupParticipantChange,
    MessageEdited,
    MessageRevoked,
    RegularMessage,
)
from wa_webhook.identity import get_or_create_contact
from wa_webhook.models import WhatsAppAccount
from wa_webhook.repository import WebhookRepository
from wa_webhook.utils import is_group_jid, utc_now_iso
from wa_webhook.writers import (
    FanoutResult,
    apply_membership_change,
    write_contact_card,
    write_edit,
    write_location,
    write_media,
    write_reaction,
    write_receipt,
    write_revoke,
)

logger = logging.getLogger(__name__)


@dataclass
class HandlerResult:
    """
    Outcome of handling one event.

    result is one of: created, duplicate, processed, ignored.
    """
    result: str
    message_id: Optional[str] = None
    fanout: dict[str, str] = field(default_factory=dict)


def handle_regular_message(repo: WebhookRepository, account: WhatsAppAccount, event: RegularMessage) -> HandlerResult:
    """
    Store a chat message and its attachments.

    A second delivery of the same provider message id is reported as a
    duplicate and writes nothing.
    """
    chat_jid = event.chat_jid
    if not chat_jid:
        logger.warning(f"Message {event.message.id} has neither chat_id nor from, ignoring")
        return HandlerResult(result="ignored", message_id=event.message.id)

    contact = get_or_create_contact(
        repo,
        account.id,
        chat_jid,
        event.pushname,
        is_group_jid(event.chat_id) or is_group_jid(event.from_jid),
    )

    message_type = event.message_type
    logger.info(f"Storing {message_type} message {event.message.id} in chat {contact.id}")

    try:
        message = repo.insert_message(
            account_id=account.id,
            chat_id=contact.id,
            sender_jid=event.from_jid,
            message_id=event.message.id,
            type=message_type,
            text=event.message.text,
            quoted_message=event.message.quoted_message,
            replied_to_id=event.message.replied_id,
            forwarded=event.forwarded,
            view_once=event.view_once,
            created_at=event.timestamp or utc_now_iso(),
        )
    except ConflictError:
        logger.info(f"Duplicate message detected: {event.message.id}")
        return HandlerResult(result="duplicate", message_id=event.message.id)

    fanout = {}
    if event.media_type is not None:
        fanout["media"] = write_media(repo, message.id, event)
    if event.location is not None:
        fanout["location"] = write_location(repo, message.id, event.location)
    if event.contact is not None:
        fanout["contact"] = write_contact_card(repo, message.id, event.contact)
    if event.reaction is not None:
        fanout["reaction"] = write_reaction(repo, account.id, event.from_jid, event.reaction)

    failed = [kind for kind, outcome in fanout.items() if outcome == FanoutResult.FAILED]
    if failed:
        logger.warning(f"Message {event.message.id} stored without: {', '.join(failed)}")

    return HandlerResult(result="created", message_id=event.message.id, fanout=fanout)


def handle_acknowledgment(repo: WebhookRepository, account: WhatsAppAccount, event: Acknowledgment) -> HandlerResult:
    """Append one receipt per acknowledged id; unknown ids are skipped."""
    payload = event.payload
    created_at = event.timestamp or utc_now_iso()

    stored = 0
    for provider_message_id in payload.ids:
        if write_receipt(
            repo,
            account.id,
            provider_message_id,
            payload.sender_id,
            payload.receipt_type,
            payload.receipt_type_description,
            created_at,
        ):
            stored += 1

    logger.info(f"Ack {payload.receipt_type}: stored {stored} of {len(payload.ids)} receipts")
    return HandlerResult(result="processed")


def handle_group_participants(
    repo: WebhookRepository,
    account: WhatsAppAccount,
    event: GroupParticipantChange,
) -> HandlerResult:
    """Apply a join/leave/promote/demote action to every listed participant."""
    payload = event.payload
    group = get_or_create_contact(repo, account.id, payload.chat_id, None, True)
    event_time = event.timestamp or utc_now_iso()

    applied = 0
    for participant_jid in payload.jids:
        if apply_membership_change(repo, group.id, payload.action, participant_jid, event_time):
            applied += 1

    logger.info(
        f"Group {payload.chat_id} {payload.action}: "
        f"applied to {applied} of {len(payload.jids)} participants"
    )
    return HandlerResult(result="processed")


def handle_message_revoked(repo: WebhookRepository, account: WhatsAppAccount, event: MessageRevoked) -> HandlerResult:
    message = repo.find_message_by_provider_id(account.id, event.revoked_message_id)
    if message is None:
        logger.info(f"Revoke for unknown message {event.revoked_message_id}, skipping")
        return HandlerResult(result="processed", message_id=event.revoked_message_id)

    write_revoke(
        repo,
        message,
        event.from_jid,
        event.timestamp or utc_now_iso(),
        event.revoked_from_me,
    )
    return HandlerResult(result="processed", message_id=event.revoked_message_id)


def handle_message_edited(repo: WebhookRepository, account: WhatsAppAccount, event: MessageEdited) -> HandlerResult:
    if event.edited_text is None:
        logger.warning(f"Edit for message {event.message.id} carries no edited_text, skipping")
        return HandlerResult(result="processed", message_id=event.message.id)

    message = repo.find_message_by_provider_id(account.id, event.message.id)
    if message is None:
        logger.info(f"Edit for unknown message {event.message.id}, skipping")
        return HandlerResult(result="processed", message_id=event.message.id)

    write_edit(repo, message, event.edited_text, event.timestamp or utc_now_iso())
    return HandlerResult(result="processed", message_id=event.message.id)
