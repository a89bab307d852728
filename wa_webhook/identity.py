"""
Get-or-create resolution for accounts and contacts.

Webhook delivery is at-least-once and deliveries may run in parallel, so two
requests can both miss on the lookup and both try to insert. Uniqueness is
enforced by the database; the loser of that race gets a ConflictError and
re-reads the winner's row instead of failing.
"""

import logging
from typing import Optional

from wa_webhook.errors import ConflictError, PersistenceError
from wa_webhook.models import Contact, WhatsAppAccount
from wa_webhook.repository import WebhookRepository
from wa_webhook.utils import is_group_jid

logger = logging.getLogger(__name__)

UNKNOWN_CONTACT_NAME = "Unknown"


def get_or_create_account(repo: WebhookRepository, phone_number: str, name: Optional[str]) -> WhatsAppAccount:
    """
    Return the account for phone_number, creating it on first reference.

    Raises:
        PersistenceError: the store failed, or the row could not be read back
            after a conflicting insert
    """
    account = repo.find_account_by_phone(phone_number)
    if account is not None:
        return account

    try:
        account = repo.insert_account(phone_number, name)
        logger.info(f"Created account id={account.id} phone={phone_number}")
        return account
    except ConflictError:
        logger.info(f"Account {phone_number} created concurrently, re-reading")

    account = repo.find_account_by_phone(phone_number)
    if account is None:
        raise PersistenceError(f"account {phone_number} missing after conflicting insert")
    return account


def get_or_create_contact(
    repo: WebhookRepository,
    account_id: int,
    jid: str,
    name: Optional[str] = None,
    is_group: bool = False,
) -> Contact:
    """
    Return the chat for (account_id, jid), creating it on first reference.

    A new contact is a group when is_group is set or the jid carries the
    group suffix; its name defaults to "Unknown".

    Raises:
        PersistenceError: the store failed, or the row could not be read back
            after a conflicting insert
    """
    contact = repo.find_contact_by_jid(account_id, jid)
    if contact is not None:
        return contact

    try:
        contact = repo.insert_contact(
            account_id,
            jid,
            name or UNKNOWN_CONTACT_NAME,
            bool(is_group) or is_group_jid(jid),
        )
        logger.info(f"Created contact id={contact.id} jid={jid} is_group={contact.is_group}")
        return contact
    except ConflictError:
        logger.info(f"Contact {jid} created concurrently, re-reading")

    contact = repo.find_contact_by_jid(account_id, jid)
    if contact is None:
        raise PersistenceError(f"contact {jid} missing after conflicting insert")
    return contact
