"""
Persistence contract for webhook ingestion, and its SQLAlchemy implementation.

Every write commits on its own; the engine relies only on single-row
atomicity and the tables' unique constraints. Inserts rejected by a unique
constraint raise ConflictError; any other database failure raises
PersistenceError.
"""

import logging
from typing import Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from wa_webhook.errors import ConflictError, PersistenceError
from wa_webhook.models import (
    Contact,
    GroupParticipant,
    Message,
    MessageEdit,
    MessageLocation,
    MessageMedia,
    MessageReaction,
    MessageReceipt,
    MessageRevoke,
    WhatsAppAccount,
)

logger = logging.getLogger(__name__)

# SQLSTATE for unique_violation (PostgreSQL drivers expose it as pgcode or sqlstate)
UNIQUE_VIOLATION_SQLSTATE = "23505"
# MySQL ER_DUP_ENTRY
MYSQL_DUP_ENTRY = 1062


def is_unique_violation(error: IntegrityError) -> bool:
    """True if the driver reports a unique/primary key violation, not NOT NULL, FK or CHECK."""
    orig = error.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate:
        return sqlstate == UNIQUE_VIOLATION_SQLSTATE
    args = getattr(orig, "args", ())
    if args and args[0] == MYSQL_DUP_ENTRY:
        return True
    # sqlite3 only carries the message
    message = str(orig)
    return message.startswith("UNIQUE constraint failed") or message.startswith("PRIMARY KEY must be unique")


class WebhookRepository(Protocol):
    """Operations the ingestion engine needs from the persistent store."""

    def find_account_by_phone(self, phone_number: str) -> Optional[WhatsAppAccount]: ...

    def insert_account(self, phone_number: str, name: Optional[str]) -> WhatsAppAccount: ...

    def find_contact_by_jid(self, account_id: int, jid: str) -> Optional[Contact]: ...

    def insert_contact(self, account_id: int, jid: str, name: str, is_group: bool) -> Contact: ...

    def insert_message(self, **fields) -> Message: ...

    def find_message_by_provider_id(self, account_id: int, provider_message_id: str) -> Optional[Message]: ...

    def insert_media(self, message_pk: int, media_type: str, mime_type: Optional[str],
                     file_path: Optional[str], caption: Optional[str]) -> MessageMedia: ...

    def insert_location(self, message_pk: int, latitude: Optional[float], longitude: Optional[float],
                        name: Optional[str], address: Optional[str],
                        jpeg_thumbnail: Optional[str]) -> MessageLocation: ...

    def update_message_text(self, message_pk: int, text: Optional[str]) -> None: ...

    def insert_reaction(self, message_pk: int, sender_jid: Optional[str],
                        reaction: Optional[str]) -> MessageReaction: ...

    def insert_receipt(self, message_pk: int, recipient_jid: Optional[str], receipt_type: Optional[str],
                       description: Optional[str], created_at: str) -> MessageReceipt: ...

    def upsert_group_membership(self, group_id: int, participant_jid: str, joined_at: str) -> GroupParticipant: ...

    def update_group_membership_left_at(self, group_id: int, participant_jid: str, left_at: str) -> int: ...

    def update_group_membership_admin_flag(self, group_id: int, participant_jid: str, is_admin: bool) -> int: ...

    def find_revoke_by_message(self, message_pk: int) -> Optional[MessageRevoke]: ...

    def insert_revoke(self, message_pk: int, revoked_by_jid: Optional[str], revoked_at: str,
                      revoked_for_me: bool) -> MessageRevoke: ...

    def insert_edit(self, message_pk: int, edited_text: Optional[str], edited_at: str) -> MessageEdit: ...


class SqlAlchemyWebhookRepository:
    """WebhookRepository backed by a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _add(self, row):
        """Insert and commit a single row."""
        table = row.__tablename__
        try:
            self.db.add(row)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if not is_unique_violation(e):
                logger.error(f"Integrity error inserting into {table}: {e.orig}")
                raise PersistenceError(f"insert into {table} failed") from e
            logger.info(f"Unique constraint rejected insert into {table}")
            raise ConflictError(f"{table}: {e.orig}") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to insert into {table}: {e}")
            raise PersistenceError(f"insert into {table} failed") from e
        self.db.refresh(row)
        logger.debug(f"Inserted {table} row id={row.id}")
        return row

    def _first(self, stmt):
        try:
            return self.db.execute(stmt).scalars().first()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Lookup failed: {e}")
            raise PersistenceError("lookup failed") from e

    def _update(self, stmt) -> int:
        """Execute an UPDATE, commit, and return the number of matched rows."""
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Update failed: {e}")
            raise PersistenceError("update failed") from e
        return result.rowcount

    # -------------------------------------------------------------------------
    # Accounts and contacts
    # -------------------------------------------------------------------------

    def find_account_by_phone(self, phone_number: str) -> Optional[WhatsAppAccount]:
        return self._first(
            select(WhatsAppAccount).where(WhatsAppAccount.phone_number == phone_number)
        )

    def insert_account(self, phone_number: str, name: Optional[str]) -> WhatsAppAccount:
        return self._add(WhatsAppAccount(phone_number=phone_number, name=name))

    def find_contact_by_jid(self, account_id: int, jid: str) -> Optional[Contact]:
        return self._first(
            select(Contact).where(Contact.account_id == account_id, Contact.jid == jid)
        )

    def insert_contact(self, account_id: int, jid: str, name: str, is_group: bool) -> Contact:
        return self._add(Contact(account_id=account_id, jid=jid, name=name, is_group=is_group))

    # -------------------------------------------------------------------------
    # Messages and their sub-entities
    # -------------------------------------------------------------------------

    def insert_message(self, **fields) -> Message:
        """
        Insert a message row.

        Raises:
            ConflictError: (account_id, message_id) already stored
        """
        return self._add(Message(**fields))

    def find_message_by_provider_id(self, account_id: int, provider_message_id: str) -> Optional[Message]:
        message = self._first(
            select(Message).where(
                Message.account_id == account_id,
                Message.message_id == provider_message_id,
            )
        )
        logger.debug(f"Message lookup {provider_message_id}: {'found' if message else 'not found'}")
        return message

    def insert_media(self, message_pk, media_type, mime_type, file_path, caption) -> MessageMedia:
        return self._add(MessageMedia(
            message_id=message_pk,
            media_type=media_type,
            mime_type=mime_type,
            file_path=file_path,
            caption=caption,
        ))

    def insert_location(self, message_pk, latitude, longitude, name, address, jpeg_thumbnail) -> MessageLocation:
        return self._add(MessageLocation(
            message_id=message_pk,
            latitude=latitude,
            longitude=longitude,
            name=name,
            address=address,
            jpeg_thumbnail=jpeg_thumbnail,
        ))

    def update_message_text(self, message_pk: int, text: Optional[str]) -> None:
        self._update(update(Message).where(Message.id == message_pk).values(text=text))

    def insert_reaction(self, message_pk, sender_jid, reaction) -> MessageReaction:
        return self._add(MessageReaction(message_id=message_pk, sender_jid=sender_jid, reaction=reaction))

    def insert_receipt(self, message_pk, recipient_jid, receipt_type, description, created_at) -> MessageReceipt:
        return self._add(MessageReceipt(
            message_id=message_pk,
            recipient_jid=recipient_jid,
            receipt_type=receipt_type,
            description=description,
            created_at=created_at,
        ))

    # -------------------------------------------------------------------------
    # Group membership
    # -------------------------------------------------------------------------

    def _find_membership(self, group_id: int, participant_jid: str) -> Optional[GroupParticipant]:
        return self._first(
            select(GroupParticipant).where(
                GroupParticipant.group_id == group_id,
                GroupParticipant.participant_jid == participant_jid,
            )
        )

    def upsert_group_membership(self, group_id: int, participant_jid: str, joined_at: str) -> GroupParticipant:
        """
        Mark a participant as an active, non-admin member.

        Keyed by (group_id, participant_jid): an existing row (active or left)
        is reset in place, so the pair never has more than one row.
        """
        values = {"is_admin": False, "joined_at": joined_at, "left_at": None}

        membership = self._find_membership(group_id, participant_jid)
        if membership is None:
            try:
                return self._add(GroupParticipant(
                    group_id=group_id, participant_jid=participant_jid, **values
                ))
            except ConflictError:
                # Concurrent join inserted the row first
                membership = self._find_membership(group_id, participant_jid)
                if membership is None:
                    raise PersistenceError("membership vanished after conflict")

        self._update(
            update(GroupParticipant).where(GroupParticipant.id == membership.id).values(**values)
        )
        self.db.refresh(membership)
        return membership

    def update_group_membership_left_at(self, group_id: int, participant_jid: str, left_at: str) -> int:
        """Set left_at on the active membership row only. Returns rows updated."""
        return self._update(
            update(GroupParticipant)
            .where(
                GroupParticipant.group_id == group_id,
                GroupParticipant.participant_jid == participant_jid,
                GroupParticipant.left_at.is_(None),
            )
            .values(left_at=left_at)
        )

    def update_group_membership_admin_flag(self, group_id: int, participant_jid: str, is_admin: bool) -> int:
        """Set is_admin on an existing membership row. Returns rows updated."""
        return self._update(
            update(GroupParticipant)
            .where(
                GroupParticipant.group_id == group_id,
                GroupParticipant.participant_jid == participant_jid,
            )
            .values(is_admin=is_admin)
        )

    # -------------------------------------------------------------------------
    # Revokes and edits
    # -------------------------------------------------------------------------

    def find_revoke_by_message(self, message_pk: int) -> Optional[MessageRevoke]:
        return self._first(select(MessageRevoke).where(MessageRevoke.message_id == message_pk))

    def insert_revoke(self, message_pk, revoked_by_jid, revoked_at, revoked_for_me) -> MessageRevoke:
        return self._add(MessageRevoke(
            message_id=message_pk,
            revoked_by_jid=revoked_by_jid,
            revoked_at=revoked_at,
            revoked_for_me=revoked_for_me,
        ))

    def insert_edit(self, message_pk, edited_text, edited_at) -> MessageEdit:
        return self._add(MessageEdit(message_id=message_pk, edited_text=edited_text, edited_at=edited_at))
