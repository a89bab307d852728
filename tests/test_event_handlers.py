"""
Tests for non-message events delivered through POST /webhook:
acknowledgments, group participant changes, revokes and edits.
"""

import pytest

from wa_webhook.errors import PersistenceError
from wa_webhook.models import (
    Contact,
    GroupParticipant,
    Message,
    MessageEdit,
    MessageReceipt,
    MessageRevoke,
)
from wa_webhook.repository import SqlAlchemyWebhookRepository
from wa_webhook.writers import DELETED_MESSAGE_TEXT


SENDER = "15551234567@s.whatsapp.net"
RECIPIENT = "15550000000@s.whatsapp.net"
GROUP = "120363000000000001@g.us"
MEMBER = "15552223333@s.whatsapp.net"


def text_message(message_id: str, text: str = "original") -> dict:
    return {
        "from": SENDER,
        "message": {"id": message_id, "text": text},
        "timestamp": "2025-01-15T10:00:00Z",
    }


def ack(ids, receipt_type: str = "read", timestamp: str = "2025-01-15T10:05:00Z") -> dict:
    return {
        "event": "message.ack",
        "timestamp": timestamp,
        "payload": {
            "ids": ids,
            "sender_id": RECIPIENT,
            "receipt_type": receipt_type,
            "receipt_type_description": f"Message was {receipt_type}",
        },
    }


def participants(action: str, jids, timestamp: str, chat_id: str = GROUP) -> dict:
    return {
        "event": "group.participants",
        "timestamp": timestamp,
        "payload": {"chat_id": chat_id, "jids": jids, "type": action},
    }


def revoke(message_id: str, timestamp: str = "2025-01-15T11:00:00Z") -> dict:
    return {
        "action": "message_revoked",
        "revoked_message_id": message_id,
        "from": SENDER,
        "revoked_from_me": True,
        "timestamp": timestamp,
    }


def edit(message_id: str, text: str, timestamp: str = "2025-01-15T11:00:00Z") -> dict:
    return {
        "action": "message_edited",
        "message": {"id": message_id},
        "edited_text": text,
        "timestamp": timestamp,
    }


def membership(rows, jid: str = MEMBER):
    return [row for row in rows(GroupParticipant) if row.participant_jid == jid]


class TestAcknowledgment:

    def test_receipt_per_known_id(self, post_event, rows):
        post_event(text_message("MSG1"))
        post_event(text_message("MSG2"))

        response = post_event(ack(["MSG1", "MSG2"]))

        assert response.status_code == 200
        receipts = rows(MessageReceipt)
        assert len(receipts) == 2
        receipt = receipts[0]
        assert receipt.recipient_jid == RECIPIENT
        assert receipt.receipt_type == "read"
        assert receipt.description == "Message was read"
        assert receipt.created_at == "2025-01-15T10:05:00Z"

    def test_unknown_id_does_not_abort_batch(self, post_event, rows):
        post_event(text_message("MSG1"))

        response = post_event(ack(["MISSING", "MSG1"]))

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        receipts = rows(MessageReceipt)
        assert len(receipts) == 1
        message = rows(Message)[0]
        assert receipts[0].message_id == message.id

    def test_all_ids_unknown(self, post_event, rows):
        response = post_event(ack(["MISSING1", "MISSING2"]))

        assert response.status_code == 200
        assert rows(MessageReceipt) == []

    def test_receipts_are_appended(self, post_event, rows):
        post_event(text_message("MSG1"))

        post_event(ack(["MSG1"], receipt_type="delivered"))
        post_event(ack(["MSG1"], receipt_type="read"))

        assert [r.receipt_type for r in rows(MessageReceipt)] == ["delivered", "read"]


class TestGroupParticipantChange:

    def test_join_creates_group_and_membership(self, post_event, rows):
        response = post_event(participants("join", [MEMBER], "2025-01-15T09:00:00Z"))

        assert response.status_code == 200
        groups = rows(Contact)
        assert len(groups) == 1
        assert groups[0].jid == GROUP
        assert groups[0].is_group is True
        assert groups[0].name == "Unknown"

        rows_for_member = membership(rows)
        assert len(rows_for_member) == 1
        assert rows_for_member[0].group_id == groups[0].id
        assert rows_for_member[0].is_admin is False
        assert rows_for_member[0].joined_at == "2025-01-15T09:00:00Z"
        assert rows_for_member[0].left_at is None

    def test_group_flag_forced_without_suffix(self, post_event, rows):
        post_event(participants("join", [MEMBER], "2025-01-15T09:00:00Z", chat_id="legacy-group-id"))

        assert rows(Contact)[0].is_group is True

    def test_batch_applies_to_every_jid(self, post_event, rows):
        jids = [MEMBER, "15554445555@s.whatsapp.net", "15556667777@s.whatsapp.net"]
        post_event(participants("join", jids, "2025-01-15T09:00:00Z"))

        assert sorted(r.participant_jid for r in rows(GroupParticipant)) == sorted(jids)

    def test_leave_sets_left_at(self, post_event, rows):
        post_event(participants("join", [MEMBER], "2025-01-15T09:00:00Z"))
        post_event(participants("leave", [MEMBER], "2025-01-15T10:00:00Z"))

        rows_for_member = membership(rows)
        assert len(rows_for_member) == 1
        assert rows_for_member[0].left_at == "2025-01-15T10:00:00Z"

    def test_leave_only_touches_active_membership(self, post_event, rows):
        post_event(participants("join", [MEMBER], "2025-01-15T09:00:00Z"))
        post_event(participants("leave", [MEMBER], "2025-01-15T10:00:00Z"))
        post_event(participants("leave", [MEMBER], "2025-01-15T11:00:00Z"))

        assert membership(rows)[0].left_at == "2025-01-15T10:00:00Z"

    def test_leave_without_membership_is_noop(self, post_event, rows):
        response = post_event(participants("leave", [MEMBER], "2025-01-15T10:00:00Z"))

        assert response.status_code == 200
        assert rows(GroupParticipant) == []

    def test_join_leave_join_keeps_single_active_row(self, post_event, rows):
        post_event(participants("join", [MEMBER], "2025-01-15T09:00:00Z"))
        post_event(participants("promote", [MEMBER], "2025-01-15T09:30:00Z"))
        post_event(participants("leave", [MEMBER], "2025-01-15T10:00:00Z"))
        post_event(participants("join", [MEMBER], "2025-01-15T11:00:00Z"))

        rows_for_member = membership(rows)
        assert len(rows_for_member) == 1
        assert rows_for_member[0].left_at is None
        assert rows_for_member[0].joined_at == "2025-01-15T11:00:00Z"
        assert rows_for_member[0].is_admin is False

    def test_promote_and_demote(self, post_event, rows):
        post_event(participants("join", [MEMBER], "2025-01-15T09:00:00Z"))

        post_event(participants("promote", [MEMBER], "2025-01-15T09:30:00Z"))
        assert membership(rows)[0].is_admin is True

        post_event(participants("demote", [MEMBER], "2025-01-15T09:45:00Z"))
        assert membership(rows)[0].is_admin is False

    @pytest.mark.parametrize("action", ["promote", "demote"])
    def test_admin_change_does_not_create_membership(self, post_event, rows, action):
        response = post_event(participants(action, [MEMBER], "2025-01-15T09:30:00Z"))

        assert response.status_code == 200
        assert rows(GroupParticipant) == []

    def test_unsupported_action_is_ignored(self, post_event, rows):
        response = post_event(participants("invite", [MEMBER], "2025-01-15T09:30:00Z"))

        assert response.status_code == 200
        assert rows(GroupParticipant) == []


class TestMessageRevoked:

    def test_revoke_replaces_text(self, post_event, rows):
        post_event(text_message("MSG1", "secret"))

        response = post_event(revoke("MSG1"))

        assert response.status_code == 200
        message = rows(Message)[0]
        assert message.text == DELETED_MESSAGE_TEXT

        revokes = rows(MessageRevoke)
        assert len(revokes) == 1
        assert revokes[0].message_id == message.id
        assert revokes[0].revoked_by_jid == SENDER
        assert revokes[0].revoked_at == "2025-01-15T11:00:00Z"
        assert revokes[0].revoked_for_me is True

    def test_repeated_revoke_is_noop(self, post_event, rows):
        post_event(text_message("MSG1"))

        post_event(revoke("MSG1", "2025-01-15T11:00:00Z"))
        post_event(revoke("MSG1", "2025-01-15T11:05:00Z"))

        revokes = rows(MessageRevoke)
        assert len(revokes) == 1
        assert revokes[0].revoked_at == "2025-01-15T11:00:00Z"

    def test_revoke_unknown_message(self, post_event, rows):
        response = post_event(revoke("MISSING"))

        assert response.status_code == 200
        assert rows(MessageRevoke) == []


class TestMessageEdited:

    def test_edit_replaces_text_and_records_history(self, post_event, rows):
        post_event(text_message("MSG1", "helo"))

        response = post_event(edit("MSG1", "hello"))

        assert response.status_code == 200
        message = rows(Message)[0]
        assert message.text == "hello"

        edits = rows(MessageEdit)
        assert len(edits) == 1
        assert edits[0].message_id == message.id
        assert edits[0].edited_text == "hello"
        assert edits[0].edited_at == "2025-01-15T11:00:00Z"

    def test_latest_edit_wins(self, post_event, rows):
        post_event(text_message("MSG1", "v1"))

        post_event(edit("MSG1", "v2", "2025-01-15T11:00:00Z"))
        post_event(edit("MSG1", "v3", "2025-01-15T11:01:00Z"))

        assert rows(Message)[0].text == "v3"
        assert [e.edited_text for e in rows(MessageEdit)] == ["v2", "v3"]

    def test_edit_unknown_message(self, post_event, rows):
        response = post_event(edit("MISSING", "text"))

        assert response.status_code == 200
        assert rows(MessageEdit) == []

    def test_edit_without_text_is_ignored(self, post_event, rows):
        post_event(text_message("MSG1", "original"))
        payload = edit("MSG1", "unused")
        del payload["edited_text"]

        response = post_event(payload)

        assert response.status_code == 200
        assert rows(Message)[0].text == "original"
        assert rows(MessageEdit) == []


class TestWriteFailures:
    """Receipt, membership, revoke and edit failures fail the request so the provider redelivers."""

    def test_receipt_failure_keeps_earlier_receipts(self, post_event, rows, monkeypatch):
        post_event(text_message("MSG1"))
        post_event(text_message("MSG2"))

        original = SqlAlchemyWebhookRepository.insert_receipt
        calls = []

        def insert_receipt_then_fail(self, *args, **kwargs):
            calls.append(args)
            if len(calls) > 1:
                raise PersistenceError("database unavailable")
            return original(self, *args, **kwargs)

        monkeypatch.setattr(SqlAlchemyWebhookRepository, "insert_receipt", insert_receipt_then_fail)

        response = post_event(ack(["MSG1", "MSG2"]))

        assert response.status_code == 500
        assert response.json() == {"error": "Server error"}
        receipts = rows(MessageReceipt)
        assert len(receipts) == 1
        assert receipts[0].message_id == rows(Message)[0].id

    def test_membership_failure(self, post_event, rows, monkeypatch):
        def failing_upsert(self, *args, **kwargs):
            raise PersistenceError("database unavailable")

        monkeypatch.setattr(SqlAlchemyWebhookRepository, "upsert_group_membership", failing_upsert)

        response = post_event(participants("join", [MEMBER], "2025-01-15T09:00:00Z"))

        assert response.status_code == 500
        assert response.json() == {"error": "Server error"}
        assert rows(GroupParticipant) == []

    def test_revoke_failure(self, post_event, rows, monkeypatch):
        post_event(text_message("MSG1", "secret"))

        def failing_insert_revoke(self, *args, **kwargs):
            raise PersistenceError("database unavailable")

        monkeypatch.setattr(SqlAlchemyWebhookRepository, "insert_revoke", failing_insert_revoke)

        response = post_event(revoke("MSG1"))

        assert response.status_code == 500
        assert response.json() == {"error": "Server error"}
        assert rows(MessageRevoke) == []
        assert rows(Message)[0].text == "secret"

    def test_edit_failure(self, post_event, rows, monkeypatch):
        post_event(text_message("MSG1", "helo"))

        def failing_insert_edit(self, *args, **kwargs):
            raise PersistenceError("database unavailable")

        monkeypatch.setattr(SqlAlchemyWebhookRepository, "insert_edit", failing_insert_edit)

        response = post_event(edit("MSG1", "hello"))

        assert response.status_code == 500
        assert response.json() == {"error": "Server error"}
        assert rows(MessageEdit) == []
        assert rows(Message)[0].text == "helo"
