"""
Webhook ingestion pipeline: verify -> parse -> classify -> resolve account -> handle.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from wa_webhook.config import Settings
from wa_webhook.errors import AuthenticationFailure, PersistenceError, WebhookError
from wa_webhook.events import (
    Acknowledgment,
    EventVariant,
    GroupParticipantChange,
    MessageEdited,
    MessageRevoked,
    RegularMessage,
    Unknown,
    classify,
    parse_payload,
)
from wa_webhook.handlers import (
    HandlerResult,
    handle_acknowledgment,
    handle_group_participants,
    handle_message_edited,
    handle_message_revoked,
    handle_regular_message,
)
from wa_webhook.identity import get_or_create_account
from wa_webhook.metrics import record_webhook_event
from wa_webhook.models import WhatsAppAccount
from wa_webhook.repository import WebhookRepository
from wa_webhook.utils import verify_hmac_signature

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    event_type: str
    result: str
    message_id: Optional[str] = None

    @property
    def duplicate(self) -> bool:
        return self.result == "duplicate"


class WebhookDispatcher:
    """
    Runs one webhook delivery through the ingestion pipeline.

    The repository is injected by the caller, which owns its lifecycle.
    """

    def __init__(self, repository: WebhookRepository, settings: Settings):
        self.repository = repository
        self.settings = settings

    def dispatch(self, raw_body: bytes, signature: Optional[str]) -> DispatchResult:
        """
        Ingest one delivery.

        Args:
            raw_body: Request body exactly as received
            signature: Value of the signature header, if any

        Raises:
            AuthenticationFailure: signature missing or invalid
            MalformedPayload: body is not a JSON object, or does not fit its event
            PersistenceError: the store failed
        """
        # Signature first: nothing may touch the body before it is verified
        if not verify_hmac_signature(raw_body, signature or "", self.settings.WEBHOOK_SECRET):
            raise AuthenticationFailure("invalid signature")

        parsed = parse_payload(raw_body)
        event = classify(parsed)
        record_webhook_event(event.kind)

        if isinstance(event, Unknown):
            logger.info(f"Ignoring unrecognized event with keys {event.keys}")
            return DispatchResult(event_type=event.kind, result="ignored")

        try:
            account = self._resolve_account(event)
            outcome = self._handle(account, event)
        except WebhookError:
            raise
        except Exception as e:
            logger.exception(f"Webhook processing error for {event.kind}")
            raise PersistenceError(str(e)) from e

        return DispatchResult(
            event_type=event.kind,
            result=outcome.result,
            message_id=outcome.message_id,
        )

    def _resolve_account(self, event: EventVariant) -> WhatsAppAccount:
        """Account named in the payload, or the configured default account."""
        if event.account is not None:
            phone_number = event.account.phone_number
            name = event.account.name or phone_number
        else:
            phone_number = self.settings.WHATSAPP_ACCOUNT_NUMBER
            name = self.settings.WHATSAPP_ACCOUNT_NAME
        return get_or_create_account(self.repository, phone_number, name)

    def _handle(self, account: WhatsAppAccount, event: EventVariant) -> HandlerResult:
        repo = self.repository
        if isinstance(event, RegularMessage):
            return handle_regular_message(repo, account, event)
        if isinstance(event, Acknowledgment):
            return handle_acknowledgment(repo, account, event)
        if isinstance(event, GroupParticipantChange):
            return handle_group_participants(repo, account, event)
        if isinstance(event, MessageRevoked):
            return handle_message_revoked(repo, account, event)
        if isinstance(event, MessageEdited):
            return handle_message_edited(repo, account, event)
        raise TypeError(f"Unhandled event variant: {type(event).__name__}")
