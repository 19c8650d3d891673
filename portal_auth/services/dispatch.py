from __future__ import annotations

from http.client import HTTPException
import logging
from typing import Protocol

from portal_auth.services.email import EmailSendError
from portal_auth.services.sms import SmsSendError
from portal_auth.services.verification import IssuedCode, VerificationLedger

LOGGER = logging.getLogger(__name__)


class CodeSender(Protocol):
    def send_code(self, recipient: str, code: str) -> None: ...


class DispatchError(RuntimeError):
    pass


class CodeDispatcher:
    """Mints a code on the ledger and hands it to the channel's provider."""

    def __init__(
        self,
        ledger: VerificationLedger,
        email_sender: CodeSender | None = None,
        sms_sender: CodeSender | None = None,
    ) -> None:
        self._ledger = ledger
        self._senders: dict[str, CodeSender | None] = {
            "email": email_sender,
            "sms": sms_sender,
        }

    def is_enabled(self, channel: str) -> bool:
        return self._senders.get(channel) is not None

    def dispatch(
        self,
        user_id: int,
        channel: str,
        destination: str,
        purpose: str = "verification",
    ) -> IssuedCode:
        sender = self._senders.get(channel)
        if sender is None:
            raise DispatchError(f"{channel} delivery is not configured")
        if not destination:
            raise DispatchError(f"No {channel} destination on file")

        issued = self._ledger.issue(user_id, channel, purpose)
        try:
            sender.send_code(destination, issued.code)
        except (EmailSendError, SmsSendError, OSError, HTTPException) as exc:
            LOGGER.error(
                "Code delivery failed user_id=%s channel=%s code_id=%s: %s",
                user_id,
                channel,
                issued.id,
                exc,
            )
            raise DispatchError(f"Failed to deliver {channel} code") from exc
        return issued
