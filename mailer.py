"""
Mail transport

Outbound email goes through Resend. Each reaction builds its own Mailer;
sends run in a worker thread so several can be awaited together.
"""
import asyncio
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import resend

from config import MAIL_FROM_ADDRESS, MAIL_FROM_NAME, RESEND_API_KEY


class MailerError(Exception):
    pass


def format_sender(name: str, address: str) -> str:
    return f'"{name}" <{address}>'


BUSINESS_SENDER = format_sender(MAIL_FROM_NAME, MAIL_FROM_ADDRESS)


@dataclass(frozen=True)
class MailMessage:
    sender: str
    to: str
    subject: str
    html: str
    reply_to: Optional[str] = None

    def to_payload(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "from": self.sender,
            "to": [self.to],
            "subject": self.subject,
            "html": self.html,
        }
        if self.reply_to:
            payload["reply_to"] = self.reply_to
        return payload


class Mailer:
    def __init__(self, api_key: str):
        self.api_key = (api_key or "").strip()

    def _send_sync(self, payload: Dict[str, object]) -> str:
        if not self.api_key:
            raise MailerError("Resend API key is not configured.")

        resend.api_key = self.api_key
        try:
            response = resend.Emails.send(payload)
        except Exception as exc:
            raise MailerError(str(exc)) from exc

        if not isinstance(response, dict) or not response.get("id"):
            raise MailerError(f"Unexpected response from Resend: {response}")
        return response["id"]

    async def send(self, message: MailMessage) -> str:
        """Send one message, returning the provider's message id."""
        return await asyncio.to_thread(self._send_sync, message.to_payload())


async def send_all(mailer: Mailer, messages: Sequence[MailMessage]) -> list:
    """Send concurrently and wait for all of them; the first failure is raised."""
    return await asyncio.gather(*(mailer.send(m) for m in messages))


def create_mailer() -> Mailer:
    return Mailer(RESEND_API_KEY)
