from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid
from typing import List, Optional

from pydantic import BaseModel, Field

from ..config import EmailIntegrationConfig
from ..contracts import IntegrationResult
from .base import Integration

logger = logging.getLogger(__name__)


class EmailConfig(BaseModel):
    to: str
    subject: str
    body: str = ""
    cc: List[str] = Field(default_factory=list)
    bcc: List[str] = Field(default_factory=list)


class EmailIntegration(Integration[EmailConfig]):
    """Send an email over SMTP.

    Without an SMTP host the message is only logged, and a message id is
    still returned so later steps can reference it.
    """

    name = "email"
    config_model = EmailConfig

    def __init__(self, settings: Optional[EmailIntegrationConfig] = None) -> None:
        self._settings = settings or EmailIntegrationConfig()

    async def run(self, config: EmailConfig) -> IntegrationResult:
        message = self._build_message(config)
        message_id = message["Message-ID"]

        if not self._settings.smtp_host:
            logger.info(
                f"Dry run: sending email to {config.to} with subject \"{config.subject}\""
            )
            return IntegrationResult(success=True, message_id=message_id, delivered=False)

        try:
            await asyncio.to_thread(self._send, message, self._recipients(config))
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(f"Failed to send email to {config.to}: {exc}")
            return IntegrationResult(success=False, error=f"SMTP error: {exc}")

        logger.info(f"Sent email to {config.to} with subject \"{config.subject}\"")
        return IntegrationResult(success=True, message_id=message_id, delivered=True)

    def _build_message(self, config: EmailConfig) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._settings.sender
        message["To"] = config.to
        if config.cc:
            message["Cc"] = ", ".join(config.cc)
        message["Subject"] = config.subject
        message["Message-ID"] = make_msgid(domain="stepflow")
        message.set_content(config.body)
        return message

    @staticmethod
    def _recipients(config: EmailConfig) -> list[str]:
        # Bcc recipients travel in the envelope only
        return [config.to, *config.cc, *config.bcc]

    def _send(self, message: EmailMessage, recipients: list[str]) -> None:
        settings = self._settings
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as smtp:
            if settings.use_tls:
                smtp.starttls()
            if settings.username and settings.password:
                smtp.login(settings.username, settings.password)
            smtp.send_message(message, to_addrs=recipients)
