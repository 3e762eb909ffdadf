# SCOOL LTI Launch and Identity Service
# Copyright (c) 2021-2024  Fresno State University, SCOOL Project Team
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Email delivery

Only used to send account link confirmation messages.
"""

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from . import settings

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    async def send(
        self, to: str, subject: str, body_text: str, body_html: str
    ) -> bool: ...


def build_message(
    to: str, subject: str, body_text: str, body_html: str
) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = settings.MAIL_FROM
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body_text)
    msg.add_alternative(body_html, subtype="html")
    return msg


class SmtpEmailSender:
    """Sends mail through the configured SMTP relay."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=30) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)

    async def send(self, to: str, subject: str, body_text: str, body_html: str) -> bool:
        msg = build_message(to, subject, body_text, body_html)
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("failed to send [%s] to [%s]: %r", subject, to, exc)
            return False
        logger.info("sent [%s] to [%s]", subject, to)
        return True


class LoggingEmailSender:
    """Writes messages to the log instead of sending them, for local use."""

    def __init__(self) -> None:
        self.outbox: list[EmailMessage] = []

    async def send(self, to: str, subject: str, body_text: str, body_html: str) -> bool:
        msg = build_message(to, subject, body_text, body_html)
        self.outbox.append(msg)
        logger.warning("SMTP not configured, email [%s] to [%s] not sent", subject, to)
        return True


def default_sender() -> EmailSender:
    if settings.SMTP_HOST:
        return SmtpEmailSender(
            settings.SMTP_HOST,
            settings.SMTP_PORT,
            settings.SMTP_USERNAME,
            settings.SMTP_PASSWORD,
            settings.SMTP_USE_TLS,
        )
    return LoggingEmailSender()
