"""E-mail notification of public IP changes."""

import asyncio
import logging
import smtplib
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Callable, Optional

from ipwatcher.config import SmtpConfig
from ipwatcher.errors import NotifyError
from ipwatcher.resolver import Address

logger = logging.getLogger(__name__)

SUBJECT_PREFIX = "[IP Watcher]"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_subject(address: Address, is_first_observation: bool) -> str:
    """Subject line distinguishing first detection from a change."""
    if is_first_observation:
        return f"{SUBJECT_PREFIX} First external IP detected: {address}"
    return f"{SUBJECT_PREFIX} External IP changed: {address}"


class EmailNotifier:
    """Sends one e-mail per call through an authenticated SMTP relay.

    Sending is best effort: failures are raised as NotifyError and never
    retried here.

    Example:
        notifier = EmailNotifier(config.smtp)
        await notifier.notify(ip_address("203.0.113.5"), is_first_observation=True)
    """

    def __init__(
        self,
        config: SmtpConfig,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """Initialize notifier.

        Args:
            config: Relay, credentials and identities.
            smtp_factory: SMTP client constructor (injectable for testing).
            clock: Returns the current UTC time (injectable for testing).
        """
        self._config = config
        self._smtp_factory = smtp_factory
        self._clock = clock

    @property
    def recipient(self) -> str:
        return self._config.recipient

    def build_message(
        self,
        address: Address,
        is_first_observation: bool,
        when: Optional[datetime] = None,
    ) -> EmailMessage:
        """Build the notification e-mail."""
        when = when or self._clock()
        timestamp = when.isoformat(timespec="seconds").replace("+00:00", "Z")

        msg = EmailMessage()
        msg["Subject"] = build_subject(address, is_first_observation)
        msg["From"] = self._config.sender
        msg["To"] = self._config.recipient
        msg["Date"] = formatdate(when.timestamp(), localtime=False)
        msg["Message-ID"] = make_msgid(domain="ipwatcher")

        msg.set_content(
            f"Time: {timestamp}\n"
            f"Current external IP: {address}\n"
            "\n"
            "This email was sent automatically by ipwatcher.\n"
        )
        msg.add_alternative(
            f"<p>Time: {timestamp}</p>\n"
            f"<p>Current external IP: <b>{address}</b></p>\n"
            "<p>This email was sent automatically by ipwatcher.</p>\n",
            subtype="html",
        )
        return msg

    async def notify(self, address: Address, is_first_observation: bool) -> None:
        """Send one notification about the given address.

        Raises:
            NotifyError: If the message could not be built or sent.
        """
        try:
            msg = self.build_message(address, is_first_observation)
        except (ValueError, TypeError) as e:
            raise NotifyError(f"Cannot build email: {e}") from e

        await asyncio.to_thread(self._send_sync, msg)
        logger.debug(f"Sent '{msg['Subject']}' to {self._config.recipient}")

    def _send_sync(self, msg: EmailMessage) -> None:
        cfg = self._config
        # App passwords are often pasted with spaces
        password = cfg.app_password.replace(" ", "")
        try:
            with self._smtp_factory(cfg.server, cfg.port, timeout=cfg.timeout) as server:
                server.starttls()
                server.login(cfg.username, password)
                server.send_message(msg)
        # ValueError covers credentials or headers smtplib cannot encode
        except (smtplib.SMTPException, OSError, ValueError) as e:
            raise NotifyError(
                f"SMTP send via {cfg.server}:{cfg.port} failed: {e}"
            ) from e
