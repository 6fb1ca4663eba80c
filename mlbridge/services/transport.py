"""Deliver composed mail to the mailing lists over SMTP."""

import logging
import smtplib
from email.message import EmailMessage

from mlbridge.errors import DeliveryError

LOG = logging.getLogger("mlbridge.services.transport")


class SmtpTransport:
    """SMTP connection settings; a new connection is opened per message."""

    def __init__(
        self,
        host: str,
        port: int = 25,
        user: str | None = None,
        password: str | None = None,
        envelope_from: str | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.envelope_from = envelope_from

    def send(self, msg: EmailMessage) -> None:
        """Send ``msg`` to the addresses in its To and Cc headers."""
        try:
            with smtplib.SMTP(self.host, self.port, timeout=60) as smtp:
                if self.user and self.password:
                    smtp.starttls()
                    smtp.ehlo()
                    smtp.login(self.user, self.password)
                smtp.send_message(msg, from_addr=self.envelope_from)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"Sending {msg['Message-Id']} via {self.host}:{self.port} failed: {e}") from e
        LOG.info("Sent %s to %s", msg["Message-Id"], msg["To"])
