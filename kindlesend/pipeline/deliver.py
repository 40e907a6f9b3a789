"""
Email delivery to Kindle addresses.
Handles the attachment size limit, STARTTLS/SSL negotiation and cleanup after every attempt.
"""

import logging
import mimetypes
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from enum import Enum
from pathlib import Path
from typing import Callable, Hashable, Optional

from .errors import DeliveryFailed
from .session import SessionStore

logger = logging.getLogger(__name__)

SENDER_NAME = "Send-to-Kindle Bot"

@dataclass
class DelivererConfig:
    smtp_server: str
    sender: str
    password: str
    port: int=587
    insecure: bool=False
    max_attachment_size_mb: float=25.0
    timeout_seconds: int=60

class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"
    NO_PENDING_FILE = "no_pending_file"

@dataclass
class DeliveryResult:
    status: DeliveryStatus
    display_file_name: Optional[str]=None
    error_message: Optional[str]=None

    @property
    def success(self) -> bool:
        return self.status is DeliveryStatus.DELIVERED

def mask_email(address: str) -> str:
    """Hide the local part of an address for logging"""
    parts = address.split("@")
    if len(parts) != 2:
        return "***@***"
    return "***@" + parts[1]

def _tls_context(insecure: bool) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if insecure:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context

def build_message(sender: str, recipient: str, subject: str, attachment_path: Path) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = formataddr((SENDER_NAME, sender))
    msg["To"] = recipient
    msg["Subject"] = subject
    msg.set_content("")

    mime_type, _ = mimetypes.guess_type(attachment_path.name)
    maintype, subtype = (mime_type or "application/octet-stream").split("/", 1)
    msg.add_attachment(
        attachment_path.read_bytes(),
        maintype=maintype,
        subtype=subtype,
        filename=attachment_path.name
    )
    return msg

def send_email(config: DelivererConfig, recipient: str, subject: str, attachment_path: str):
    """
    Send one attachment to recipient.

    Raises DeliveryFailed on any error; the SMTP detail is kept in the exception message for logging.
    """
    path = Path(attachment_path)
    try:
        size_mb = path.stat().st_size / (1024 * 1024)
    except OSError as e:
        raise DeliveryFailed(f"could not read attachment {path.name}: {e}") from e
    if size_mb > config.max_attachment_size_mb:
        raise DeliveryFailed(f"attachment {path.name} is {size_mb:.1f}MB, limit is {config.max_attachment_size_mb}MB")

    try:
        msg = build_message(config.sender, recipient, subject, path)
    except OSError as e:
        raise DeliveryFailed(f"could not attach file: {e}") from e

    if config.insecure:
        logger.warning("SMTP insecure mode: TLS certificate verification is disabled")
    context = _tls_context(config.insecure)

    try:
        if config.port == 465:
            with smtplib.SMTP_SSL(config.smtp_server, config.port, timeout=config.timeout_seconds, context=context) as server:
                server.login(config.sender, config.password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(config.smtp_server, config.port, timeout=config.timeout_seconds) as server:
                server.starttls(context=context)
                server.login(config.sender, config.password)
                server.send_message(msg)
    except smtplib.SMTPAuthenticationError as e:
        raise DeliveryFailed(f"authentication failed (check email and password): {e}") from e
    except (smtplib.SMTPException, OSError) as e:
        raise DeliveryFailed(f"could not send mail via {config.smtp_server}:{config.port}: {e}") from e

    logger.debug(f"Email sent successfully to {mask_email(recipient)}")

Mailer = Callable[[str, str, str], None]

class DeliveryDispatcher:
    """Consume a user's pending session, mail its file and clean up whatever the outcome"""

    def __init__(self, store: SessionStore, mailer: Mailer):
        self.store = store
        self.mailer = mailer

    def deliver(self, user_id: Hashable, address: str) -> DeliveryResult:
        session = self.store.take_and_clear(user_id)
        if session is None:
            logger.info(f"No pending file for user {user_id}")
            return DeliveryResult(status=DeliveryStatus.NO_PENDING_FILE)

        subject = f"Book: {session.display_file_name}"
        logger.debug(f"Sending {session.display_file_name} to {mask_email(address)}...")
        try:
            self.mailer(address, subject, session.staged_file_path)
        except Exception as e:
            logger.error(f"Could not send {session.display_file_name} to {mask_email(address)}: {e}")
            return DeliveryResult(
                status=DeliveryStatus.FAILED,
                display_file_name=session.display_file_name,
                error_message=str(e)
            )
        finally:
            self.store.discard(session)

        logger.info(f"Successfully sent {session.display_file_name} to {mask_email(address)}")
        return DeliveryResult(
            status=DeliveryStatus.DELIVERED,
            display_file_name=session.display_file_name
        )
