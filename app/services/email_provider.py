"""
SMTP email provider

Sends one message with up to MAX_ATTEMPTS tries. Transient failures
(connection problems, server disconnects, 4xx SMTP replies) are retried
after RETRY_DELAYS; anything else stops after the first attempt. A send
that never succeeds is written to the email_failures dead letter table.
"""

import time
import smtplib
import logging
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Callable, Optional, Dict, Any

from ..config import settings
from ..database import SessionLocal
from ..models.email_failure import EmailFailure

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
RETRY_DELAYS = [0.25, 0.75, 1.5]  # seconds


@dataclass
class EmailSendResult:
    success: bool
    attempts: int = 0
    error: Optional[str] = None


def is_transient_error(error: Exception) -> bool:
    """Whether another attempt could succeed."""
    if isinstance(error, (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError)):
        return True
    if isinstance(error, smtplib.SMTPResponseException):
        return 400 <= error.smtp_code < 500
    if isinstance(error, smtplib.SMTPException):
        return False
    # socket errors, timeouts, refused connections
    return isinstance(error, OSError)


def _build_sender(from_email: str, from_name: str) -> str:
    if not from_name:
        return from_email
    return f"{from_name} <{from_email}>"


class EmailProvider:
    """SMTP sender with retry and dead letter logging"""

    def __init__(
        self,
        session_factory: Callable = SessionLocal,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.session_factory = session_factory
        self.sleep = sleep

    def _build_message(
        self,
        to_email: str,
        subject: str,
        text_body: str,
        html_body: Optional[str]
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = _build_sender(settings.email_from, settings.email_from_name)
        message["To"] = to_email
        message["Subject"] = subject
        if settings.email_reply_to:
            message["Reply-To"] = settings.email_reply_to
        message.set_content(text_body)
        if html_body:
            message.add_alternative(html_body, subtype="html")
        return message

    def _send_once(self, message: EmailMessage) -> None:
        timeout = settings.smtp_timeout_seconds
        if settings.smtp_use_ssl:
            smtp_client: smtplib.SMTP = smtplib.SMTP_SSL(
                host=settings.smtp_host, port=settings.smtp_port, timeout=timeout
            )
        else:
            smtp_client = smtplib.SMTP(host=settings.smtp_host, port=settings.smtp_port, timeout=timeout)

        with smtp_client as smtp:
            smtp.ehlo()
            if settings.smtp_use_starttls and not settings.smtp_use_ssl:
                smtp.starttls()
                smtp.ehlo()
            if settings.smtp_username:
                smtp.login(settings.smtp_username, settings.smtp_password)
            smtp.send_message(message)

    def _log_failure(
        self,
        recipient: str,
        subject: str,
        error_message: str,
        attempts: int,
        template_name: Optional[str],
        payload_summary: Dict[str, Any]
    ):
        db = self.session_factory()
        try:
            db.add(EmailFailure(
                recipient=recipient,
                subject=subject[:255],
                template_name=template_name,
                error_message=error_message,
                attempts=attempts,
                payload_summary=payload_summary
            ))
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to write email failure for {recipient}: {e}")
        finally:
            db.close()

    def send(
        self,
        to_email: str,
        subject: str,
        text_body: str,
        html_body: Optional[str] = None,
        template_name: Optional[str] = None
    ) -> EmailSendResult:
        if not settings.smtp_configured:
            error = "Email provider not configured (missing SMTP_HOST or EMAIL_FROM)"
            logger.error(f"{error}; not sending to {to_email}")
            return EmailSendResult(success=False, error=error)

        message = self._build_message(to_email, subject, text_body, html_body)
        last_error: Optional[Exception] = None
        attempts = 0

        while attempts < MAX_ATTEMPTS:
            attempts += 1
            try:
                self._send_once(message)
                logger.info(f"Email sent to {to_email} ({subject}) on attempt {attempts}")
                return EmailSendResult(success=True, attempts=attempts)
            except Exception as e:
                last_error = e
                transient = is_transient_error(e)
                logger.warning(
                    f"Email attempt {attempts} to {to_email} failed "
                    f"({type(e).__name__}, transient={transient}): {e}"
                )
                if not transient:
                    logger.error(f"Permanent email error for {to_email}, not retrying")
                    break
                if attempts < MAX_ATTEMPTS:
                    self.sleep(RETRY_DELAYS[attempts - 1])

        error_message = str(last_error) if last_error else "Unknown error"
        self._log_failure(
            recipient=to_email,
            subject=subject,
            error_message=error_message,
            attempts=attempts,
            template_name=template_name,
            payload_summary={
                "has_html": bool(html_body),
                "body_length": len(text_body),
                "from_address": settings.email_from,
            }
        )
        logger.error(f"Email to {to_email} failed after {attempts} attempt(s), logged to dead letter table")
        return EmailSendResult(success=False, attempts=attempts, error=error_message)
