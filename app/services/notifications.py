"""
Notification dispatch

The reconciler hands purchaser notifications to a NotificationDispatcher
and never waits on the result. Routers use BackgroundTaskDispatcher so
the email goes out after the webhook response; tests inject a recording
dispatcher instead.

SMS is shared client-side from the success page, so only email is sent.
"""

import logging
from typing import Callable, Optional

from fastapi import BackgroundTasks

from ..database import SessionLocal
from . import ledger
from .email_provider import EmailProvider, EmailSendResult
from .notification_templates import (
    PassNotificationData,
    email_subject,
    generate_pass_notification_text,
    generate_pass_notification_html
)

logger = logging.getLogger(__name__)


def _mark_emailed(pass_id: str, session_factory: Callable) -> None:
    db = session_factory()
    try:
        ledger.mark_lock_code_emailed(db, pass_id)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to record email for pass {pass_id}: {e}")
    finally:
        db.close()


def send_pass_notifications(
    email: Optional[str],
    phone: Optional[str],
    data: PassNotificationData,
    timezone: str,
    pass_id: Optional[str] = None,
    provider: Optional[EmailProvider] = None,
    session_factory: Optional[Callable] = None
) -> Optional[EmailSendResult]:
    """
    Render and send the pass email. Returns None when there is no address.

    On success the pass's lock code gets email_sent_at, so a failed send
    is retried when the webhook event is processed again.
    """
    if not email:
        logger.info(f"No email for pass notification (phone on file: {bool(phone)})")
        return None

    provider = provider or EmailProvider()
    try:
        result = provider.send(
            to_email=email,
            subject=email_subject(data),
            text_body=generate_pass_notification_text(data, timezone),
            html_body=generate_pass_notification_html(data, timezone),
            template_name="pass_notification"
        )
    except Exception as e:
        logger.exception(f"Pass notification to {email} crashed: {e}")
        return EmailSendResult(success=False, error=str(e))

    if result.success:
        logger.info(f"Pass notification email sent to {email}")
        if pass_id:
            _mark_emailed(pass_id, session_factory or SessionLocal)
    else:
        logger.error(f"Pass notification email to {email} failed: {result.error}")
    return result


class NotificationDispatcher:
    """Sends notifications inline. Subclasses decide when the work runs."""

    def dispatch_pass_notification(
        self,
        email: Optional[str],
        phone: Optional[str],
        data: PassNotificationData,
        timezone: str,
        pass_id: Optional[str] = None
    ) -> None:
        send_pass_notifications(email, phone, data, timezone, pass_id=pass_id)


class BackgroundTaskDispatcher(NotificationDispatcher):
    """Queues notifications on FastAPI BackgroundTasks (run after the response)"""

    def __init__(self, background_tasks: BackgroundTasks):
        self.background_tasks = background_tasks

    def dispatch_pass_notification(
        self,
        email: Optional[str],
        phone: Optional[str],
        data: PassNotificationData,
        timezone: str,
        pass_id: Optional[str] = None
    ) -> None:
        self.background_tasks.add_task(send_pass_notifications, email, phone, data, timezone, pass_id=pass_id)
