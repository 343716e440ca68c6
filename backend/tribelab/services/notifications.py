"""
Billing notifications: email via Resend and in-app inbox entries.

Email delivery never raises; a missing API key or a Resend failure is logged
and reported as ``False`` so billing flows carry on.
"""
import logging
from typing import Any, Dict, Optional

import resend
from sqlalchemy.orm import Session

from tribelab.core.config import settings
from tribelab.models import Community, Notification, User

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, html_body: str, text_body: Optional[str] = None) -> bool:
    """
    Send an email through Resend.

    Returns:
        True on success, False when unconfigured or on failure
    """
    if not settings.resend_api_key:
        logger.warning(f"Resend API key not configured, skipping email '{subject}' to {to_email}")
        return False

    resend.api_key = settings.resend_api_key
    params: Dict[str, Any] = {
        "from": settings.email_from,
        "to": [to_email],
        "subject": subject,
        "html": html_body,
    }
    if text_body:
        params["text"] = text_body

    try:
        resend.Emails.send(params)
        logger.info(f"Email '{subject}' sent to {to_email}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email '{subject}' to {to_email}: {str(e)}")
        return False


def _billing_url(community: Community) -> str:
    return f"{settings.app_url.rstrip('/')}/communities/{community.slug}/billing"


def trial_reminder_content(community: Community, days_remaining: int) -> Dict[str, str]:
    day_word = "day" if days_remaining == 1 else "days"
    url = _billing_url(community)
    subject = f"Your {community.name} trial ends in {days_remaining} {day_word}"
    text = (
        f"Your free trial for {community.name} ends in {days_remaining} {day_word}. "
        f"Subscribe to keep your community running: {url}"
    )
    html = (
        f"<p>Your free trial for <strong>{community.name}</strong> ends in "
        f"<strong>{days_remaining} {day_word}</strong>.</p>"
        f"<p>Subscribe to keep your community running without interruption.</p>"
        f'<p><a href="{url}">Choose a plan</a></p>'
    )
    return {"subject": subject, "text": text, "html": html}


def suspension_content(community: Community) -> Dict[str, str]:
    url = _billing_url(community)
    subject = f"{community.name} has been suspended"
    text = (
        f"The free trial for {community.name} has ended and the community is now suspended. "
        f"Subscribe to restore access for your members: {url}"
    )
    html = (
        f"<p>The free trial for <strong>{community.name}</strong> has ended and the "
        f"community is now suspended.</p>"
        f'<p><a href="{url}">Subscribe to restore access</a></p>'
    )
    return {"subject": subject, "text": text, "html": html}


def renewal_reminder_content(community: Community, days_remaining: int) -> Dict[str, str]:
    url = _billing_url(community)
    subject = f"{community.name} subscription renews in {days_remaining} day(s)"
    text = f"Your subscription for {community.name} renews in {days_remaining} day(s). Manage billing: {url}"
    html = (
        f"<p>Your subscription for <strong>{community.name}</strong> renews in "
        f"{days_remaining} day(s).</p><p><a href=\"{url}\">Manage billing</a></p>"
    )
    return {"subject": subject, "text": text, "html": html}


def payment_retry_content(community: Community, attempt: int, max_attempts: int) -> Dict[str, str]:
    url = _billing_url(community)
    subject = f"Payment failed for {community.name}"
    text = (
        f"We could not charge your subscription for {community.name}. "
        f"We will retry shortly (attempt {attempt} of {max_attempts}). Update your payment method: {url}"
    )
    html = (
        f"<p>We could not charge your subscription for <strong>{community.name}</strong>.</p>"
        f"<p>We will retry shortly (attempt {attempt} of {max_attempts}).</p>"
        f'<p><a href="{url}">Update your payment method</a></p>'
    )
    return {"subject": subject, "text": text, "html": html}


class NotificationService:
    """Sends billing emails and stores in-app notifications."""

    def notify(
        self,
        db: Session,
        user: User,
        community: Community,
        notification_type: str,
        content: Dict[str, str],
        priority: str = "normal",
        data: Optional[Dict[str, Any]] = None,
        send_mail: bool = True,
    ) -> Dict[str, bool]:
        """
        Store an in-app notification and send the matching email.

        Args:
            db: Database session (the notification is added, not committed)
            user: Recipient
            community: Community the notification is about
            notification_type: trial_reminder, community_suspended, renewal_reminder, payment_retry
            content: Dict with subject, text and html
            priority: "normal" or "high"
            data: Extra payload stored with the notification
            send_mail: Skip the email when False

        Returns:
            {"in_app_sent": bool, "email_sent": bool}
        """
        in_app_sent = False
        try:
            db.add(
                Notification(
                    user_id=user.id,
                    community_id=community.id,
                    type=notification_type,
                    title=content["subject"],
                    message=content["text"],
                    priority=priority,
                    data=data or {},
                )
            )
            in_app_sent = True
        except Exception as e:
            logger.error(f"Failed to store {notification_type} notification for user {user.id}: {str(e)}")

        email_sent = False
        if send_mail and user.email:
            email_sent = send_email(user.email, content["subject"], content["html"], content["text"])

        return {"in_app_sent": in_app_sent, "email_sent": email_sent}

    def send_trial_reminder(self, db: Session, user: User, community: Community, days_remaining: int) -> Dict[str, bool]:
        return self.notify(
            db,
            user,
            community,
            "trial_reminder",
            trial_reminder_content(community, days_remaining),
            priority="high" if days_remaining <= 2 else "normal",
            data={"days_remaining": days_remaining, "community_slug": community.slug},
        )

    def send_suspension_notice(self, db: Session, user: User, community: Community) -> Dict[str, bool]:
        return self.notify(
            db,
            user,
            community,
            "community_suspended",
            suspension_content(community),
            priority="high",
            data={"reason": community.suspension_reason, "community_slug": community.slug},
        )

    def send_renewal_reminder(self, db: Session, user: User, community: Community, days_remaining: int) -> Dict[str, bool]:
        return self.notify(
            db,
            user,
            community,
            "renewal_reminder",
            renewal_reminder_content(community, days_remaining),
            data={"days_remaining": days_remaining},
        )

    def send_payment_retry(
        self, db: Session, user: User, community: Community, attempt: int, max_attempts: int
    ) -> Dict[str, bool]:
        return self.notify(
            db,
            user,
            community,
            "payment_retry",
            payment_retry_content(community, attempt, max_attempts),
            priority="high",
            data={"attempt": attempt, "max_attempts": max_attempts},
        )


# Global service instance
notification_service = NotificationService()
