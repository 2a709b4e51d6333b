# 📧 Contact form delivery through SendGrid

import asyncio
import html
import logging
from dataclasses import dataclass
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from sentinel.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class ContactMessage:
    name: str
    email: str
    subject: str
    message: str


@dataclass
class SendResult:
    success: bool
    error: Optional[str] = None


def _build_mail(contact: ContactMessage, settings: Settings) -> Mail:
    body = html.escape(contact.message).replace("\n", "<br>")
    mail = Mail(
        from_email=settings.email_user,
        to_emails=settings.contact_recipient or settings.email_user,
        subject=f"[Portfolio contact] {contact.subject}",
        html_content=(
            f"<p><strong>From:</strong> {html.escape(contact.name)} &lt;{html.escape(contact.email)}&gt;</p>"
            f"<p>{body}</p>"
        ),
    )
    mail.reply_to = contact.email
    return mail


async def send_contact_email(contact: ContactMessage, settings: Settings) -> SendResult:
    if not settings.sendgrid_api_key or not settings.email_user:
        logger.error("❌ Email is not configured (SENDGRID_API_KEY / EMAIL_USER missing)")
        return SendResult(success=False, error="Email service is not configured")

    mail = _build_mail(contact, settings)
    client = SendGridAPIClient(settings.sendgrid_api_key)
    try:
        response = await asyncio.to_thread(client.send, mail)
    except Exception as e:
        logger.error(f"❌ Failed to send contact email from {contact.email}: {e}")
        return SendResult(success=False, error="Failed to send email")

    if response.status_code >= 400:
        logger.error(f"❌ SendGrid rejected contact email: HTTP {response.status_code}")
        return SendResult(success=False, error="Failed to send email")

    logger.info(f"✅ Contact email sent for {contact.email}")
    return SendResult(success=True)
