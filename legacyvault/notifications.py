"""
Notification Dispatcher

Emails every recipient that has an address once a will is finalized.
A failed send for one recipient never stops the others; the outcome of
each send is collected into a NotificationReport.
"""

import smtplib
from dataclasses import dataclass, field
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Any, Dict, List, Optional

from flask import current_app, render_template_string

from legacyvault import store
from legacyvault.audit_logger import log_email_sent


# Email templates
NOTIFICATION_EMAIL_TEMPLATE = """
<!DOCTYPE html>
<html>
<head>
    <style>
        body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; }
        .container { max-width: 600px; margin: 0 auto; padding: 40px 20px; }
        .header { text-align: center; margin-bottom: 30px; font-size: 28px; font-weight: bold; color: #1a1a2e; }
        .card { background: #f8f9fa; border-radius: 12px; padding: 30px; margin: 20px 0; }
        .footer { text-align: center; margin-top: 40px; color: #666; font-size: 14px; }
    </style>
</head>
<body>
    <div class="container">
        <div class="header">{{ app_name }}</div>

        <h1>Dear {{ recipient_name }},</h1>

        <p>We're writing to inform you that <strong>{{ owner_name }}</strong> has finalized their
        digital will titled "<strong>{{ will_title }}</strong>" and has named you as a recipient.</p>

        <div class="card">
            <h3 style="margin-top: 0;">What does this mean?</h3>
            <p>You have been designated to receive assets or important information as part of this
            digital will. The specific details of your allocation will be shared with you at the
            appropriate time.</p>
        </div>

        <p>If you have any questions about this notification or need to verify your identity as a
        recipient, please contact us.</p>

        <div class="footer">
            <p>This is an automated notification from {{ app_name }}.</p>
            <p>&copy; {{ current_year }} {{ app_name }}. All rights reserved.</p>
        </div>
    </div>
</body>
</html>
"""

TEXT_EMAIL_TEMPLATE = """
Dear {{ recipient_name }},

{{ owner_name }} has finalized their digital will titled "{{ will_title }}"
and has named you as a recipient.

What does this mean?
You have been designated to receive assets or important information as part
of this digital will. The specific details of your allocation will be shared
with you at the appropriate time.

If you have any questions about this notification or need to verify your
identity as a recipient, please contact us.

---
This is an automated notification from {{ app_name }}.
"""

SUBJECT_TEMPLATE = "Important: You've been named in {owner_name}'s Digital Will"


@dataclass
class RecipientNotificationResult:
    """Outcome of one recipient email."""
    recipient_id: str
    email: str
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'recipient_id': self.recipient_id,
            'email': self.email,
            'success': self.success,
            'error': self.error,
        }


@dataclass
class NotificationReport:
    """Outcome of a notify call across all emailed recipients."""
    results: List[RecipientNotificationResult] = field(default_factory=list)

    @property
    def sent(self) -> int:
        return len([r for r in self.results if r.success])

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def failures(self) -> List[RecipientNotificationResult]:
        return [r for r in self.results if not r.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sent': self.sent,
            'total': self.total,
            'results': [r.to_dict() for r in self.results],
        }


class EmailService:
    """Service for sending recipient notification emails over SMTP."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config if config is not None else current_app.config
        self.smtp_host = config.get('SMTP_HOST', '')
        self.smtp_port = int(config.get('SMTP_PORT', 587))
        self.smtp_user = config.get('SMTP_USERNAME', '')
        self.smtp_password = config.get('SMTP_PASSWORD', '')
        self.smtp_tls = bool(config.get('SMTP_USE_TLS', True))
        self.timeout = float(config.get('SMTP_TIMEOUT_SECONDS', 10))
        self.from_address = config.get('EMAIL_FROM_ADDRESS', 'notifications@legacyvault.local')
        self.from_name = config.get('EMAIL_FROM_NAME', 'LegacyVault')
        self.enabled = bool(self.smtp_host)

    def is_configured(self) -> bool:
        """Check if email service is properly configured."""
        return self.enabled

    def build_message(self, recipient_email: str, recipient_name: str,
                      will_title: str, owner_name: str) -> MIMEMultipart:
        """Render the notification email for one recipient."""
        msg = MIMEMultipart('alternative')
        msg['Subject'] = SUBJECT_TEMPLATE.format(owner_name=owner_name)
        msg['From'] = formataddr((self.from_name, self.from_address))
        msg['To'] = recipient_email

        template_vars = {
            'recipient_name': recipient_name,
            'owner_name': owner_name,
            'will_title': will_title,
            'app_name': self.from_name,
            'current_year': datetime.utcnow().year,
        }

        text_content = render_template_string(TEXT_EMAIL_TEMPLATE, **template_vars)
        html_content = render_template_string(NOTIFICATION_EMAIL_TEMPLATE, **template_vars)

        msg.attach(MIMEText(text_content, 'plain'))
        msg.attach(MIMEText(html_content, 'html'))
        return msg

    def send_recipient_notification(
        self,
        recipient_email: str,
        recipient_name: str,
        will_title: str,
        owner_name: str
    ) -> tuple:
        """
        Send the finalization notice to one recipient.

        Args:
            recipient_email: Recipient email address
            recipient_name: Recipient name for personalization
            will_title: Title of the finalized will
            owner_name: Name of the will owner

        Returns:
            Tuple of (success: bool, error_message: str or None)
        """
        if not self.is_configured():
            return False, 'Email service not configured'

        try:
            msg = self.build_message(recipient_email, recipient_name, will_title, owner_name)

            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                if self.smtp_tls:
                    server.starttls()
                if self.smtp_user:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)

            return True, None

        except (smtplib.SMTPException, OSError) as e:
            error_msg = str(e) or type(e).__name__
            current_app.logger.error(f'Failed to send email to {recipient_email}: {error_msg}')
            return False, error_msg


class NotificationDispatcher:
    """Sends one notification per recipient with an email address."""

    def __init__(self, email_service: Optional[EmailService] = None):
        self.email_service = email_service

    def notify(self, owner_id: str, will_id: str, will_title: str, owner_name: str) -> NotificationReport:
        """
        Notify the owner's recipients that a will was finalized.

        Recipients without an email address are skipped and do not count
        toward the total.

        Returns:
            NotificationReport with per-recipient outcomes
        """
        email_service = self.email_service or EmailService()
        report = NotificationReport()

        recipients = store.list_notifiable_recipients(owner_id)
        if not recipients:
            current_app.logger.info(f'No recipients with email addresses for will {will_id}')
            return report

        current_app.logger.info(f'Notifying {len(recipients)} recipient(s) for will {will_id}')

        for recipient in recipients:
            success, error = email_service.send_recipient_notification(
                recipient.email, recipient.full_name, will_title, owner_name
            )
            log_email_sent(owner_id, will_id, recipient.email, success, error)
            report.results.append(RecipientNotificationResult(
                recipient_id=recipient.id,
                email=recipient.email,
                success=success,
                error=error
            ))

        current_app.logger.info(f'Successfully sent {report.sent} of {report.total} emails')
        return report
