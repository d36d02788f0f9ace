"""
Email Service

Sends transactional emails through SendGrid and keeps an EmailLog row per
recipient for every attempt.

Every send is best effort: public methods return an ``EmailResult`` and
never raise, so callers can carry on whatever the provider does.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional
from urllib.parse import urlencode

from sendgrid.helpers.mail import Mail
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coaching.errors import ExternalServiceError
from coaching.models import EmailLog, EmailStatus, EmailType
from coaching.services import email_templates

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


@dataclass
class EmailResult:
    success: bool
    email_log_ids: list[str] = field(default_factory=list)
    provider_message_id: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def email_log_id(self) -> Optional[str]:
        return self.email_log_ids[0] if self.email_log_ids else None


class EmailDispatcher:
    """Sends emails and records their delivery status."""

    def __init__(
        self,
        db: Session,
        client,
        from_email: str,
        frontend_url: str,
        admin_emails: Iterable[str] = (),
        activation_expire_hours: int = 24,
    ):
        self.db = db
        self.client = client  # SendGridAPIClient, or None when not configured
        self.from_email = from_email
        self.frontend_url = frontend_url.rstrip("/")
        self.admin_emails = list(admin_emails)
        self.activation_expire_hours = activation_expire_hours

    # ============== Public sends ==============

    def send_order_confirmation(
        self,
        to: str,
        order_id: str,
        plan_id: str,
        amount: Optional[int],
        currency: Optional[str],
    ) -> EmailResult:
        subject, html = email_templates.order_confirmation(plan_id, amount, currency)
        return self._dispatch(EmailType.TRANSACTIONAL, [to], subject, html, order_id=order_id)

    def send_account_activation(
        self,
        to: str,
        user_id: str,
        token: str,
        order_id: Optional[str] = None,
    ) -> EmailResult:
        query = urlencode({"token": token, "userId": user_id})
        activation_url = f"{self.frontend_url}/activate?{query}"
        subject, html = email_templates.account_activation(activation_url, self.activation_expire_hours)
        return self._dispatch(EmailType.SIGNUP, [to], subject, html, order_id=order_id)

    def send_admin_order_notification(
        self,
        order_id: str,
        customer_email: str,
        plan_id: str,
        amount: Optional[int],
        currency: Optional[str],
    ) -> EmailResult:
        """One provider call to every configured admin address."""
        if not self.admin_emails:
            logger.debug("No admin notification recipients configured")
            return EmailResult(success=True)

        subject, html = email_templates.admin_new_order(customer_email, plan_id, amount, currency, order_id)
        return self._dispatch(EmailType.TRANSACTIONAL, self.admin_emails, subject, html, order_id=order_id)

    # ============== Delivery ==============

    def _dispatch(
        self,
        email_type: EmailType,
        recipients: list[str],
        subject: str,
        html: str,
        order_id: Optional[str] = None,
    ) -> EmailResult:
        # Rows go in before the provider call; they are corrected afterwards
        try:
            logs = [
                EmailLog(
                    email_type=email_type,
                    order_id=order_id,
                    recipient=recipient,
                    subject=subject,
                    status=EmailStatus.SENT,
                )
                for recipient in recipients
            ]
            self.db.add_all(logs)
            self.db.commit()
            log_ids = [log.id for log in logs]
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not write email log ({email_type.value}): {e}")
            return EmailResult(success=False, error_message=str(e))

        try:
            message_id = self._deliver(recipients, subject, html)
        except Exception as e:
            error_message = str(e) or e.__class__.__name__
            logger.error(f"Email delivery failed ({email_type.value}, {len(recipients)} recipient(s)): {error_message}")
            self._finalize(log_ids, EmailStatus.FAILED, error_message=error_message[:MAX_ERROR_LENGTH])
            return EmailResult(success=False, email_log_ids=log_ids, error_message=error_message)

        self._finalize(log_ids, EmailStatus.SENT, provider_message_id=message_id)
        logger.info(f"Email sent ({email_type.value}, {len(recipients)} recipient(s)): {message_id}")
        return EmailResult(success=True, email_log_ids=log_ids, provider_message_id=message_id)

    def _deliver(self, recipients: list[str], subject: str, html: str) -> Optional[str]:
        """Send through the provider and return its message id."""
        if self.client is None:
            raise ExternalServiceError("Email provider is not configured")

        message = Mail(
            from_email=self.from_email,
            to_emails=recipients,
            subject=subject,
            html_content=html,
        )
        response = self.client.send(message)
        if response.status_code >= 400:
            raise ExternalServiceError(f"Email provider returned status {response.status_code}")
        return response.headers.get("X-Message-Id")

    def _finalize(
        self,
        log_ids: list[str],
        status: EmailStatus,
        provider_message_id: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        """Apply one outcome to every row of the attempt."""
        try:
            (
                self.db.query(EmailLog)
                .filter(EmailLog.id.in_(log_ids))
                .update(
                    {
                        EmailLog.status: status,
                        EmailLog.provider_message_id: provider_message_id,
                        EmailLog.error_message: error_message,
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not update email log(s) {log_ids}: {e}")
