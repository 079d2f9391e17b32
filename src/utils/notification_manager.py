"""Review outcome emails.

Delivery is best effort: routes enqueue ``send_status_email`` as a background
task once the transition has committed, and a failed send is logged, never
raised.
"""

import html
import logging
import smtplib
import time
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Callable, Optional

from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config import (
    EMAIL_FROM,
    EMAIL_SENDER_NAME,
    FRONTEND_URL,
    NOTIFY_MAX_ATTEMPTS,
    NOTIFY_RETRY_DELAY_SECONDS,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USE_TLS,
    SMTP_USER,
)
from models.case_log import CaseLogModel
from models.enums import LogStatus

logger = logging.getLogger(__name__)


@dataclass
class SubmissionStatusEmail:
    """Everything needed to tell a learner how their case was reviewed."""

    learner_name: str
    learner_email: str
    submission_title: str
    status: str  # "approved" or "rejected"
    submission_id: str
    teacher_name: Optional[str] = None
    comments: Optional[str] = None

    @classmethod
    def from_log(cls, log: CaseLogModel, teacher_name: Optional[str] = None) -> Optional["SubmissionStatusEmail"]:
        """Build the payload for a reviewed log; None when there is no one to notify."""
        learner = log.created_by
        if log.status not in (LogStatus.APPROVED, LogStatus.REJECTED) or not learner or not learner.email:
            return None
        return cls(
            learner_name=learner.name,
            learner_email=learner.email,
            submission_title=log.case_no,
            status=log.status.value.lower(),
            submission_id=log.log_id,
            teacher_name=teacher_name,
            comments=log.rejection_reason if log.status == LogStatus.REJECTED else log.teacher_comments,
        )


class NotificationManager:
    """Renders and sends submission status emails over SMTP."""

    def __init__(
        self,
        host: Optional[str] = SMTP_HOST,
        port: int = SMTP_PORT,
        user: Optional[str] = SMTP_USER,
        password: Optional[str] = SMTP_PASSWORD,
        use_tls: bool = SMTP_USE_TLS,
        max_attempts: int = NOTIFY_MAX_ATTEMPTS,
        retry_delay: float = NOTIFY_RETRY_DELAY_SECONDS,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.smtp_factory = smtp_factory
        self.sleep = sleep

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def build_message(self, data: SubmissionStatusEmail) -> EmailMessage:
        status_text = data.status.upper()
        link = f"{FRONTEND_URL}/learner/logpage?id={data.submission_id}"

        lines = [
            f"Dear {data.learner_name},",
            "",
            f'Your submission "{data.submission_title}" has been {data.status} by your teacher.',
            "",
            "Submission Details:",
            f"- Submission ID: {data.submission_id}",
            f"- Status: {status_text}",
        ]
        if data.teacher_name:
            lines.append(f"- Reviewed by: {data.teacher_name}")
        if data.comments:
            lines += ["", f'Teacher\'s Comments: "{data.comments}"']
        lines += ["", f"You can view your submission at: {link}", "", "Best regards,", EMAIL_SENDER_NAME]

        color = "#4CAF50" if data.status == "approved" else "#f44336"
        reviewer = (
            f"<p><strong>Reviewed by:</strong> {html.escape(data.teacher_name)}</p>"
            if data.teacher_name
            else ""
        )
        comments = (
            f'<h3>Teacher\'s Comments:</h3><p><em>"{html.escape(data.comments)}"</em></p>'
            if data.comments
            else ""
        )
        body = (
            '<!DOCTYPE html><html><body style="font-family: Arial, sans-serif;">'
            f'<h2 style="background: {color}; color: white; padding: 15px;">Submission {status_text}</h2>'
            f"<p>Dear <strong>{html.escape(data.learner_name)}</strong>,</p>"
            f'<p>Your submission "<strong>{html.escape(data.submission_title)}</strong>" '
            f"has been <strong>{data.status}</strong> by your teacher.</p>"
            f"<p><strong>Submission ID:</strong> {html.escape(data.submission_id)}</p>"
            f"{reviewer}{comments}"
            f'<p><a href="{html.escape(link)}">View Submission</a></p>'
            "<p>This is an automated message. Please do not reply to this email.</p>"
            "</body></html>"
        )

        message = EmailMessage()
        message["Subject"] = f"Submission {status_text}: {data.submission_title}"
        message["From"] = f'"{EMAIL_SENDER_NAME}" <{EMAIL_FROM}>'
        message["To"] = data.learner_email
        message.set_content("\n".join(lines))
        message.add_alternative(body, subtype="html")
        return message

    def _retrying(self) -> Retrying:
        # Waits double from retry_delay, capped at 30s
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_delay, min=self.retry_delay, max=30),
            retry=retry_if_exception_type((smtplib.SMTPException, OSError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self.sleep,
        )

    def _deliver(self, message: EmailMessage) -> None:
        with self.smtp_factory(self.host, self.port, timeout=30) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.user and self.password:
                smtp.login(self.user, self.password)
            smtp.send_message(message)

    def send_status_email(self, data: SubmissionStatusEmail) -> bool:
        """Send one status email, retrying transport failures.

        Returns:
            True once delivered; False when SMTP is not configured or every
            attempt failed.
        """
        if not self.enabled:
            logger.info("SMTP not configured; skipping %s email for %s", data.status, data.submission_id)
            return False

        message = self.build_message(data)
        try:
            self._retrying()(self._deliver, message)
        except RetryError as e:
            logger.error(
                "Giving up on %s email for %s after %d attempts: %s",
                data.status,
                data.submission_id,
                self.max_attempts,
                e.last_attempt.exception(),
            )
            return False
        logger.info("Sent %s email for %s to %s", data.status, data.submission_id, data.learner_email)
        return True
