"""Email notifications sent when a session reaches a terminal state."""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import List, Optional, Tuple

from jinja2 import Environment, FileSystemLoader, select_autoescape

from examforms.config import Settings, get_settings
from examforms.models import FormSession
from examforms.schemas import FormSnapshot
from examforms.utils import format_duration

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html", "xml"]),
    trim_blocks=True,
)


def _context(form: FormSnapshot, form_session: FormSession) -> dict:
    return {
        "form_title": form.title,
        "respondent_name": form_session.respondent_name,
        "respondent_email": form_session.respondent_email,
        "status": form_session.status,
        "submitted_at": form_session.submitted_at.strftime("%b %d, %Y %H:%M") if form_session.submitted_at else "",
        "time_spent": format_duration(form_session.time_spent_seconds),
        "score": form_session.score,
        "passed": form_session.passed,
        "violations_count": form_session.violations_count,
        "confirmation_message": form.confirmation_message,
        "show_score": form.settings.show_score_after,
    }


def build_messages(form: FormSnapshot, form_session: FormSession) -> List[Tuple[str, str, str]]:
    """Render the (recipient, subject, body) messages due for a finalized session."""
    context = _context(form, form_session)
    messages = []
    if form.notifications.notify_on_submission and form.creator_email:
        body = _env.get_template("emails/form_submission.txt").render(**context)
        messages.append((form.creator_email, f"New Response: {form.title}", body))
    if form.notifications.send_confirmation and form_session.respondent_email:
        body = _env.get_template("emails/submission_confirmation.txt").render(**context)
        messages.append((form_session.respondent_email, f"Submission received: {form.title}", body))
    return messages


class EmailNotifier:
    """Sends finalization mails over SMTP.

    Delivery is fire-and-forget: any failure is logged and swallowed so it
    can never undo or delay a session transition.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def send_email(self, to_email: str, subject: str, body: str) -> bool:
        cfg = self.settings
        if not cfg.smtp_host:
            logger.info("SMTP not configured, skipping mail to %s: %s", to_email, subject)
            return False
        try:
            msg = MIMEMultipart()
            msg["From"] = cfg.mail_from
            msg["To"] = to_email
            msg["Subject"] = subject
            msg.attach(MIMEText(body, "plain"))

            with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=10) as server:
                server.starttls()
                if cfg.smtp_user:
                    server.login(cfg.smtp_user, cfg.smtp_password or "")
                server.sendmail(cfg.mail_from, to_email, msg.as_string())
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("Error sending email to %s: %s", to_email, e)
            return False

    def session_finalized(self, form: FormSnapshot, form_session: FormSession) -> None:
        for to_email, subject, body in build_messages(form, form_session):
            self.send_email(to_email, subject, body)
