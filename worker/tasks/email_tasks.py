"""
Email background tasks.
"""
from typing import Any, Dict, List
import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from worker.celery_app import celery_app
from disaster_training.config import settings

logger = logging.getLogger(__name__)


def build_reminder(training: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, str]:
    """Subject and body of a training reminder email."""
    location = training.get("location") or {}
    subject = f"Reminder: {training['title']} starts soon"
    body = (
        f"Dear {user.get('name') or 'participant'},\n\n"
        f"This is a reminder that you are registered for \"{training['title']}\" "
        f"({training['theme']}).\n\n"
        f"Date: {training['date']}\n"
        f"Venue: {location.get('address') or training.get('district')}, {training['state']}\n"
        f"Trainer: {(training.get('trainer') or {}).get('name')}\n\n"
        "Please arrive on time.\n"
    )
    return {"subject": subject, "body": body}


@celery_app.task(bind=True, name="worker.tasks.email_tasks.send_email")
def send_email(self, to_email: str, subject: str, body: str, html_body: str = None):
    """
    Send an email asynchronously.
    """
    logger.info(f"Sending email to {to_email}")

    try:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = settings.SMTP_FROM_EMAIL
        msg["To"] = to_email

        msg.attach(MIMEText(body, "plain"))
        if html_body:
            msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as server:
            if settings.SMTP_TLS:
                server.starttls()
            if settings.SMTP_USER:
                server.login(settings.SMTP_USER, settings.SMTP_PASS)
            server.sendmail(settings.SMTP_FROM_EMAIL, to_email, msg.as_string())

        logger.info(f"Email sent to {to_email}")
        return {"success": True, "to": to_email}

    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Email send error: {e}")
        raise self.retry(exc=e, countdown=300, max_retries=3)


async def collect_due_reminders(lead_hours: int) -> List[Dict[str, Any]]:
    """
    Queue one reminder per registrant of every training starting within
    lead_hours, then flag those trainings so they are not reminded twice.
    """
    from disaster_training.database import engine, session_scope
    from disaster_training.models.roles import RegistrationStatus
    from disaster_training.services.training_service import TrainingService

    try:
        async with session_scope() as db:
            trainings = await TrainingService.due_reminders(db, lead_hours)
            messages = []
            for training in trainings:
                data = training.to_dict(include_registrations=False)
                for registration in training.registrations:
                    if registration.status == RegistrationStatus.CANCELLED.value or registration.user is None:
                        continue
                    email = build_reminder(data, {"name": registration.user.name})
                    messages.append({"to_email": registration.user.email, **email})
            await TrainingService.mark_reminders_sent(db, [t.id for t in trainings])
            logger.info(f"{len(trainings)} training(s) due for reminders, {len(messages)} email(s)")
            return messages
    finally:
        # Each task run gets a fresh event loop; pooled connections cannot outlive it
        await engine.dispose()


@celery_app.task(name="worker.tasks.email_tasks.send_training_reminders")
def send_training_reminders():
    """
    Periodic: email registrants of approved trainings starting soon.
    """
    messages = asyncio.run(collect_due_reminders(settings.REMINDER_LEAD_HOURS))
    for message in messages:
        send_email.delay(**message)
    return {"queued": len(messages)}
