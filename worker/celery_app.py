"""
Celery worker for the training platform.

Queues:
- email: outbound mail (registration reminders)

Beat:
- send-training-reminders: top of every hour, mails registrants of
  approved trainings starting within REMINDER_LEAD_HOURS
"""
from celery import Celery
from celery.schedules import crontab

from disaster_training.config import settings

celery_app = Celery(
    "disaster_training_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["worker.tasks.email_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=86400,
    timezone="UTC",
    enable_utc=True,
    task_time_limit=300,
    worker_prefetch_multiplier=1,
    # A reminder run marks trainings as reminded; ack only after it finished
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_queue="email",
    task_routes={
        "worker.tasks.email_tasks.*": {"queue": "email"},
    },
    beat_schedule={
        "send-training-reminders": {
            "task": "worker.tasks.email_tasks.send_training_reminders",
            "schedule": crontab(minute=0),
        },
    },
)

if __name__ == "__main__":
    celery_app.start()
