import logging

from celery import Celery
from celery.schedules import crontab

from core.settings import settings
from tasks.complete_due_bookings_tasks import create_complete_due_bookings_task
from tasks.reconcile_payments_tasks import create_reconcile_payments_task

logger = logging.getLogger(__name__)


class CeleryManager:
    def __init__(self):
        self.REDIS_URL = settings.CELERY_REDIS_URL

        self.app = Celery(
            "lifecycle_tasks",
            broker=self.REDIS_URL,
            backend=self.REDIS_URL,
            include=[
                "tasks.reconcile_payments_tasks",
                "tasks.complete_due_bookings_tasks",
            ],
        )

        self.app.conf.update(
            task_serializer="json",
            task_track_started=True,
            accept_content=["json"],
            result_serializer="json",
            timezone="UTC",
            enable_utc=True,
            broker_connection_retry=True,
            broker_connection_retry_on_startup=True,
            broker_connection_max_retries=None,
            task_acks_late=False,
            worker_cancel_long_running_tasks_on_connection_loss=False,
            redis_socket_keepalive=True,
            redis_socket_timeout=30,
            broker_transport_options={"visibility_timeout": 3600},
            worker_hijack_root_logger=False,
        )

        ReconcilePaymentsTask = create_reconcile_payments_task(self.app)
        self.app.register_task(ReconcilePaymentsTask())

        CompleteDueBookingsTask = create_complete_due_bookings_task(self.app)
        self.app.register_task(CompleteDueBookingsTask())

        self.app.conf.beat_schedule = {
            "reconcile-stale-payments": {
                "task": "reconcile_stale_payments",
                "schedule": crontab(minute="*/10"),
            },
            "complete-due-bookings-daily": {
                "task": "complete_due_bookings",
                "schedule": crontab(hour=1, minute=0),
            },
        }

    def connect(self):
        logger.info("Connecting to Celery broker: %s", self.REDIS_URL)
        try:
            inspect = self.app.control.inspect()
            if inspect.ping():
                logger.info("Celery connected successfully.")
            else:
                logger.warning("Celery connected but no workers found.")
        except Exception as e:
            logger.error("Celery connection failed: %s", e)

    def delay(self, func_name: str, *args, **kwargs):
        return self.app.send_task(func_name, args=args, kwargs=kwargs)


celery_app = CeleryManager()
app = celery_app.app
