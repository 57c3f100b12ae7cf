from celery import Celery
from app.core.config import settings

celery = Celery(
    "marketplace-worker",
    broker=settings.rabbitmq_url,
    backend=settings.redis_url,
    include=["worker.tasks"],
)

celery.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_routes={
        "worker.tasks.expire_reservations": {"queue": "maintenance"},
    },
    # fixed-cadence trigger for the reservation expiry sweep
    beat_schedule={
        "expire-reservations": {
            "task": "worker.tasks.expire_reservations",
            "schedule": float(settings.reservation_sweep_interval_seconds),
            "options": {"queue": "maintenance", "expires": float(settings.reservation_sweep_interval_seconds)},
        },
    },
)
