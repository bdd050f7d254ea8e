from celery import Celery
from kombu import Queue

from app.core.config import settings

OUTBOX_QUEUE = "outbox"
WORKFLOWS_QUEUE = "workflows"

celery = Celery(
    "listings-worker",
    broker=settings.rabbitmq_url,
    backend=settings.redis_url,
    include=["worker.tasks"],
)

celery.conf.update(
    # at-least-once: a task is acked after it ran, and redelivered if the worker dies mid-stage
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_queues=(Queue(OUTBOX_QUEUE), Queue(WORKFLOWS_QUEUE)),
    task_default_queue=WORKFLOWS_QUEUE,
    task_routes={
        "worker.tasks.process_outbox_event": {"queue": OUTBOX_QUEUE},
        "worker.tasks.advance_execution": {"queue": WORKFLOWS_QUEUE},
    },
    # a stage holds its execution lease for this long; never outlive it
    task_time_limit=settings.stage_lease_seconds,
    result_expires=3600,
)
