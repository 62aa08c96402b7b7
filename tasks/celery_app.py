"""
Celery application for OrderBridge import workers.

Imports run on their own queue, one at a time per worker process: an
import holds a working snapshot of the organization's records in memory
and must not share a worker slot with another import.
"""

from celery import Celery
from kombu import Exchange, Queue

from api.config import settings

IMPORT_QUEUE = 'import'

celery_app = Celery(
    'orderbridge',
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=['tasks.import_tasks']
)

celery_app.conf.update(
    task_serializer='json',
    result_serializer='json',
    accept_content=['json'],
    timezone='UTC',
    enable_utc=True,

    task_track_started=True,
    task_time_limit=3600,
    task_soft_time_limit=3300,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=100,

    # Orders are not idempotent: a half-run import is never redelivered
    task_acks_late=False,

    result_expires=settings.PROGRESS_CACHE_EXPIRY,
    worker_send_task_events=True,

    task_default_queue='default',
    task_queues=(
        Queue('default', Exchange('default'), routing_key='default'),
        Queue(IMPORT_QUEUE, Exchange(IMPORT_QUEUE), routing_key='import.#'),
    ),
    task_routes={
        'tasks.import_tasks.import_order_file': {
            'queue': IMPORT_QUEUE, 'routing_key': 'import.orders'
        },
    },
    beat_schedule={
        'cleanup-old-jobs': {
            'task': 'tasks.import_tasks.cleanup_old_jobs',
            'schedule': 86400.0,
        },
    },
)


if __name__ == '__main__':
    celery_app.start()
