from celery import Celery
from celery.signals import setup_logging as celery_setup_logging
from celery.signals import worker_init

from app.core.config import settings
from app.core.logging import setup_logging
from app.db.session import init_db

celery_app = Celery("paper2video", broker=settings.redis_dsn, backend=settings.redis_dsn, include=["app.workers.tasks"])
celery_app.conf.update(
    task_track_started=True,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
)


@celery_setup_logging.connect
def _configure_worker_logging(**_kwargs):
    setup_logging()


@worker_init.connect
def _create_tables(**_kwargs):
    init_db()
