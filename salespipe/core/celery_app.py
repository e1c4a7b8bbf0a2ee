from celery import Celery

from salespipe.context import correlation_scope
from salespipe.core.config import get_settings
from salespipe.core.database import SessionLocal, get_engine
from salespipe.pipeline.stale import stale_pipeline_scanner

settings = get_settings()

celery_app = Celery("salespipe", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.beat_schedule = {
    "scan-stale-pipeline": {
        "task": "salespipe.tasks.scan_stale_pipeline",
        "schedule": 24 * 60 * 60,
    },
}


@celery_app.task(name="salespipe.tasks.scan_stale_pipeline")
def scan_stale_pipeline_task() -> int:
    if not get_settings().stale_scan_enabled:
        return 0
    with correlation_scope(), SessionLocal(bind=get_engine()) as session:
        return len(stale_pipeline_scanner.scan(session))
