from celery import Celery
from celery.schedules import crontab

from evsubsidy.config import get_settings

settings = get_settings()

celery_app = Celery(
    "evsubsidy",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="Asia/Seoul",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "daily-subsidy-scrape": {
            "task": "run_subsidy_scrape_task",
            "schedule": crontab(hour=settings.SCRAPE_CRON_HOUR, minute=0),
            "args": ("all",),
        },
    },
)


@celery_app.task(bind=True, name="run_subsidy_scrape_task", max_retries=2)
def run_subsidy_scrape_task(self, kind: str = "all"):
    """Execute the scrape pipeline for one table kind ("quota", "price" or "all")."""
    from evsubsidy.jobs.scrape_pipeline import execute_scrape_pipeline
    summary = execute_scrape_pipeline(kind)
    return summary.model_dump(mode="json")
