import logging

from fastapi import APIRouter

from evsubsidy.schemas.runs import ScrapeRunRequest

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/scrape-runs", status_code=202)
async def create_scrape_run(req: ScrapeRunRequest):
    # Launch celery task
    try:
        from evsubsidy.jobs.celery_app import run_subsidy_scrape_task
        task = run_subsidy_scrape_task.delay(req.kind)
    except Exception as e:
        logger.error(f"Failed to launch scrape task: {e}")
        return {"kind": req.kind, "status": "FAILED", "error": f"Failed to launch task: {e}"}

    return {"kind": req.kind, "status": "QUEUED", "celery_task_id": task.id}
