"""
Inngest functions for price update jobs.

A cron sweep refreshes every actionable source; an event lets callers queue
an update for specific sources without holding an HTTP request open.
"""

from typing import Any, Dict, List, Optional

import inngest

from pricetracker.core.config import settings
from pricetracker.core.inngest import UPDATE_REQUESTED, inngest_client
from pricetracker.core.logging import get_logger
from pricetracker.models.scrape_job import ScrapeJob
from pricetracker.services.job_orchestrator import build_orchestrator

logger = get_logger(__name__)


def summarize_job(job: ScrapeJob) -> Dict[str, Any]:
    """JSON-safe job summary returned from steps."""
    result = job.result or {}
    return {
        "job_id": str(job.id),
        "status": job.status,
        "updated": result.get("updated", 0),
        "failed": result.get("failed", 0),
        "skipped": result.get("skipped", 0),
        "error": result.get("error"),
    }


async def run_update(source_ids: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Run one update job.

    Args:
        source_ids: Sources to update; all actionable sources when omitted

    Returns:
        Job summary
    """
    orchestrator = build_orchestrator()
    if source_ids:
        job = await orchestrator.dispatch_update(source_ids=source_ids)
    else:
        job = await orchestrator.dispatch_update(all_sources=True)

    summary = summarize_job(job)
    logger.info("Update job finished", extra=summary)
    return summary


@inngest_client.create_function(
    fn_id="scheduled-update-sweep",
    name="Scheduled price update sweep",
    trigger=inngest.TriggerCron(cron=settings.UPDATE_SWEEP_CRON),
    retries=1,
)
async def scheduled_update_function(ctx: inngest.Context, step: inngest.Step) -> Dict[str, Any]:
    """Refresh prices for every active source, stalest first."""

    async def update_all() -> Dict[str, Any]:
        return await run_update()

    return await step.run("update-all-sources", update_all)


@inngest_client.create_function(
    fn_id="requested-update",
    name="Requested price update",
    trigger=inngest.TriggerEvent(event=UPDATE_REQUESTED),
    retries=1,
)
async def requested_update_function(ctx: inngest.Context, step: inngest.Step) -> Dict[str, Any]:
    """Update the sources named in the event (``source_ids``), or all of them."""
    source_ids = ctx.event.data.get("source_ids") or None

    async def update_requested() -> Dict[str, Any]:
        return await run_update(source_ids)

    return await step.run("update-requested-sources", update_requested)


# Export
__all__ = [
    "requested_update_function",
    "run_update",
    "scheduled_update_function",
    "summarize_job",
]
