"""
Inngest functions for recipe rediscovery.
"""

from typing import Any, Dict, List

import inngest

from pricetracker.core.config import settings
from pricetracker.core.inngest import REDISCOVERY_REQUESTED, inngest_client
from pricetracker.core.logging import get_logger
from pricetracker.services.inngest_functions.scheduled_update import summarize_job
from pricetracker.services.job_orchestrator import build_orchestrator

logger = get_logger(__name__)


async def run_rediscovery(source_id: str) -> Dict[str, Any]:
    """Regenerate one source's recipe and return the job summary."""
    job = await build_orchestrator().dispatch_rediscovery(source_id)
    summary = summarize_job(job)
    summary["script_generated"] = bool((job.result or {}).get("scriptGenerated"))
    return summary


async def run_pending_rediscoveries() -> List[Dict[str, Any]]:
    """Regenerate recipes for every flagged source."""
    jobs = await build_orchestrator().dispatch_pending_rediscoveries()
    logger.info("Rediscovery sweep finished", extra={"job_count": len(jobs)})
    return [summarize_job(job) for job in jobs]


@inngest_client.create_function(
    fn_id="scheduled-rediscovery-sweep",
    name="Scheduled rediscovery sweep",
    trigger=inngest.TriggerCron(cron=settings.REDISCOVERY_SWEEP_CRON),
    retries=1,
)
async def scheduled_rediscovery_function(ctx: inngest.Context, step: inngest.Step) -> Dict[str, Any]:
    """Regenerate recipes for sources flagged as needing rediscovery."""

    async def sweep() -> List[Dict[str, Any]]:
        return await run_pending_rediscoveries()

    results = await step.run("rediscover-flagged-sources", sweep)
    return {"sources_processed": len(results), "results": results}


@inngest_client.create_function(
    fn_id="requested-rediscovery",
    name="Requested source rediscovery",
    trigger=inngest.TriggerEvent(event=REDISCOVERY_REQUESTED),
    retries=2,
)
async def requested_rediscovery_function(ctx: inngest.Context, step: inngest.Step) -> Dict[str, Any]:
    """Regenerate the recipe of the source in ``source_id``."""
    source_id = str(ctx.event.data["source_id"])

    async def rediscover() -> Dict[str, Any]:
        return await run_rediscovery(source_id)

    return await step.run(f"rediscover-{source_id}", rediscover)


# Export
__all__ = [
    "requested_rediscovery_function",
    "run_pending_rediscoveries",
    "run_rediscovery",
    "scheduled_rediscovery_function",
]
