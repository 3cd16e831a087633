"""
Shared FastAPI dependencies.
"""

from fastapi import Request

from pricetracker.services.job_orchestrator import JobOrchestrator


def get_orchestrator(request: Request) -> JobOrchestrator:
    """The orchestrator the application was created with."""
    return request.app.state.orchestrator


__all__ = ["get_orchestrator"]
