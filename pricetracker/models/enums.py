"""
Enumerations shared by ORM models, services and API schemas.
"""

from enum import Enum


class SourceType(str, Enum):
    """Kind of site a source points at."""

    ECOMMERCE = "ecommerce"
    MARKETPLACE = "marketplace"
    CLASSIFIED = "classified"
    CUSTOM = "custom"


class JobStatus(str, Enum):
    """Scrape job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobType(str, Enum):
    """Kinds of scrape job."""

    DISCOVERY = "discovery"
    UPDATE = "update"
    REDISCOVERY = "rediscovery"


class FailureType(str, Enum):
    """Typed extraction failures reported by extractors."""

    SELECTOR_NOT_FOUND = "selector_not_found"
    TIMEOUT = "timeout"
    BLOCKED = "blocked"
    CAPTCHA = "captcha"
    DATA_VALIDATION = "data_validation"
    NETWORK_ERROR = "network_error"


# Failures that point at a changed page structure rather than a transient problem
STRUCTURAL_FAILURES = frozenset({FailureType.SELECTOR_NOT_FOUND, FailureType.DATA_VALIDATION})

# Forward-only job state machine
JOB_TRANSITIONS = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}
