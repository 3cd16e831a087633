"""
Source registry: owns scrape sources and their health policy.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pricetracker.core.config import settings
from pricetracker.core.exceptions import (
    DuplicateSourceError,
    InvalidInputError,
    UnknownSourceError,
)
from pricetracker.core.identity import Clock, IdFactory, random_ids, utcnow
from pricetracker.core.logging import get_logger
from pricetracker.core.url_utils import extract_domain, is_valid_url, normalize_url
from pricetracker.models.enums import STRUCTURAL_FAILURES, FailureType, JobType, SourceType
from pricetracker.models.scrape_source import ScrapeSource
from pricetracker.models.scraping import ScrapeConfig

logger = get_logger(__name__)


@dataclass(frozen=True)
class SourceOutcome:
    """Result of one extraction attempt against a source."""

    success: bool
    failure_type: Optional[FailureType] = None
    message: str = ""

    @classmethod
    def succeeded(cls) -> "SourceOutcome":
        return cls(success=True)

    @classmethod
    def failed(cls, failure_type: Union[FailureType, str], message: str = "") -> "SourceOutcome":
        return cls(success=False, failure_type=FailureType(failure_type), message=message)

    @property
    def is_structural(self) -> bool:
        return not self.success and self.failure_type in STRUCTURAL_FAILURES


class SourceRegistry:
    """Repository and health policy for scrape sources."""

    def __init__(self, id_factory: IdFactory = random_ids, clock: Clock = utcnow):
        self.id_factory = id_factory
        self.clock = clock

    async def register(
        self,
        url: str,
        db: AsyncSession,
        source_type: Union[SourceType, str] = SourceType.CUSTOM,
        config: Optional[Union[ScrapeConfig, Dict[str, Any]]] = None,
    ) -> ScrapeSource:
        """
        Register a new source.

        Args:
            url: Product page URL
            db: Database session
            source_type: ecommerce, marketplace, classified or custom
            config: Optional extraction recipe

        Returns:
            The new source (flushed, not committed)

        Raises:
            InvalidInputError: If the URL, type or recipe is malformed
            DuplicateSourceError: If the URL is already registered
        """
        if not is_valid_url(url):
            raise InvalidInputError(f"Invalid URL: {url!r}", field="url")

        try:
            source_type = SourceType(source_type)
        except ValueError:
            raise InvalidInputError(f"Unknown source type: {source_type!r}", field="sourceType")

        recipe = self._parse_config(config)
        recipe.success_rate = settings.SUCCESS_RATE_NEUTRAL

        normalized = normalize_url(url)
        if await self.get_by_url(normalized, db) is not None:
            raise DuplicateSourceError(normalized)

        now = self.clock()
        source = ScrapeSource(
            id=self.id_factory(),
            url=normalized,
            domain=extract_domain(normalized),
            source_type=source_type.value,
            scrape_config=recipe.to_storage(),
            is_active=True,
            needs_rediscovery=False,
            consecutive_failures=0,
            structural_failures=0,
            rediscovery_attempts=0,
            created_at=now,
            updated_at=now,
        )
        db.add(source)
        try:
            await db.flush()
        except IntegrityError:
            # Lost a race with a concurrent registration of the same URL
            await db.rollback()
            raise DuplicateSourceError(normalized)

        logger.info(
            "Source registered",
            extra={
                "source_id": str(source.id),
                "domain": source.domain,
                "source_type": source.source_type,
            },
        )
        return source

    async def get(self, source_id: UUID, db: AsyncSession) -> ScrapeSource:
        """
        Get source by ID.

        Raises:
            UnknownSourceError: If no source has this ID
        """
        source = await db.get(ScrapeSource, source_id)
        if source is None:
            raise UnknownSourceError(str(source_id))
        return source

    async def get_by_url(self, url: str, db: AsyncSession) -> Optional[ScrapeSource]:
        """Look a source up by URL (normalized before comparison)."""
        normalized = normalize_url(url) if is_valid_url(url) else url
        result = await db.execute(select(ScrapeSource).where(ScrapeSource.url == normalized))
        return result.scalar_one_or_none()

    async def list_sources(
        self,
        db: AsyncSession,
        active_only: bool = False,
        limit: Optional[int] = None,
    ) -> List[ScrapeSource]:
        """List sources, newest first."""
        query = select(ScrapeSource)
        if active_only:
            query = query.where(ScrapeSource.is_active.is_(True))
        query = query.order_by(ScrapeSource.created_at.desc(), ScrapeSource.id)
        if limit:
            query = query.limit(limit)

        result = await db.execute(query)
        return list(result.scalars().all())

    async def list_actionable(
        self,
        job_type: Union[JobType, str],
        db: AsyncSession,
        limit: Optional[int] = None,
    ) -> List[ScrapeSource]:
        """
        Sources that a job of the given type should act on.

        ``update``: active sources not awaiting rediscovery, stalest first
        (never-scraped sources lead). ``rediscovery``: active sources flagged
        for rediscovery.
        """
        job_type = JobType(job_type)

        if job_type == JobType.UPDATE:
            query = (
                select(ScrapeSource)
                .where(
                    ScrapeSource.is_active.is_(True),
                    ScrapeSource.needs_rediscovery.is_(False),
                )
                .order_by(
                    ScrapeSource.last_scraped_at.is_not(None),
                    ScrapeSource.last_scraped_at.asc(),
                    ScrapeSource.id,
                )
            )
        elif job_type == JobType.REDISCOVERY:
            query = (
                select(ScrapeSource)
                .where(
                    ScrapeSource.is_active.is_(True),
                    ScrapeSource.needs_rediscovery.is_(True),
                )
                .order_by(ScrapeSource.updated_at.asc(), ScrapeSource.id)
            )
        else:
            raise InvalidInputError(f"No actionable sources for job type {job_type.value}")

        if limit:
            query = query.limit(limit)

        result = await db.execute(query)
        return list(result.scalars().all())

    async def record_outcome(
        self,
        source_id: UUID,
        outcome: SourceOutcome,
        db: AsyncSession,
    ) -> ScrapeSource:
        """
        Fold one extraction outcome into the source's health fields.

        Success raises the rolling success rate and clears the rediscovery
        flag. Failure lowers the rate; a rate below the threshold or a run of
        structural failures flags rediscovery, and a source that keeps failing
        after its recipe was regenerated, or crosses the consecutive-failure
        threshold, is deactivated.
        """
        source = await self.get(source_id, db)
        now = self.clock()
        weight = settings.SUCCESS_RATE_WEIGHT

        config = dict(source.scrape_config or {})
        rate = float(config.get("success_rate", settings.SUCCESS_RATE_NEUTRAL))

        if outcome.success:
            rate += weight * (1.0 - rate)
            source.last_scraped_at = now
            source.needs_rediscovery = False
            source.consecutive_failures = 0
            source.structural_failures = 0
            source.rediscovery_attempts = 0
        else:
            rate -= weight * rate
            source.consecutive_failures += 1
            if outcome.is_structural:
                source.structural_failures += 1
            else:
                source.structural_failures = 0

            degraded = (
                rate < settings.REDISCOVERY_SUCCESS_RATE_THRESHOLD
                or source.structural_failures >= settings.STRUCTURAL_FAILURE_THRESHOLD
            )
            if degraded and not source.needs_rediscovery:
                source.needs_rediscovery = True
                logger.warning(
                    "Source flagged for rediscovery",
                    extra={
                        "source_id": str(source.id),
                        "success_rate": round(rate, 4),
                        "structural_failures": source.structural_failures,
                        "failure_type": outcome.failure_type.value if outcome.failure_type else None,
                    },
                )
                if source.rediscovery_attempts >= settings.MAX_REDISCOVERY_ATTEMPTS:
                    self._deactivate(source, "still failing after recipe regeneration")

            if (
                source.is_active
                and source.consecutive_failures >= settings.SOURCE_DEACTIVATION_THRESHOLD
            ):
                self._deactivate(source, "consecutive failure threshold reached")

        config["success_rate"] = round(rate, 4)
        config["failure_count"] = source.consecutive_failures
        source.scrape_config = config
        source.updated_at = now
        await db.flush()

        logger.debug(
            "Source outcome recorded",
            extra={
                "source_id": str(source.id),
                "success": outcome.success,
                "success_rate": config["success_rate"],
            },
        )
        return source

    async def update_config(
        self,
        source_id: UUID,
        new_config: Union[ScrapeConfig, Dict[str, Any]],
        db: AsyncSession,
        count_attempt: bool = False,
    ) -> ScrapeSource:
        """
        Replace a source's recipe.

        The new recipe is unproven: the success rate drops back to the
        neutral prior and the rediscovery flag and failure counters reset.

        Args:
            source_id: Source to update
            new_config: Replacement recipe
            db: Database session
            count_attempt: Count this as a regenerated recipe toward
                MAX_REDISCOVERY_ATTEMPTS (manual edits do not)
        """
        source = await self.get(source_id, db)
        now = self.clock()

        recipe = self._parse_config(new_config)
        recipe.last_generated = now
        recipe.success_rate = settings.SUCCESS_RATE_NEUTRAL
        recipe.failure_count = 0

        source.scrape_config = recipe.to_storage()
        source.needs_rediscovery = False
        source.consecutive_failures = 0
        source.structural_failures = 0
        if count_attempt:
            source.rediscovery_attempts += 1
        source.updated_at = now
        await db.flush()

        logger.info(
            "Source recipe updated",
            extra={
                "source_id": str(source.id),
                "script_type": recipe.script_type,
                "rediscovery_attempts": source.rediscovery_attempts,
            },
        )
        return source

    async def record_rediscovery_failure(self, source_id: UUID, db: AsyncSession) -> ScrapeSource:
        """Count a failed recipe regeneration; retire the source after too many."""
        source = await self.get(source_id, db)
        source.rediscovery_attempts += 1
        source.needs_rediscovery = True
        source.updated_at = self.clock()

        if source.is_active and source.rediscovery_attempts >= settings.MAX_REDISCOVERY_ATTEMPTS:
            self._deactivate(source, "rediscovery failed repeatedly")

        await db.flush()
        return source

    async def set_active(self, source_id: UUID, is_active: bool, db: AsyncSession) -> ScrapeSource:
        """Manually activate or retire a source."""
        source = await self.get(source_id, db)
        source.is_active = is_active
        if is_active:
            source.consecutive_failures = 0
            source.rediscovery_attempts = 0
        source.updated_at = self.clock()
        await db.flush()

        logger.info(
            "Source activity changed",
            extra={"source_id": str(source.id), "is_active": is_active},
        )
        return source

    def _deactivate(self, source: ScrapeSource, reason: str) -> None:
        source.is_active = False
        logger.warning(
            "Source deactivated",
            extra={
                "source_id": str(source.id),
                "reason": reason,
                "consecutive_failures": source.consecutive_failures,
                "rediscovery_attempts": source.rediscovery_attempts,
            },
        )

    @staticmethod
    def _parse_config(config: Optional[Union[ScrapeConfig, Dict[str, Any]]]) -> ScrapeConfig:
        if isinstance(config, ScrapeConfig):
            return config.model_copy(deep=True)
        try:
            return ScrapeConfig.model_validate(config or {})
        except PydanticValidationError as e:
            raise InvalidInputError(f"Invalid scrape config: {e.errors()[0]['msg']}", field="scrapeConfig")


# Global instance
source_registry = SourceRegistry()
