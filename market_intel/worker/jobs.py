"""Scheduled job bodies.

Each job guards itself with an ``is_running`` flag: a run that overlaps a
still-running previous run is skipped and logged, never queued. Every run
that does start leaves a JobExecution row behind.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from market_intel.config import settings
from market_intel.db.models import (
    Competitor,
    JobExecution,
    MarketMetric,
    MarketSnapshot,
    SystemMetric,
)
from market_intel.db.session import AsyncSessionLocal
from market_intel.ingest.competitor_scraper import scrape_queue
from market_intel.ingest.scrape_queue import ScrapeQueue
from market_intel.market.analysis import MarketAnalysisService, market_analysis_service
from market_intel.market.evaluation import VinEvaluationService
from market_intel import metrics
from market_intel.logging_config import get_logger

logger = logging.getLogger(__name__)


class ScheduledJob:
    """Base class for cron-driven jobs that can also be run on demand."""

    name: str = ""
    description: str = ""

    def __init__(
        self,
        cron: str,
        enabled: bool = True,
        session_factory: async_sessionmaker = AsyncSessionLocal,
    ):
        self.cron = cron
        self.enabled = enabled
        self.session_factory = session_factory
        self.is_running = False
        self.last_run: Optional[datetime] = None
        self.last_result: Optional[dict] = None

    async def execute(self) -> dict:
        """Job body. May set ``status`` to 'partial' in the returned dict."""
        raise NotImplementedError

    async def run(self, triggered_by: str = "scheduled") -> dict:
        """
        Run the job once unless it is already running.

        Failures are recorded, not raised, so a scheduler tick never dies.

        Args:
            triggered_by: 'scheduled' or 'manual'

        Returns:
            Result dict with ``success`` and ``duration_ms``
        """
        if self.is_running:
            logger.warning(f"Job {self.name} already running, skipping")
            return {"success": False, "message": "Job already running"}

        log = get_logger(__name__, job=self.name, triggered_by=triggered_by)
        self.is_running = True
        start = time.monotonic()
        started_at = datetime.utcnow()
        execution_id = await self._start_execution(started_at, triggered_by)
        log.info(f"Job {self.name} started ({triggered_by})")

        error_message = None
        try:
            result = await self.execute()
            status = result.pop("status", "success")
        except Exception as e:
            log.error(f"Job {self.name} failed: {e}", exc_info=True)
            result = {"error": str(e)}
            status = "failed"
            error_message = str(e)
        finally:
            self.is_running = False

        duration_ms = int((time.monotonic() - start) * 1000)
        self.last_run = datetime.utcnow()
        self.last_result = {
            "success": status != "failed",
            "status": status,
            **result,
            "duration_ms": duration_ms,
            "timestamp": self.last_run.isoformat(),
        }
        await self._finish_execution(execution_id, status, duration_ms, result, error_message)
        metrics.record_job_run(self.name, status)

        log.info(f"Job {self.name} finished with status {status} in {duration_ms}ms")
        return self.last_result

    def status(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "schedule": self.cron,
            "is_running": self.is_running,
            "last_run": self.last_run,
            "last_result": self.last_result,
        }

    async def _start_execution(self, started_at: datetime, triggered_by: str) -> Optional[int]:
        try:
            async with self.session_factory() as db:
                execution = JobExecution(
                    job_name=self.name,
                    status="running",
                    started_at=started_at,
                    triggered_by=triggered_by,
                )
                db.add(execution)
                await db.commit()
                return execution.id
        except Exception as e:
            logger.error(f"Failed to record start of job {self.name}: {e}")
            return None

    async def _finish_execution(
        self,
        execution_id: Optional[int],
        status: str,
        duration_ms: int,
        result: dict,
        error_message: Optional[str],
    ):
        if execution_id is None:
            return
        try:
            async with self.session_factory() as db:
                execution = await db.get(JobExecution, execution_id)
                if execution is None:
                    return
                execution.status = status
                execution.completed_at = datetime.utcnow()
                execution.duration_ms = duration_ms
                execution.result_data = _json_safe(result)
                execution.error_message = error_message
                await db.commit()
        except Exception as e:
            logger.error(f"Failed to record completion of job {self.name}: {e}")


def _json_safe(value):
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


class CompetitorScrapeJob(ScheduledJob):
    """Scrape every active competitor through the scrape queue, one at a time."""

    name = "competitor_scraper"
    description = "Scrape active competitor inventories"

    def __init__(self, queue: Optional[ScrapeQueue] = None, **kwargs):
        kwargs.setdefault("cron", settings.competitor_scrape_cron)
        kwargs.setdefault("enabled", settings.competitor_scrape_enabled)
        super().__init__(**kwargs)
        self.queue = queue or scrape_queue

    async def execute(self) -> dict:
        async with self.session_factory() as db:
            competitors = (
                await db.execute(
                    select(Competitor.id, Competitor.name)
                    .where(Competitor.active == True)  # noqa: E712
                    .order_by(Competitor.id)
                )
            ).all()

        logger.info(f"Scraping {len(competitors)} active competitors")
        succeeded, failed = [], []

        for index, (competitor_id, name) in enumerate(competitors):
            try:
                result = await self.queue.submit(competitor_id)
                succeeded.append({"competitor_id": competitor_id, "name": name, **result})
            except Exception as e:
                logger.error(f"Competitor {name} ({competitor_id}) scrape failed: {e}")
                failed.append({"competitor_id": competitor_id, "name": name, "error": str(e)})

            if index < len(competitors) - 1:
                await asyncio.sleep(settings.scrape_competitor_delay_seconds)

        if failed and not succeeded:
            status = "failed"
        elif failed:
            status = "partial"
        else:
            status = "success"

        return {
            "status": status,
            "total": len(competitors),
            "succeeded": len(succeeded),
            "failed": len(failed),
            "results": succeeded,
            "errors": failed,
        }


class MarketResearchJob(ScheduledJob):
    """Benchmark all available inventory against the market."""

    name = "market_research"
    description = "Analyze owned inventory against market listings"

    def __init__(self, service: Optional[MarketAnalysisService] = None, **kwargs):
        kwargs.setdefault("cron", settings.market_research_cron)
        kwargs.setdefault("enabled", settings.market_research_enabled)
        super().__init__(**kwargs)
        self.service = service or market_analysis_service

    async def execute(self) -> dict:
        summary = await self.service.analyze_all()
        status = "partial" if summary["failed"] and summary["success"] else "success"
        if summary["failed"] and not summary["success"]:
            status = "failed"
        return {
            "status": status,
            "total": summary["total"],
            "succeeded": summary["success"],
            "failed": summary["failed"],
        }


class MarketCleanupJob(ScheduledJob):
    """Drop old market snapshots and expired VIN evaluation cache entries."""

    name = "market_cleanup"
    description = "Delete expired market snapshots and VIN cache entries"

    def __init__(self, **kwargs):
        kwargs.setdefault("cron", settings.market_cleanup_cron)
        kwargs.setdefault("enabled", settings.market_cleanup_enabled)
        super().__init__(**kwargs)

    async def execute(self) -> dict:
        cutoff = datetime.utcnow() - timedelta(days=settings.snapshot_retention_days)

        async with self.session_factory() as db:
            expired = select(MarketSnapshot.id).where(MarketSnapshot.snapshot_date < cutoff)
            await db.execute(delete(MarketMetric).where(MarketMetric.snapshot_id.in_(expired)))
            result = await db.execute(
                delete(MarketSnapshot).where(MarketSnapshot.snapshot_date < cutoff)
            )
            await db.commit()
            snapshots_deleted = result.rowcount

            cache_purged = await VinEvaluationService(db).purge_expired()

        logger.info(
            f"Market cleanup removed {snapshots_deleted} snapshots older than "
            f"{settings.snapshot_retention_days} days and {cache_purged} VIN cache entries"
        )
        return {
            "snapshots_deleted": snapshots_deleted,
            "vin_cache_purged": cache_purged,
            "cutoff": cutoff.isoformat(),
        }


class StorageMonitoringJob(ScheduledJob):
    """Check database size against the storage thresholds."""

    name = "storage_monitoring"
    description = "Monitor database storage usage"

    def __init__(self, **kwargs):
        kwargs.setdefault("cron", settings.storage_monitoring_cron)
        kwargs.setdefault("enabled", settings.storage_monitoring_enabled)
        super().__init__(**kwargs)

    async def execute(self) -> dict:
        async with self.session_factory() as db:
            size_mb, tables = await self._database_size(db)
            level = storage_level(size_mb)
            percent_used = round(size_mb / settings.storage_max_mb * 100, 2)

            db.add(
                SystemMetric(
                    metric_type="storage_usage",
                    metric_name="database_size",
                    metric_value=size_mb,
                    metric_unit="MB",
                    metric_data={
                        "status": level,
                        "percent_used": percent_used,
                        "top_tables": tables[:5],
                    },
                )
            )
            await db.commit()

        metrics.database_size_mb.set(size_mb)
        remaining = round(settings.storage_max_mb - size_mb, 2)
        if level == "critical":
            logger.error(
                f"CRITICAL: database size {size_mb}MB exceeds {settings.storage_critical_mb}MB "
                f"({remaining}MB remaining)"
            )
        elif level == "warning":
            logger.warning(
                f"Database size {size_mb}MB exceeds {settings.storage_warning_mb}MB "
                f"({remaining}MB remaining)"
            )
        else:
            logger.info(f"Database size {size_mb}MB ({percent_used}% used)")

        return {
            "total_size_mb": size_mb,
            "percent_used": percent_used,
            "storage_status": level,
            "top_tables": tables[:5],
        }

    @staticmethod
    async def _database_size(db: AsyncSession) -> tuple[float, list[dict]]:
        """Total size in MB plus the largest tables, largest first."""
        if db.bind.dialect.name == "postgresql":
            total = (await db.execute(text("SELECT pg_database_size(current_database())"))).scalar()
            rows = await db.execute(
                text(
                    "SELECT relname, pg_total_relation_size(relid) AS size "
                    "FROM pg_catalog.pg_statio_user_tables ORDER BY size DESC LIMIT 10"
                )
            )
            tables = [
                {"table": name, "size_mb": round(size / 1024 / 1024, 2)} for name, size in rows.all()
            ]
        else:
            page_count = (await db.execute(text("PRAGMA page_count"))).scalar() or 0
            page_size = (await db.execute(text("PRAGMA page_size"))).scalar() or 0
            total = page_count * page_size
            tables = []
        return round((total or 0) / 1024 / 1024, 2), tables


def storage_level(size_mb: float) -> str:
    if size_mb >= settings.storage_critical_mb:
        return "critical"
    if size_mb >= settings.storage_warning_mb:
        return "warning"
    return "healthy"
