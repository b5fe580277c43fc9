"""Competitor scrape orchestration: fetch, validate, reconcile, record health."""

import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from market_intel.db.models import Competitor, CompetitorInventory, CompetitorMetrics
from market_intel.db.session import AsyncSessionLocal
from market_intel.errors import NotFoundError, ScrapeError, classify_error
from market_intel.ingest.fetch_strategies import CompetitorFetcher, FetchStrategy
from market_intel.ingest.reconciler import InventoryReconciler, ReconcileResult, ensure_valid
from market_intel.ingest.scrape_queue import ScrapeQueue
from market_intel import metrics

logger = logging.getLogger(__name__)


class CompetitorScraper:
    """Runs one competitor scrape end to end.

    Every attempt stamps ``last_scraped_at``; failures are recorded on the
    competitor row (message + error kind) and re-raised to the queue caller.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        fetcher: Optional[CompetitorFetcher] = None,
    ):
        self.session_factory = session_factory
        self.fetcher = fetcher or CompetitorFetcher()

    async def scrape(self, competitor_id: int) -> dict:
        """Scrape a competitor and reconcile its stored inventory.

        Returns:
            Dict with added/updated/sold/errors counts, strategy and platform
        """
        start = time.monotonic()

        async with self.session_factory() as db:
            competitor = await db.get(Competitor, competitor_id)
            if competitor is None:
                raise NotFoundError(f"Competitor {competitor_id} not found")

            now = datetime.utcnow()
            competitor.last_scraped_at = now
            await db.commit()
            logger.info(f"Scraping competitor {competitor.name} ({competitor.inventory_url})")

            async def persist_escalation(error: ScrapeError):
                competitor.use_headless = True
                competitor.scrape_error = error.message
                competitor.scrape_error_type = error.kind.value
                await db.commit()
                logger.info(f"Competitor {competitor.name} switched to headless mode ({error.kind.value})")

            strategy = FetchStrategy.HEADLESS if competitor.use_headless else FetchStrategy.LIGHT
            try:
                outcome = await self.fetcher.fetch(
                    competitor.inventory_url,
                    platform_type=competitor.platform_type,
                    use_headless=competitor.use_headless,
                    on_escalate=persist_escalation,
                )
                strategy = outcome.strategy
                ensure_valid(outcome.vehicles)
                result = await InventoryReconciler(db).reconcile(competitor_id, outcome.vehicles, now=now)
            except Exception as e:
                await db.rollback()
                await self._record_failure(db, competitor_id, e)
                metrics.record_scrape(strategy.value, "failed", time.monotonic() - start)
                metrics.record_scrape_error(classify_error(e).value)
                raise

            competitor.last_successful_scrape_at = datetime.utcnow()
            if not outcome.escalated:
                competitor.scrape_error = None
                competitor.scrape_error_type = None
            await self._record_daily_metrics(db, competitor_id, result, now)
            await db.commit()

        duration = time.monotonic() - start
        metrics.record_scrape(outcome.strategy.value, "success", duration)
        metrics.record_reconciliation(result.added, result.updated, result.sold, result.errors)
        logger.info(
            f"Scrape complete for competitor {competitor_id} in {duration:.1f}s: "
            f"{len(outcome.vehicles)} vehicles via {outcome.strategy.value} ({outcome.platform})"
        )

        return {
            **result.to_dict(),
            "vehicles_found": len(outcome.vehicles),
            "strategy": outcome.strategy.value,
            "platform": outcome.platform,
            "escalated": outcome.escalated,
        }

    async def _record_failure(self, db: AsyncSession, competitor_id: int, error: Exception):
        competitor = await db.get(Competitor, competitor_id)
        if competitor is None:
            return
        competitor.scrape_error = str(error)[:2000]
        competitor.scrape_error_type = classify_error(error).value
        await db.commit()
        logger.error(
            f"Scrape failed for competitor {competitor.name}: "
            f"[{competitor.scrape_error_type}] {competitor.scrape_error}"
        )

    async def _record_daily_metrics(
        self, db: AsyncSession, competitor_id: int, result: ReconcileResult, now: datetime
    ):
        """Upsert today's rollup row for the competitor."""
        today = now.date()
        active_count, avg_price = (
            await db.execute(
                select(func.count(CompetitorInventory.id), func.avg(CompetitorInventory.current_price)).where(
                    CompetitorInventory.competitor_id == competitor_id,
                    CompetitorInventory.status == "active",
                )
            )
        ).one()
        avg_dom = (
            await db.execute(
                select(func.avg(CompetitorInventory.days_on_market)).where(
                    CompetitorInventory.competitor_id == competitor_id,
                    CompetitorInventory.status == "sold",
                    CompetitorInventory.sold_at == now,
                )
            )
        ).scalar()

        row = (
            await db.execute(
                select(CompetitorMetrics).where(
                    CompetitorMetrics.competitor_id == competitor_id,
                    CompetitorMetrics.metric_date == today,
                )
            )
        ).scalar_one_or_none()
        if row is None:
            row = CompetitorMetrics(competitor_id=competitor_id, metric_date=today)
            db.add(row)
            row.added_count = 0
            row.updated_count = 0
            row.sold_count = 0

        row.active_count = active_count or 0
        row.added_count += result.added
        row.updated_count += result.updated
        row.sold_count += result.sold
        row.avg_price = Decimal(str(round(float(avg_price), 2))) if avg_price is not None else None
        row.avg_days_on_market = float(avg_dom) if avg_dom is not None else None


competitor_scraper = CompetitorScraper()
scrape_queue = ScrapeQueue(handler=competitor_scraper.scrape)
