"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from market_intel.config import settings
from market_intel.db.session import engine
from market_intel.db.models import Base
from market_intel.errors import ListingsAPIError, MarketIntelError, NotFoundError
from market_intel.ingest.competitor_scraper import competitor_scraper, scrape_queue
from market_intel.market.listings_client import listings_client
from market_intel.worker.scheduler import job_scheduler
from market_intel.api.routes import alerts, competitors, evaluation, jobs, market
from market_intel import metrics

# Configure structured logging
from market_intel.logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting Dealer Market Intelligence...")

    # Initialize database
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    scrape_queue.start()
    job_scheduler.start()
    logger.info("Scheduler started")

    yield

    # Shutdown
    logger.info("Shutting down...")

    job_scheduler.stop()
    await scrape_queue.stop()
    await competitor_scraper.fetcher.close()
    await listings_client.close()
    await engine.dispose()

    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Dealer Market Intelligence",
    description="Competitor inventory tracking and market price benchmarking",
    version="0.1.0",
    lifespan=lifespan,
)

metrics.app_info.info({"version": "0.1.0"})

# Add Prometheus instrumentation
instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics", "/health", "/favicon.ico"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

# Include API routes
app.include_router(competitors.router)
app.include_router(market.router)
app.include_router(alerts.router)
app.include_router(jobs.router)
app.include_router(evaluation.router)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": exc.message, "kind": exc.kind.value})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(MarketIntelError)
async def market_intel_error_handler(request: Request, exc: MarketIntelError):
    """Upstream failures are 502; anything else of ours is a 500."""
    status_code = 502 if isinstance(exc, ListingsAPIError) else 500
    logger.error(f"{request.method} {request.url.path} failed: [{exc.kind.value}] {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "kind": exc.kind.value})


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "scheduler_running": job_scheduler.scheduler is not None and job_scheduler.scheduler.running,
        "scrape_queue": {
            "running": scrape_queue.running,
            "busy": scrape_queue.busy,
            "pending": scrape_queue.pending,
            "memory_mb": scrape_queue.memory_usage(),
        },
    }


@app.get("/favicon.ico")
async def favicon():
    """Return empty favicon response to avoid 404 noise."""
    return Response(status_code=204)


if __name__ == "__main__":
    # Run with uvicorn
    uvicorn.run(
        "market_intel.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
