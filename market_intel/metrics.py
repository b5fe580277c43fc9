"""Prometheus metrics for the market intelligence service."""

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("market_intel", "Dealer market intelligence application info")
app_info.info({"version": "0.1.0", "name": "dealer-market-intel"})

# Competitor scraping
competitor_scrapes_total = Counter(
    "competitor_scrapes_total",
    "Total number of competitor scrape attempts",
    ["strategy", "status"],
)

competitor_scrape_errors_total = Counter(
    "competitor_scrape_errors_total",
    "Total number of failed competitor scrapes",
    ["error_type"],
)

fetch_escalations_total = Counter(
    "fetch_escalations_total",
    "Lightweight fetches escalated to the headless browser",
    ["reason"],
)

competitor_scrape_duration_seconds = Histogram(
    "competitor_scrape_duration_seconds",
    "Time spent scraping one competitor",
    ["strategy"],
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0],
)

scrape_queue_depth = Gauge(
    "scrape_queue_depth",
    "Number of scrape jobs waiting in the queue",
)

process_memory_mb = Gauge(
    "process_memory_mb",
    "Resident memory of the service process in MB",
)

inventory_changes_total = Counter(
    "competitor_inventory_changes_total",
    "Competitor inventory reconciliation outcomes",
    ["change"],
)

# Market research
listings_api_requests_total = Counter(
    "listings_api_requests_total",
    "Total number of listings API requests",
    ["status"],
)

market_analyses_total = Counter(
    "market_analyses_total",
    "Total number of vehicle market analyses",
    ["status"],
)

market_alerts_total = Counter(
    "market_alerts_total",
    "Total number of market alerts created",
    ["alert_type", "severity"],
)

vin_cache_lookups_total = Counter(
    "vin_cache_lookups_total",
    "VIN evaluation cache lookups",
    ["result"],
)

# Scheduler
job_runs_total = Counter(
    "job_runs_total",
    "Total number of scheduled job runs",
    ["job_name", "status"],
)

job_last_run_timestamp = Gauge(
    "job_last_run_timestamp",
    "Timestamp of last job run",
    ["job_name"],
)

database_size_mb = Gauge(
    "database_size_mb",
    "Database size in MB",
)


def record_scrape(strategy: str, status: str, duration: float | None = None):
    """Record a competitor scrape attempt."""
    competitor_scrapes_total.labels(strategy=strategy, status=status).inc()
    if duration is not None:
        competitor_scrape_duration_seconds.labels(strategy=strategy).observe(duration)


def record_scrape_error(error_type: str):
    """Record a failed competitor scrape."""
    competitor_scrape_errors_total.labels(error_type=error_type).inc()


def record_escalation(reason: str):
    """Record a static-to-headless escalation."""
    fetch_escalations_total.labels(reason=reason).inc()


def record_reconciliation(added: int, updated: int, sold: int, errors: int):
    """Record inventory reconciliation counts."""
    inventory_changes_total.labels(change="added").inc(added)
    inventory_changes_total.labels(change="updated").inc(updated)
    inventory_changes_total.labels(change="sold").inc(sold)
    inventory_changes_total.labels(change="error").inc(errors)


def record_alert(alert_type: str, severity: str):
    """Record a created market alert."""
    market_alerts_total.labels(alert_type=alert_type, severity=severity).inc()


def record_job_run(job_name: str, status: str):
    """Record a job run."""
    import time
    job_runs_total.labels(job_name=job_name, status=status).inc()
    job_last_run_timestamp.labels(job_name=job_name).set(time.time())
