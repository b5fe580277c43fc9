"""SQLAlchemy database models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class OwnedVehicle(Base):
    """Dealership inventory row. Owned by the inventory application; read only here."""

    __tablename__ = "inventory"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    vin: Mapped[Optional[str]] = mapped_column(String(17), nullable=True)
    stock_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    make: Mapped[str] = mapped_column(String(50), nullable=False)
    model: Mapped[str] = mapped_column(String(50), nullable=False)
    trim: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    mileage: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="available", nullable=False)
    date_added: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class Competitor(Base):
    """Competitor dealership whose inventory page is scraped."""

    __tablename__ = "competitors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    inventory_url: Mapped[str] = mapped_column(Text, nullable=False)
    website_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    platform_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    use_headless: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_scraped_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_successful_scrape_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    scrape_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    scrape_error_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # Relationships
    inventory: Mapped[list["CompetitorInventory"]] = relationship(
        "CompetitorInventory", back_populates="competitor", cascade="all, delete-orphan"
    )
    metrics: Mapped[list["CompetitorMetrics"]] = relationship(
        "CompetitorMetrics", back_populates="competitor", cascade="all, delete-orphan"
    )


class CompetitorInventory(Base):
    """One vehicle observed on a competitor's inventory page."""

    __tablename__ = "competitor_inventory"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    competitor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("competitors.id", ondelete="CASCADE"), nullable=False
    )
    vin: Mapped[Optional[str]] = mapped_column(String(17), nullable=True)
    stock_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    has_vin: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_duplicate_vin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    duplicate_warning: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    make: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    trim: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    mileage: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    exterior_color: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    current_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    initial_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    sold_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    days_on_market: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    completeness: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    data_warnings: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    last_updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    # Relationships
    competitor: Mapped["Competitor"] = relationship("Competitor", back_populates="inventory")
    price_history: Mapped[list["CompetitorPriceHistory"]] = relationship(
        "CompetitorPriceHistory", back_populates="inventory", cascade="all, delete-orphan"
    )

    @property
    def identity(self) -> Optional[str]:
        """VIN when present, else stock number."""
        return self.vin or self.stock_number

    __table_args__ = (
        CheckConstraint("status IN ('active', 'sold', 'removed')", name="ck_competitor_inventory_status"),
        CheckConstraint("completeness >= 0 AND completeness <= 100", name="ck_competitor_inventory_completeness"),
        Index("ix_competitor_inventory_competitor_status", "competitor_id", "status"),
        Index("ix_competitor_inventory_vin", "vin"),
        Index("ix_competitor_inventory_stock", "competitor_id", "stock_number"),
    )


class CompetitorPriceHistory(Base):
    """Append-only price observation for a competitor vehicle."""

    __tablename__ = "competitor_price_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    inventory_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("competitor_inventory.id", ondelete="CASCADE"), nullable=False
    )
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    mileage: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    inventory: Mapped["CompetitorInventory"] = relationship(
        "CompetitorInventory", back_populates="price_history"
    )


class CompetitorMetrics(Base):
    """Daily rollup of a competitor's inventory after a scrape."""

    __tablename__ = "competitor_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    competitor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("competitors.id", ondelete="CASCADE"), nullable=False
    )
    metric_date: Mapped[date] = mapped_column(Date, nullable=False)
    active_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    added_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sold_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    avg_days_on_market: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    competitor: Mapped["Competitor"] = relationship("Competitor", back_populates="metrics")

    __table_args__ = (
        UniqueConstraint("competitor_id", "metric_date", name="uq_competitor_metrics_day"),
    )


class MarketSnapshot(Base):
    """One market benchmarking run for one owned vehicle. Never updated."""

    __tablename__ = "market_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    vehicle_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    search_params: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    listings_data: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    total_listings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unique_listings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    median_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    average_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    min_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    max_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    snapshot_date: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    metric: Mapped[Optional["MarketMetric"]] = relationship(
        "MarketMetric", back_populates="snapshot", cascade="all, delete-orphan", uselist=False
    )


class MarketMetric(Base):
    """Owned vehicle's position against one snapshot (1:1)."""

    __tablename__ = "market_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    snapshot_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("market_snapshots.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    vehicle_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    our_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    price_delta: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    price_delta_percent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    percentile_rank: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    cheaper_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    more_expensive_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    competitive_position: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    days_in_market: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    snapshot: Mapped["MarketSnapshot"] = relationship("MarketSnapshot", back_populates="metric")


class MarketPlatformTracking(Base):
    """Where a VIN has been seen listed, per source platform."""

    __tablename__ = "market_platform_tracking"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    vin: Mapped[str] = mapped_column(String(17), nullable=False)
    platform: Mapped[str] = mapped_column(String(100), nullable=False)
    is_own_vehicle: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    dealer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    listing_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    first_seen: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    last_seen: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    times_seen: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (UniqueConstraint("vin", "platform", name="uq_platform_tracking_vin_platform"),)


class MarketPriceTrend(Base):
    """Daily market median for an owned vehicle, with one-shot alert flags."""

    __tablename__ = "market_price_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    vehicle_id: Mapped[int] = mapped_column(Integer, nullable=False)
    trend_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    median_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    min_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    max_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    change_1week: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    change_2week: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    change_1month: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    alert_sent_1week: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    alert_sent_2week: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (UniqueConstraint("vehicle_id", "date", name="uq_price_trend_vehicle_date"),)


class MarketAlert(Base):
    """Alert raised by the market alert detection engine."""

    __tablename__ = "market_alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    vehicle_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    snapshot_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("market_snapshots.id", ondelete="SET NULL"), nullable=True
    )
    alert_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    alert_data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    dismissed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    dismissed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("severity IN ('info', 'warning', 'critical')", name="ck_market_alert_severity"),
    )


class VinEvaluationCache(Base):
    """Summarized market lookup for an ad-hoc VIN valuation."""

    __tablename__ = "vin_evaluation_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    vin: Mapped[str] = mapped_column(String(17), nullable=False, index=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    make: Mapped[str] = mapped_column(String(50), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    trim: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    mileage: Mapped[int] = mapped_column(Integer, nullable=False)
    median_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    average_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    min_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    max_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    total_listings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unique_listings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    search_params: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    sample_listings: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )


class JobExecution(Base):
    """Audit row for every scheduled or manual job run."""

    __tablename__ = "job_execution_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # running, success, partial, failed
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    result_data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    triggered_by: Mapped[str] = mapped_column(String(20), default="scheduled", nullable=False)


class SystemMetric(Base):
    """Point-in-time system measurement (database size, etc.)."""

    __tablename__ = "system_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    metric_type: Mapped[str] = mapped_column(String(50), nullable=False)
    metric_name: Mapped[str] = mapped_column(String(100), nullable=False)
    metric_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    metric_unit: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    metric_data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
