"""Initial market intelligence schema

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-17 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # The inventory table belongs to the inventory application and is not created here.

    # Competitors
    op.create_table(
        'competitors',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('inventory_url', sa.Text(), nullable=False),
        sa.Column('website_url', sa.Text(), nullable=True),
        sa.Column('platform_type', sa.String(length=50), nullable=True),
        sa.Column('use_headless', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_scraped_at', sa.DateTime(), nullable=True),
        sa.Column('last_successful_scrape_at', sa.DateTime(), nullable=True),
        sa.Column('scrape_error', sa.Text(), nullable=True),
        sa.Column('scrape_error_type', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # Competitor inventory
    op.create_table(
        'competitor_inventory',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('competitor_id', sa.Integer(), nullable=False),
        sa.Column('vin', sa.String(length=17), nullable=True),
        sa.Column('stock_number', sa.String(length=100), nullable=True),
        sa.Column('has_vin', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_duplicate_vin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('duplicate_warning', sa.Text(), nullable=True),
        sa.Column('year', sa.Integer(), nullable=True),
        sa.Column('make', sa.String(length=100), nullable=True),
        sa.Column('model', sa.String(length=100), nullable=True),
        sa.Column('trim', sa.String(length=255), nullable=True),
        sa.Column('mileage', sa.Integer(), nullable=True),
        sa.Column('exterior_color', sa.String(length=100), nullable=True),
        sa.Column('current_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('initial_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('first_seen_at', sa.DateTime(), nullable=False),
        sa.Column('last_seen_at', sa.DateTime(), nullable=False),
        sa.Column('sold_at', sa.DateTime(), nullable=True),
        sa.Column('days_on_market', sa.Integer(), nullable=True),
        sa.Column('completeness', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('data_warnings', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('last_updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['competitor_id'], ['competitors.id'], ondelete='CASCADE'),
        sa.CheckConstraint("status IN ('active', 'sold', 'removed')", name='ck_competitor_inventory_status'),
        sa.CheckConstraint('completeness >= 0 AND completeness <= 100', name='ck_competitor_inventory_completeness')
    )
    op.create_index('ix_competitor_inventory_competitor_status', 'competitor_inventory', ['competitor_id', 'status'])
    op.create_index('ix_competitor_inventory_vin', 'competitor_inventory', ['vin'])
    op.create_index('ix_competitor_inventory_stock', 'competitor_inventory', ['competitor_id', 'stock_number'])

    # Competitor price history
    op.create_table(
        'competitor_price_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('inventory_id', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('mileage', sa.Integer(), nullable=True),
        sa.Column('recorded_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['inventory_id'], ['competitor_inventory.id'], ondelete='CASCADE')
    )

    # Competitor daily metrics
    op.create_table(
        'competitor_metrics',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('competitor_id', sa.Integer(), nullable=False),
        sa.Column('metric_date', sa.Date(), nullable=False),
        sa.Column('active_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('added_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sold_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('avg_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('avg_days_on_market', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['competitor_id'], ['competitors.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('competitor_id', 'metric_date', name='uq_competitor_metrics_day')
    )

    # Market snapshots
    op.create_table(
        'market_snapshots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('vehicle_id', sa.Integer(), nullable=False),
        sa.Column('search_params', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('listings_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('total_listings', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unique_listings', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('median_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('average_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('min_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('max_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('snapshot_date', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_market_snapshots_vehicle_id', 'market_snapshots', ['vehicle_id'])

    # Market metrics (1:1 with snapshots)
    op.create_table(
        'market_metrics',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('snapshot_id', sa.Integer(), nullable=False),
        sa.Column('vehicle_id', sa.Integer(), nullable=False),
        sa.Column('our_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('price_delta', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('price_delta_percent', sa.Float(), nullable=True),
        sa.Column('percentile_rank', sa.Float(), nullable=True),
        sa.Column('cheaper_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('more_expensive_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('competitive_position', sa.String(length=20), nullable=True),
        sa.Column('days_in_market', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['snapshot_id'], ['market_snapshots.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('snapshot_id')
    )
    op.create_index('ix_market_metrics_vehicle_id', 'market_metrics', ['vehicle_id'])

    # Platform tracking
    op.create_table(
        'market_platform_tracking',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('vin', sa.String(length=17), nullable=False),
        sa.Column('platform', sa.String(length=100), nullable=False),
        sa.Column('is_own_vehicle', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('dealer_name', sa.String(length=255), nullable=True),
        sa.Column('listing_url', sa.Text(), nullable=True),
        sa.Column('first_seen', sa.DateTime(), nullable=False),
        sa.Column('last_seen', sa.DateTime(), nullable=False),
        sa.Column('times_seen', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('vin', 'platform', name='uq_platform_tracking_vin_platform')
    )

    # Daily market median trend
    op.create_table(
        'market_price_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('vehicle_id', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('median_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('min_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('max_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('change_1week', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('change_2week', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('change_1month', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('alert_sent_1week', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('alert_sent_2week', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('vehicle_id', 'date', name='uq_price_trend_vehicle_date')
    )

    # Alerts
    op.create_table(
        'market_alerts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('vehicle_id', sa.Integer(), nullable=False),
        sa.Column('snapshot_id', sa.Integer(), nullable=True),
        sa.Column('alert_type', sa.String(length=50), nullable=False),
        sa.Column('severity', sa.String(length=20), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('alert_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('dismissed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('dismissed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['snapshot_id'], ['market_snapshots.id'], ondelete='SET NULL'),
        sa.CheckConstraint("severity IN ('info', 'warning', 'critical')", name='ck_market_alert_severity')
    )
    op.create_index('ix_market_alerts_vehicle_id', 'market_alerts', ['vehicle_id'])

    # VIN evaluation cache
    op.create_table(
        'vin_evaluation_cache',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('vin', sa.String(length=17), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('make', sa.String(length=50), nullable=False),
        sa.Column('model', sa.String(length=100), nullable=False),
        sa.Column('trim', sa.String(length=100), nullable=True),
        sa.Column('mileage', sa.Integer(), nullable=False),
        sa.Column('median_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('average_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('min_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('max_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('total_listings', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unique_listings', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('search_params', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('sample_listings', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_vin_evaluation_cache_vin', 'vin_evaluation_cache', ['vin'])
    op.create_index('ix_vin_evaluation_cache_created_at', 'vin_evaluation_cache', ['created_at'])

    # Job execution history
    op.create_table(
        'job_execution_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('job_name', sa.String(length=100), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('duration_ms', sa.BigInteger(), nullable=True),
        sa.Column('result_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('triggered_by', sa.String(length=20), nullable=False, server_default='scheduled'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_job_execution_history_job_name', 'job_execution_history', ['job_name'])

    # System metrics
    op.create_table(
        'system_metrics',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('metric_type', sa.String(length=50), nullable=False),
        sa.Column('metric_name', sa.String(length=100), nullable=False),
        sa.Column('metric_value', sa.Float(), nullable=True),
        sa.Column('metric_unit', sa.String(length=20), nullable=True),
        sa.Column('metric_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('recorded_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )


def downgrade() -> None:
    op.drop_table('system_metrics')
    op.drop_index('ix_job_execution_history_job_name', table_name='job_execution_history')
    op.drop_table('job_execution_history')
    op.drop_index('ix_vin_evaluation_cache_created_at', table_name='vin_evaluation_cache')
    op.drop_index('ix_vin_evaluation_cache_vin', table_name='vin_evaluation_cache')
    op.drop_table('vin_evaluation_cache')
    op.drop_index('ix_market_alerts_vehicle_id', table_name='market_alerts')
    op.drop_table('market_alerts')
    op.drop_table('market_price_history')
    op.drop_table('market_platform_tracking')
    op.drop_index('ix_market_metrics_vehicle_id', table_name='market_metrics')
    op.drop_table('market_metrics')
    op.drop_index('ix_market_snapshots_vehicle_id', table_name='market_snapshots')
    op.drop_table('market_snapshots')
    op.drop_table('competitor_metrics')
    op.drop_table('competitor_price_history')
    op.drop_index('ix_competitor_inventory_stock', table_name='competitor_inventory')
    op.drop_index('ix_competitor_inventory_vin', table_name='competitor_inventory')
    op.drop_index('ix_competitor_inventory_competitor_status', table_name='competitor_inventory')
    op.drop_table('competitor_inventory')
    op.drop_table('competitors')
