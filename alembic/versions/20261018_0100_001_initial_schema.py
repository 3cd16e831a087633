"""Initial schema: products, sources, prices, jobs and locks

Revision ID: 001
Revises:
Create Date: 2026-10-18 01:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    # Create products table
    op.create_table(
        'products',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('image_url', sa.String(2048), nullable=True),
        sa.Column('category', sa.String(255), nullable=True),
        sa.Column('metadata', JSONType, nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index('ix_products_name', 'products', ['name'])
    op.create_index('ix_products_category', 'products', ['category'])

    # Create scrape_sources table
    op.create_table(
        'scrape_sources',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('url', sa.String(2048), nullable=False, unique=True),
        sa.Column('domain', sa.String(255), nullable=False),
        sa.Column('source_type', sa.String(20), nullable=False),
        sa.Column('scrape_config', JSONType, nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('needs_rediscovery', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('last_scraped_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('consecutive_failures', sa.Integer, nullable=False, server_default='0'),
        sa.Column('structural_failures', sa.Integer, nullable=False, server_default='0'),
        sa.Column('rediscovery_attempts', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index('ix_scrape_sources_domain', 'scrape_sources', ['domain'])
    op.create_index('ix_scrape_sources_is_active', 'scrape_sources', ['is_active'])
    op.create_index('ix_scrape_sources_needs_rediscovery', 'scrape_sources', ['needs_rediscovery'])
    op.create_index('ix_scrape_sources_last_scraped_at', 'scrape_sources', ['last_scraped_at'])

    # Create prices table
    op.create_table(
        'prices',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('product_id', sa.Uuid, sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('source_id', sa.Uuid, sa.ForeignKey('scrape_sources.id', ondelete='CASCADE'), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('original_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('in_stock', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('scraped_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index('ix_prices_product_id', 'prices', ['product_id'])
    op.create_index('ix_prices_source_id', 'prices', ['source_id'])
    op.create_index('ix_prices_scraped_at', 'prices', ['scraped_at'])
    op.create_index('prices_product_scraped_idx', 'prices', ['product_id', 'scraped_at'])

    # Create product_sources table
    op.create_table(
        'product_sources',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('product_id', sa.Uuid, sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('source_id', sa.Uuid, sa.ForeignKey('scrape_sources.id', ondelete='CASCADE'), nullable=False),
        sa.Column('external_id', sa.String(255), nullable=True),
        sa.Column('product_url', sa.String(2048), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.UniqueConstraint('product_id', 'source_id', name='uq_product_sources_product_source'),
    )
    op.create_index('ix_product_sources_product_id', 'product_sources', ['product_id'])
    op.create_index('ix_product_sources_source_id', 'product_sources', ['source_id'])

    # Create scrape_jobs table
    op.create_table(
        'scrape_jobs',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('source_id', sa.Uuid, sa.ForeignKey('scrape_sources.id', ondelete='SET NULL'), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('job_type', sa.String(20), nullable=False),
        sa.Column('query', sa.Text, nullable=True),
        sa.Column('result', JSONType, nullable=True),
        sa.Column('cancel_requested', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('started_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index('ix_scrape_jobs_source_id', 'scrape_jobs', ['source_id'])
    op.create_index('ix_scrape_jobs_status', 'scrape_jobs', ['status'])
    op.create_index('ix_scrape_jobs_job_type', 'scrape_jobs', ['job_type'])

    # Create source_locks table
    op.create_table(
        'source_locks',
        sa.Column('lock_key', sa.String(64), primary_key=True),
        sa.Column('owner', sa.String(64), nullable=False),
        sa.Column('acquired_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index('ix_source_locks_expires_at', 'source_locks', ['expires_at'])


def downgrade() -> None:
    op.drop_table('source_locks')
    op.drop_table('scrape_jobs')
    op.drop_table('product_sources')
    op.drop_table('prices')
    op.drop_table('scrape_sources')
    op.drop_table('products')
