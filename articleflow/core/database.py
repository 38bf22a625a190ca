"""
Database configuration and table definitions.

This module provides:
- SQLAlchemy engine and session factory construction
- Connection pooling with sane defaults (StaticPool for in-memory SQLite)
- A commit-or-rollback session scope
- Core Table definitions for drafts, entities, subscriptions and the ledger
"""
from datetime import datetime, timezone
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    JSON,
    Text,
    Index,
    UniqueConstraint,
    text,
    true,
    false,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import os


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour


def utc_now() -> datetime:
    """Timezone-aware UTC now for row timestamps."""
    return datetime.now(timezone.utc)


def get_database_url(configured: Optional[str] = None) -> Optional[str]:
    """
    Resolve the database URL.

    For testing, TEST_DATABASE_URL wins when set.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url
    return configured


def create_db_engine(database_url: Optional[str]) -> Engine:
    """
    Create a SQLAlchemy engine.

    Args:
        database_url: SQLAlchemy URL; "sqlite://" gives a shared in-memory DB
    """
    if not database_url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if database_url.startswith("sqlite"):
        # One shared connection so every session sees the same in-memory DB
        return create_engine(
            database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )

    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
        echo=False,  # Set to True for SQL query logging
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker):
    """
    Context manager for database sessions.

    Commits on success, rolls back on any exception.

    Usage:
        with session_scope(factory) as session:
            session.execute(...)
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Engine) -> None:
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    metadata.create_all(bind=engine)


def check_connection(engine: Engine) -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


# Multi-step drafts (article styles, onboarding)
drafts = Table(
    'drafts',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('owner_id', String(100), nullable=False, index=True),
    Column('kind', String(50), nullable=False),
    Column('status', String(20), nullable=False, server_default='open'),  # open, finalized, superseded
    Column('fields', JSON, nullable=False),
    Column('entity_id', String(36), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('finalized_at', DateTime(timezone=True), nullable=True),
    # Lookup pattern for get_draft: (owner_id, kind, status) newest first
    Index('idx_drafts_owner_kind_status', 'owner_id', 'kind', 'status', 'updated_at'),
    # At most one open draft per (owner, kind)
    Index(
        'uq_drafts_open_owner_kind',
        'owner_id',
        'kind',
        unique=True,
        postgresql_where=text("status = 'open'"),
        sqlite_where=text("status = 'open'"),
    ),
)

# Finalized article styles
article_styles = Table(
    'article_styles',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('name', Text, nullable=False),
    Column('style_samples', JSON, nullable=False),
    Column('subjects', JSON, nullable=False),
    Column('email', String(320), nullable=True),
    Column('display_name', Text, nullable=True),
    Column('preferred_language', String(20), nullable=False, server_default='en'),
    Column('delivery_days', JSON, nullable=False),
    Column('is_active', Boolean, nullable=False, server_default=true()),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_article_styles_user_created', 'user_id', 'created_at'),
)

# Finalized onboarding profiles (one per user)
onboarding_profiles = Table(
    'onboarding_profiles',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), nullable=False, unique=True, index=True),
    Column('style_samples', JSON, nullable=False),
    Column('subjects', JSON, nullable=False),
    Column('email', String(320), nullable=False),
    Column('display_name', Text, nullable=False),
    Column('preferred_language', String(20), nullable=False, server_default='en'),
    Column('delivery_days', JSON, nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('completed_at', DateTime(timezone=True), nullable=False),
)

# Plans catalog
subscription_plans = Table(
    'subscription_plans',
    metadata,
    Column('id', String(50), primary_key=True),
    Column('name', String(200), nullable=False),
    Column('stripe_price_id', String(100), nullable=True, unique=True),
    Column('articles_per_month', Integer, nullable=False, server_default='2'),
    Column('is_active', Boolean, nullable=False, server_default=true()),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Canonical subscription record (one per user)
subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, unique=True),
    Column('provider_subscription_id', String(100), nullable=False, unique=True),
    Column('customer_id', String(100), nullable=True, index=True),
    Column('price_id', String(100), nullable=True),
    Column('plan_id', String(50), nullable=False),
    Column('status', String(20), nullable=False, index=True),  # trialing, active, past_due, canceled, incomplete
    Column('current_period_start', DateTime(timezone=True), nullable=True),
    Column('current_period_end', DateTime(timezone=True), nullable=True),
    Column('cancel_at_period_end', Boolean, nullable=False, server_default=false()),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Billing events (webhook idempotency by provider event id)
billing_events = Table(
    'billing_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_event_id', String(100), nullable=False),
    Column('event_type', String(100), nullable=False, index=True),
    Column('received_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('payload_hash', String(64), nullable=False),  # SHA256 of raw body
    Column('processed', Boolean, nullable=False, server_default=false(), index=True),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Column('error', Text, nullable=True),
    UniqueConstraint('stripe_event_id', name='uq_billing_events_stripe_id'),
)

# Reference ledger: internal entity -> external ledger references
ledger_references = Table(
    'ledger_references',
    metadata,
    Column('entity_id', String(36), primary_key=True),
    Column('entity_kind', String(50), nullable=False),
    Column('sheets_config_id', String(200), nullable=True),
    Column('sheets_row_id', String(200), nullable=True),
    Column('sheets_subjects_id', String(100), nullable=True),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Ledger sync jobs: one row per triggering event
ledger_sync_jobs = Table(
    'ledger_sync_jobs',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('entity_id', String(36), nullable=False, index=True),
    Column('entity_kind', String(50), nullable=False),
    Column('operation', String(20), nullable=False),  # create, update, delete
    Column('status', String(20), nullable=False, server_default='pending'),  # pending, succeeded, failed, skipped
    Column('attempts', Integer, nullable=False, server_default='0'),
    Column('last_error', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_ledger_sync_jobs_status_created', 'status', 'created_at'),
)
