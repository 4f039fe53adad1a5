"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling (QueuePool for servers, StaticPool for in-memory SQLite)
- Test database support
- Table definitions for users, subscriptions, tenants and billing bookkeeping
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, JSON, Text, Index, ForeignKey, UniqueConstraint, false, select
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from snsshare.core.config import settings


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if url.startswith("sqlite"):
        # One shared connection so every session sees the same in-memory database
        _engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
            echo=False,  # Set to True for SQL query logging
        )

    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Commits when the block exits cleanly and rolls back on any exception.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    metadata.create_all(bind=get_engine())


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        with get_engine().connect() as conn:
            conn.execute(select(1))
        return True
    except Exception as e:
        logging.getLogger("snsshare").warning("db.connection_failed", extra={"error": str(e)})
        return False


# Users. tenant_id is the member relation; the admin relation lives on
# corporate_tenants.admin_id.
users = Table(
    'users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('email', String(320), nullable=True, index=True),
    Column('display_name', Text, nullable=True),
    Column('company_name', Text, nullable=True),
    Column('subscription_status', String(50), nullable=False, server_default='free'),
    Column('trial_ends_at', DateTime(timezone=True), nullable=True),
    Column('corporate_role', String(20), nullable=True),
    Column('tenant_id', String(36), nullable=True, index=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_users_subscription_status', 'subscription_status'),
)

# One subscription per user. subscription_id holds the checkout session id
# until the processor assigns a real subscription id.
subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), ForeignKey('users.user_id'), nullable=False, unique=True),
    Column('status', String(20), nullable=False, index=True),
    Column('plan', String(50), nullable=False),
    Column('interval', String(10), nullable=False, server_default='month'),
    Column('price_id', String(100), nullable=True),
    Column('subscription_id', String(255), nullable=True, index=True),
    Column('current_period_start', DateTime(timezone=True), nullable=True),
    Column('current_period_end', DateTime(timezone=True), nullable=True),
    Column('cancel_at_period_end', Boolean, nullable=False, server_default=false()),
    Column('canceled_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
)

corporate_tenants = Table(
    'corporate_tenants',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('name', Text, nullable=False),
    Column('account_status', String(20), nullable=False, server_default='active'),
    Column('max_users', Integer, nullable=False),
    Column('admin_id', String(100), ForeignKey('users.user_id'), nullable=False),
    Column('subscription_id', String(36), ForeignKey('subscriptions.id'), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    UniqueConstraint('admin_id', name='uq_corporate_tenants_admin_id'),
)

billing_customers = Table(
    'billing_customers',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), ForeignKey('users.user_id'), nullable=False, unique=True),
    Column('stripe_customer_id', String(100), nullable=False, unique=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Webhook idempotency
billing_events = Table(
    'billing_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_event_id', String(100), nullable=False),
    Column('event_type', String(100), nullable=False, index=True),
    Column('received_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('payload_hash', String(64), nullable=False),  # SHA256 of the raw body
    Column('processed', Boolean, nullable=False, server_default=false()),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Column('error', Text, nullable=True),
    UniqueConstraint('stripe_event_id', name='uq_billing_events_stripe_id'),
    Index('idx_billing_events_processed', 'processed'),
)

# Local order for a checkout session (plan charge plus bundled items)
checkout_orders = Table(
    'checkout_orders',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), ForeignKey('users.user_id'), nullable=False, index=True),
    Column('checkout_session_id', String(255), nullable=False, unique=True),
    Column('subscription_row_id', String(36), ForeignKey('subscriptions.id'), nullable=True),
    Column('plan_key', String(50), nullable=False),
    Column('interval', String(10), nullable=False),
    Column('is_corporate', Boolean, nullable=False, server_default=false()),
    Column('status', String(20), nullable=False, server_default='pending'),
    Column('plan_amount', Integer, nullable=False),
    Column('items_amount', Integer, nullable=False, server_default='0'),
    Column('shipping_fee', Integer, nullable=False, server_default='0'),
    Column('total_amount', Integer, nullable=False),
    Column('items', JSON, nullable=True),
    Column('shipping', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('paid_at', DateTime(timezone=True), nullable=True),
)
