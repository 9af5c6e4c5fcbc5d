"""Pytest configuration and fixtures for cadence tests."""

import random
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import JSON, Column, ForeignKey, MetaData, String, Table, event
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from cadence.services.actions import (
    ActionDependencies,
    ActionExecutor,
    Completion,
)
from cadence.services.engine import TaskEngine
from cadence.services.worker import SchedulerWorker
from cadence.store import TaskStore


def _create_sqlite_compatible_metadata():
    """Create a new metadata with SQLite-compatible column types.

    This creates a copy of the models metadata with JSONB replaced by JSON
    and PostgreSQL UUID replaced by String, keeping foreign keys so that
    ON DELETE CASCADE behaves as it does on PostgreSQL.
    """
    # Import here to avoid circular imports
    from cadence.db.models import Base

    new_metadata = MetaData()

    for table_name, table in Base.metadata.tables.items():
        columns = []
        for col in table.columns:
            col_type = col.type
            # Replace PostgreSQL-specific types
            if isinstance(col_type, JSONB):
                col_type = JSON()
            elif isinstance(col_type, PG_UUID):
                col_type = String(36)

            new_col = Column(
                col.name,
                col_type,
                *[ForeignKey(fk.target_fullname, ondelete=fk.ondelete) for fk in col.foreign_keys],
                primary_key=col.primary_key,
                nullable=col.nullable,
                server_default=col.server_default,
            )
            columns.append(new_col)

        Table(
            table_name,
            new_metadata,
            *columns,
        )

    return new_metadata


@pytest.fixture
async def db_engine(tmp_path):
    """Create a file-backed SQLite database engine for testing.

    Every session gets its own connection so concurrent sessions behave
    like separate transactions rather than sharing one in-memory handle.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'cadence.db'}",
        echo=False,
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    # Enable foreign key support for SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    # Create tables using SQLite-compatible metadata
    sqlite_metadata = _create_sqlite_compatible_metadata()

    async with engine.begin() as conn:
        await conn.run_sync(sqlite_metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a database session for testing."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def session_factory(db_engine):
    """Create a session factory for testing."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
def store(session_factory):
    """Create a TaskStore with a fixed worker ID."""
    return TaskStore(session_factory, worker_id="test-worker")


@pytest.fixture
def mock_completion():
    """Create a fake LLM completion client."""
    client = AsyncMock()
    client.complete.return_value = Completion(
        text="Hello from the model",
        model="claude-sonnet-4-5",
        usage={"input_tokens": 10, "output_tokens": 5},
    )
    return client


@pytest.fixture
def mock_email_sender():
    """Create a fake email sender."""
    sender = AsyncMock()
    sender.send.return_value = None
    return sender


@pytest.fixture
def deps(mock_completion, mock_email_sender):
    """Create action dependencies with fake LLM and email collaborators."""
    return ActionDependencies(completion=mock_completion, email_sender=mock_email_sender)


@pytest.fixture
def executor(deps):
    """Create an ActionExecutor with fake collaborators."""
    return ActionExecutor(deps, timeout=5)


@pytest.fixture
def engine(store, executor):
    """Create a TaskEngine over the test store."""
    return TaskEngine(store, executor)


@pytest.fixture
def worker(store, engine):
    """Create a SchedulerWorker with a long poll interval and seeded jitter."""
    return SchedulerWorker(
        store,
        engine,
        poll_interval_ms=60_000,
        batch_size=10,
        rng=random.Random(42),
    )


@pytest.fixture
def past():
    """An instant one minute in the past."""
    return datetime.now(timezone.utc) - timedelta(minutes=1)
