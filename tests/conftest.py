"""
Pytest fixtures for the pricing test suite.

Provides:
- Database sessions (rollback isolation) and a committing session factory
- Builders for proposals, rates, scenarios and actors
- Log capture

Environment Variables:
- DATABASE_URL: SQLAlchemy URL.  If not set, a temporary SQLite file is
  used.  Tests marked ``postgres`` are skipped unless the URL points to
  PostgreSQL.
"""

import json
import logging
import os
import threading
from io import StringIO
from typing import Generator
from uuid import uuid4

import pytest
from sqlalchemy import delete, text
from sqlalchemy.orm import Session

from pricing_config import PricingConfig
from pricing_kernel.db.base import Base
from pricing_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from pricing_kernel.domain.actor import Actor, Role
from pricing_kernel.domain.clock import DeterministicClock
from pricing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from pricing_services.workflow import PricingWorkflow
from tests.builders import ProposalSetup, RecordingNotifier, build_proposal


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture pricing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow):
            workflow.packages.submit(package_id, actor)
            logs = captured_logs()
            assert any(r["message"] == "package_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("pricing_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Markers
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def database_url(tmp_path_factory) -> str:
    url = os.environ.get("DATABASE_URL")
    if url:
        return url
    return f"sqlite:///{tmp_path_factory.mktemp('db') / 'pricing_test.db'}"


@pytest.fixture(scope="session")
def db_engine(database_url):
    """Single engine for the entire test session."""
    eng = init_engine_from_url(
        database_url, echo=False, pool_size=10, max_overflow=10, pool_timeout=10,
    )
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end."""
    drop_tables()
    create_tables()
    yield
    drop_tables()


@pytest.fixture(autouse=True)
def _skip_without_postgres(request, database_url):
    if request.node.get_closest_marker("postgres") and not database_url.startswith(
        "postgresql"
    ):
        pytest.skip("requires PostgreSQL (set DATABASE_URL)")


def _clear_all_tables(engine):
    """Remove all rows; used after tests that really commit."""
    with engine.begin() as conn:
        if engine.dialect.name == "postgresql":
            names = ", ".join(t.name for t in Base.metadata.sorted_tables)
            conn.execute(text(f"TRUNCATE {names} CASCADE"))
        else:
            for table in reversed(Base.metadata.sorted_tables):
                conn.execute(delete(table))


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction; ``session.commit()`` inside a
    test releases a savepoint and everything is rolled back at teardown.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture(scope="function")
def session_factory(db_engine, db_tables):
    """Tracked factory of really-committing sessions.

    On teardown every created session is closed and all rows are removed.
    """
    factory = get_session_factory()
    created: list[Session] = []
    lock = threading.Lock()

    def tracked_factory() -> Session:
        with lock:
            s = factory()
            created.append(s)
            return s

    yield tracked_factory

    for s in created:
        try:
            s.rollback()
        finally:
            s.close()
    _clear_all_tables(db_engine)


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def make_actor():
    def _make(role: Role = Role.ENGINEERING_MANAGER) -> Actor:
        return Actor(id=uuid4(), role=role)

    return _make


@pytest.fixture
def admin(make_actor) -> Actor:
    return make_actor(Role.ADMIN)


@pytest.fixture
def pricing_config() -> PricingConfig:
    return PricingConfig()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def workflow(session, pricing_config, deterministic_clock, notifier) -> PricingWorkflow:
    return PricingWorkflow(
        session,
        config=pricing_config,
        clock=deterministic_clock,
        notifier=notifier,
    )


@pytest.fixture
def proposal(workflow, make_actor) -> ProposalSetup:
    """Proposal with two technical reviewers, rates and one TM scenario."""
    creator = make_actor(Role.PROJECT_LEADER)
    reviewers = [make_actor(Role.TECHNICAL_REVIEWER), make_actor(Role.TECHNICAL_REVIEWER)]
    return build_proposal(workflow, creator, reviewers)


@pytest.fixture
def submitted_package(workflow, proposal):
    """The proposal's scenario packaged and submitted."""
    return workflow.packages.create(
        proposal.rfq.id, "Offer v1", [proposal.scenario.id], proposal.creator, submit=True,
    )
