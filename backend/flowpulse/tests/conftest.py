"""Test configuration and fixtures."""

import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["TESTING"] = "true"  # Disable rate limiting in tests
os.environ["SCHEDULER_LEASE_BACKEND"] = "local"
os.environ.setdefault("WEBHOOK_HMAC_SECRET", "")

from flowpulse.db import Base, get_db  # noqa: E402
from flowpulse.db.models import Workflow  # noqa: E402
from flowpulse.dependencies import get_rollup_scheduler  # noqa: E402
from flowpulse.domain import CallerContext  # noqa: E402
from flowpulse.jobs.lease import LocalLease  # noqa: E402
from flowpulse.jobs.scheduler import RollupScheduler  # noqa: E402
from flowpulse.main import app  # noqa: E402 - must set env vars before importing

OWNER_ID = "user-1"
SITE_ID = "site-1"

# Use in-memory SQLite for tests
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def scheduler(db_session):
    """Rollup scheduler bound to the test database with a process-local lease."""
    return RollupScheduler(session_factory=TestingSessionLocal, lease=LocalLease())


@pytest.fixture
def client(db_session, scheduler):
    """Create a test client with overridden database dependency."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rollup_scheduler] = lambda: scheduler
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def owner():
    return CallerContext(user_id=OWNER_ID)


@pytest.fixture
def owner_headers():
    return {"X-User-ID": OWNER_ID}


def make_workflow(db_session, workflow_id, nodes, *, user_id=OWNER_ID, status="Active"):
    workflow = Workflow(
        id=workflow_id,
        name=f"Workflow {workflow_id}",
        status=status,
        site_id=SITE_ID,
        user_id=user_id,
        nodes=nodes,
        edges=[
            {"id": f"e{index}", "source": nodes[index]["id"], "target": nodes[index + 1]["id"]}
            for index in range(len(nodes) - 1)
        ],
    )
    db_session.add(workflow)
    db_session.commit()
    db_session.refresh(workflow)
    return workflow


def node(node_id, node_type, title, **settings):
    return {"id": node_id, "data": {"type": node_type, "title": title, "settings": settings}}


@pytest.fixture
def webhook_workflow(db_session):
    """W1: trigger -> condition -> webhook action."""
    return make_workflow(
        db_session,
        "W1",
        [
            node("N1", "Trigger", "Page Visit"),
            node("N3", "Condition", "Is Returning"),
            node(
                "N2",
                "Action",
                "Webhook",
                webhookUrl="https://hooks.example.com/flow",
                webhookMethod="POST",
                webhookHeaders={"X-Visitor": "{{visitorId}}"},
                webhookBody='{"email": "{{user.email}}", "site": "{{siteId}}"}',
            ),
        ],
    )


@pytest.fixture
def track_event_workflow(db_session):
    """W2: trigger -> track event action."""
    return make_workflow(
        db_session,
        "W2",
        [
            node("T1", "Trigger", "Page Visit"),
            node(
                "A1",
                "Action",
                "Track Event",
                eventName="signup_started",
                eventData='{"plan": "pro"}',
            ),
        ],
    )


@pytest.fixture
def tag_workflow(db_session):
    """W3: trigger -> add tag action."""
    return make_workflow(
        db_session,
        "W3",
        [
            node("T1", "Trigger", "Page Visit"),
            node("A1", "Action", "Add Tag", tagName="engaged"),
            node("A2", "Action", "Show Modal"),
        ],
    )


@pytest.fixture
def workflow_factory(db_session):
    """Create workflows with arbitrary node lists."""

    def factory(workflow_id, nodes, **kwargs):
        return make_workflow(db_session, workflow_id, nodes, **kwargs)

    return factory
