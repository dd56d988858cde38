"""Shared fixtures: in-memory SQLite store, change feed and seeded users."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from civic_core.feed import ChangeFeed
from civic_core.identity import SqlIdentityResolver
from civic_core.lifecycle import DEFAULT_SLA_HOURS, IssueLifecycle
from civic_core.models import Base, UserRole
from civic_core.schemas import IssueCreate
from civic_core.store import SqlIssueStore
from civic_core.uploads import LocalUploadStore


@pytest.fixture
def engine():
    # One shared connection so worker threads see the same in-memory database
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def store(session_factory, feed):
    return SqlIssueStore(session_factory, feed)


@pytest.fixture
def identities(session_factory):
    return SqlIdentityResolver(session_factory)


@pytest.fixture
def uploads(tmp_path):
    return LocalUploadStore(tmp_path / "uploads")


@pytest.fixture
def lifecycle(store, identities, uploads):
    return IssueLifecycle(store, identities, uploads, DEFAULT_SLA_HOURS)


@pytest.fixture
def citizen(identities):
    return identities.register("Ana Citizen", "ana@example.com", UserRole.CITIZEN)


@pytest.fixture
def other_citizen(identities):
    return identities.register("Ben Citizen", "ben@example.com", UserRole.CITIZEN)


@pytest.fixture
def worker(identities):
    return identities.register("Wes Worker", "wes@example.com", UserRole.WORKER)


@pytest.fixture
def other_worker(identities):
    return identities.register("Kim Worker", "kim@example.com", UserRole.WORKER)


@pytest.fixture
def officer(identities):
    return identities.register("Olu Officer", "olu@example.com", UserRole.OFFICER)


@pytest.fixture
def admin(identities):
    return identities.register("Ada Admin", "ada@example.com", UserRole.OFFICER, is_admin=True)


@pytest.fixture
def pothole():
    return IssueCreate(title="Pothole", category="roads", location="Main St", priority="high")


@pytest.fixture
def reported_issue(lifecycle, citizen, pothole):
    """A pending issue reported by the citizen."""
    return lifecycle.submit_issue(citizen, pothole).issue
