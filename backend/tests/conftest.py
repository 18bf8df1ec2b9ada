import os

# The app's own engine must never touch a file during tests (startup runs init_db()).
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from app.database import get_session  # noqa: E402
from app.main import app  # noqa: E402
from app.services.tiebreaker_store import tiebreaker_sessions  # noqa: E402

TEST_DATABASE_URL = "sqlite:///:memory:"

# One in-memory database shared by every connection (StaticPool), reachable from
# the TestClient thread. Tables are rebuilt per test; the app's get_session is
# overridden so routes and fixtures see the same rows.
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def override_get_session():
    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="session", scope="function")
def session_fixture():
    """Provide a test database session on fresh tables."""
    # create_all only knows about imported table models
    from app.models.match import Match  # noqa: F401
    from app.models.match_set import MatchSet  # noqa: F401
    from app.models.phase import Phase, PhaseGroup  # noqa: F401
    from app.models.team import Team  # noqa: F401
    from app.models.tournament import Tournament  # noqa: F401
    from app.models.tournament_activity import TournamentActivity  # noqa: F401

    SQLModel.metadata.create_all(test_engine)

    with Session(test_engine) as session:
        yield session

    SQLModel.metadata.drop_all(test_engine)
    tiebreaker_sessions.clear()


@pytest.fixture(name="client")
def client_fixture(session: Session):
    """TestClient whose requests run against test_engine. Startup still calls init_db on the app engine."""
    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
