import os
from pathlib import Path
from typing import Generator

from dotenv import load_dotenv
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./progression.db")
# Seconds a SQLite writer waits on a locked database before OperationalError
SQLITE_BUSY_TIMEOUT = float(os.getenv("SQLITE_BUSY_TIMEOUT", "10"))

_is_sqlite = DATABASE_URL.startswith("sqlite")
_is_file_sqlite = _is_sqlite and ":memory:" not in DATABASE_URL
_echo = os.getenv("SQL_ECHO", "false").lower() in ("true", "1", "yes")

_connect_args = {}
if _is_sqlite:
    _connect_args = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}

if _is_file_sqlite:
    Path(DATABASE_URL.replace("sqlite:///", "", 1)).parent.mkdir(parents=True, exist_ok=True)

engine: Engine = create_engine(DATABASE_URL, echo=_echo, connect_args=_connect_args)


if _is_sqlite:

    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_connection, connection_record):
        # Progression passes write while clients poll standings
        cursor = dbapi_connection.cursor()
        if _is_file_sqlite:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


def init_db() -> None:
    """Create the progression tables if missing (alembic owns real migrations)."""
    # Every table model has to be imported before create_all
    from app.models.match import Match  # noqa: F401
    from app.models.match_set import MatchSet  # noqa: F401
    from app.models.phase import Phase, PhaseGroup  # noqa: F401
    from app.models.team import Team  # noqa: F401
    from app.models.tournament import Tournament  # noqa: F401
    from app.models.tournament_activity import TournamentActivity  # noqa: F401

    SQLModel.metadata.create_all(engine)
