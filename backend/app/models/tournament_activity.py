"""Activity log entries for a tournament (match results, progression passes, tiebreaks)."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel


class TournamentActivity(SQLModel, table=True):
    __tablename__ = "tournament_activity"

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    activity_type: str  # match_start|match_end|set_end|progression|phase_advance|tiebreak_draw|tiebreak_finalize|budget_reset
    message: str
    payload: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
