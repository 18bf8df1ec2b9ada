from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.match import Match
    from app.models.phase import Phase
    from app.models.team import Team


class Tournament(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    location: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: str = Field(default="draft")  # "draft" | "active" | "completed"

    # Scoring config
    points_for_win: int = Field(default=3)
    points_for_loss: int = Field(default=0)
    sets_per_match: int = Field(default=1)  # 1 | 3
    # Ordered tiebreaker chain: [{"type": "direct_match", "order": 1, "active": true}, ...]
    tiebreaker_rules: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON))

    # Random draw budget (tournament-wide, shared by every tiebreaker session)
    random_draw_budget: int = Field(default=3)
    random_draws_used: int = Field(default=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})

    # Relationships
    teams: List["Team"] = Relationship(back_populates="tournament")
    phases: List["Phase"] = Relationship(back_populates="tournament")
    matches: List["Match"] = Relationship(back_populates="tournament")
