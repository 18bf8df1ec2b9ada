from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.match_set import MatchSet
    from app.models.tournament import Tournament

MATCH_SCHEDULED = "scheduled"
MATCH_LIVE = "live"
MATCH_FINISHED = "finished"

# Source reference types
SOURCE_TEAM = "team"
SOURCE_GROUP_POS = "group.pos"
SOURCE_MATCH_WINNER = "match.winner"
SOURCE_MATCH_LOSER = "match.loser"

# Match refs are match ids; "#7" refers to match number 7 instead
MATCH_NUMBER_PREFIX = "#"


class Match(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    phase_id: int = Field(foreign_key="phase.id", index=True)
    match_number: Optional[int] = Field(default=None)  # Global number shown to people ("#7")
    name: Optional[str] = None  # "Semifinal 1", "J2 - GA"
    group_name: Optional[str] = None
    round_index: int = Field(default=1)

    status: str = Field(default=MATCH_SCHEDULED)  # scheduled | live | finished

    # Resolved participants (nullable until sources resolve)
    local_team_id: Optional[int] = Field(default=None, foreign_key="team.id")
    visitor_team_id: Optional[int] = Field(default=None, foreign_key="team.id")

    # Symbolic sources. ref holds a team id, group name, match id or "#"-prefixed match number depending on type.
    source_home_type: Optional[str] = Field(default=None)  # team | group.pos | match.winner | match.loser
    source_home_ref: Optional[str] = Field(default=None)
    source_home_index: Optional[int] = Field(default=None)  # 1-based, group.pos only
    source_away_type: Optional[str] = Field(default=None)
    source_away_ref: Optional[str] = Field(default=None)
    source_away_index: Optional[int] = Field(default=None)

    winner_team_id: Optional[int] = Field(default=None, foreign_key="team.id")
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="matches")
    sets: List["MatchSet"] = Relationship(back_populates="match")
