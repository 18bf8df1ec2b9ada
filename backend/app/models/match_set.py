from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.match import Match

SET_PENDING = "pending"
SET_LIVE = "live"
SET_FINISHED = "finished"


class MatchSet(SQLModel, table=True):
    __tablename__ = "match_set"
    __table_args__ = (SAUniqueConstraint("match_id", "set_number", name="uq_match_set_number"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    match_id: int = Field(foreign_key="match.id", index=True)
    set_number: int
    status: str = Field(default=SET_PENDING)  # pending | live | finished
    local_runs: int = Field(default=0)
    visitor_runs: int = Field(default=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    match: "Match" = Relationship(back_populates="sets")
