from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import JSON
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.tournament import Tournament

PHASE_PENDING = "pending"
PHASE_ACTIVE = "active"
PHASE_FINISHED = "finished"


class Phase(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("tournament_id", "order", name="uq_tournament_phase_order"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    name: str
    phase_type: str = Field(default="group")  # "group" | "elimination" | "placement"
    order: int
    status: str = Field(default=PHASE_PENDING)  # pending | active | finished
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="phases")
    groups: List["PhaseGroup"] = Relationship(back_populates="phase")


class PhaseGroup(SQLModel, table=True):
    __tablename__ = "phase_group"
    __table_args__ = (SAUniqueConstraint("phase_id", "name", name="uq_phase_group_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    phase_id: int = Field(foreign_key="phase.id", index=True)
    name: str  # "A", "B", ...
    # Ordered team ids; fixed once the phase is active
    team_ids: List[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

    phase: Phase = Relationship(back_populates="groups")
