"""
Team Management API Routes
Teams belong to a tournament; group_name is optional and backfilled from phase groups.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.database import get_session
from app.models.team import Team
from app.routes.tournaments import get_tournament_or_404

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class TeamCreateRequest(BaseModel):
    name: str
    short_name: Optional[str] = None
    group_name: Optional[str] = None


class TeamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    name: str
    short_name: Optional[str] = None
    group_name: Optional[str] = None
    seed: int = 0
    created_at: datetime


# ============================================================================
# Team Endpoints
# ============================================================================


@router.get("/tournaments/{tournament_id}/teams", response_model=List[TeamResponse])
def get_teams(tournament_id: int, session: Session = Depends(get_session)):
    """All teams for a tournament, by id."""
    get_tournament_or_404(session, tournament_id)
    return session.exec(select(Team).where(Team.tournament_id == tournament_id).order_by(Team.id)).all()


@router.post("/tournaments/{tournament_id}/teams", response_model=TeamResponse, status_code=201)
def create_team(tournament_id: int, request: TeamCreateRequest, session: Session = Depends(get_session)):
    """
    Create a team.

    Constraints:
    - (tournament_id, name) must be unique
    - seed is never set here; only tiebreaker finalization writes it
    """
    get_tournament_or_404(session, tournament_id)

    team = Team(
        tournament_id=tournament_id,
        name=request.name,
        short_name=request.short_name,
        group_name=request.group_name,
    )
    try:
        session.add(team)
        session.commit()
        session.refresh(team)
        return team
    except IntegrityError:
        session.rollback()
        raise HTTPException(
            status_code=409, detail=f"Team with name '{request.name}' already exists for this tournament"
        )
