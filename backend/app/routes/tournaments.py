from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from sqlmodel import Session, select

from app.database import get_session
from app.models.tournament import Tournament
from app.services.activity_log import list_activity
from app.services.tiebreaker import VALID_RULES

router = APIRouter()


class TiebreakerRuleIn(BaseModel):
    type: str
    order: int
    active: bool = True

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        if v not in VALID_RULES:
            raise ValueError(f"type must be one of {', '.join(VALID_RULES)}")
        return v


class TournamentCreate(BaseModel):
    name: str
    location: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    points_for_win: int = 3
    points_for_loss: int = 0
    sets_per_match: int = 1
    tiebreaker_rules: Optional[List[TiebreakerRuleIn]] = None
    random_draw_budget: int = 3

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name is required")
        return v.strip()

    @field_validator("sets_per_match")
    @classmethod
    def validate_sets(cls, v):
        if v not in (1, 3):
            raise ValueError("sets_per_match must be 1 or 3")
        return v

    @field_validator("random_draw_budget")
    @classmethod
    def validate_budget(cls, v):
        if v < 0:
            raise ValueError("random_draw_budget must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_date_range(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be >= start_date")
        return self


class TournamentUpdate(BaseModel):
    name: Optional[str] = None
    location: Optional[str] = None
    points_for_win: Optional[int] = None
    points_for_loss: Optional[int] = None
    sets_per_match: Optional[int] = None
    tiebreaker_rules: Optional[List[TiebreakerRuleIn]] = None
    random_draw_budget: Optional[int] = None


class TournamentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    location: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: str
    points_for_win: int
    points_for_loss: int
    sets_per_match: int
    tiebreaker_rules: Optional[List[Dict[str, Any]]] = None
    random_draw_budget: int
    random_draws_used: int
    created_at: datetime


class ActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    activity_type: str
    message: str
    payload: Optional[Dict[str, Any]] = None
    created_at: datetime


def get_tournament_or_404(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


@router.get("/tournaments", response_model=List[TournamentResponse])
def list_tournaments(session: Session = Depends(get_session)):
    """List all tournaments"""
    return session.exec(select(Tournament).order_by(Tournament.id)).all()


@router.post("/tournaments", response_model=TournamentResponse, status_code=201)
def create_tournament(tournament_data: TournamentCreate, session: Session = Depends(get_session)):
    data = tournament_data.model_dump()
    if tournament_data.tiebreaker_rules is not None:
        data["tiebreaker_rules"] = [r.model_dump() for r in tournament_data.tiebreaker_rules]
    tournament = Tournament(**data)
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.get("/tournaments/{tournament_id}", response_model=TournamentResponse)
def get_tournament(tournament_id: int, session: Session = Depends(get_session)):
    return get_tournament_or_404(session, tournament_id)


@router.patch("/tournaments/{tournament_id}", response_model=TournamentResponse)
def update_tournament(tournament_id: int, payload: TournamentUpdate, session: Session = Depends(get_session)):
    """Update scoring config, tiebreaker rule chain, or draw budget."""
    tournament = get_tournament_or_404(session, tournament_id)

    updates = payload.model_dump(exclude_unset=True)
    if "tiebreaker_rules" in updates and payload.tiebreaker_rules is not None:
        updates["tiebreaker_rules"] = [r.model_dump() for r in payload.tiebreaker_rules]
    if updates.get("random_draw_budget") is not None and updates["random_draw_budget"] < 0:
        raise HTTPException(status_code=422, detail="random_draw_budget must be >= 0")

    for key, value in updates.items():
        setattr(tournament, key, value)
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.get("/tournaments/{tournament_id}/activity", response_model=List[ActivityResponse])
def get_activity(
    tournament_id: int,
    limit: int = Query(default=100, ge=1, le=1000),
    session: Session = Depends(get_session),
):
    """Activity log, most recent first."""
    get_tournament_or_404(session, tournament_id)
    return list_activity(session, tournament_id, limit=limit)
