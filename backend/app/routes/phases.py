"""
Phase API Routes
Phases (with their groups), tournament start, and fixture generation.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, model_validator
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.database import get_session
from app.models.match import Match
from app.models.phase import PHASE_PENDING, Phase, PhaseGroup
from app.models.team import Team
from app.routes.matches import MatchResponse, SourceRefIn, build_match_responses
from app.routes.tournaments import get_tournament_or_404
from app.services.fixture_generator import create_bracket_fixtures, create_group_fixtures, distribute_teams
from app.services.progression_service import start_tournament

router = APIRouter()


class GroupIn(BaseModel):
    name: str
    team_ids: List[int] = []


class PhaseCreate(BaseModel):
    name: str
    phase_type: str = "group"
    order: int
    groups: Optional[List[GroupIn]] = None
    # Alternative to explicit groups: deal these teams (default: all) into N groups
    number_of_groups: Optional[int] = None
    team_ids: Optional[List[int]] = None

    @model_validator(mode="after")
    def validate_phase(self):
        if self.phase_type not in ("group", "elimination", "placement"):
            raise ValueError("phase_type must be group, elimination or placement")
        if self.groups is not None and self.number_of_groups is not None:
            raise ValueError("Provide either groups or number_of_groups, not both")
        return self


class GroupResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    team_ids: List[int]


class PhaseResponse(BaseModel):
    id: int
    tournament_id: int
    name: str
    phase_type: str
    order: int
    status: str
    groups: List[GroupResponse] = []


class GroupsReplace(BaseModel):
    groups: List[GroupIn]


class FixturesRequest(BaseModel):
    # Elimination/placement phases: entries in seed order
    entries: Optional[List[SourceRefIn]] = None


class StartResponse(BaseModel):
    activated_phase_id: Optional[int] = None


def _phase_response(session: Session, phase: Phase) -> PhaseResponse:
    groups = session.exec(select(PhaseGroup).where(PhaseGroup.phase_id == phase.id).order_by(PhaseGroup.name)).all()
    return PhaseResponse(
        id=phase.id,
        tournament_id=phase.tournament_id,
        name=phase.name,
        phase_type=phase.phase_type,
        order=phase.order,
        status=phase.status,
        groups=[GroupResponse.model_validate(g) for g in groups],
    )


def _get_phase_or_404(session: Session, tournament_id: int, phase_id: int) -> Phase:
    phase = session.get(Phase, phase_id)
    if not phase or phase.tournament_id != tournament_id:
        raise HTTPException(status_code=404, detail="Phase not found")
    return phase


def _validate_group_teams(session: Session, tournament_id: int, groups: List[GroupIn]) -> None:
    seen = set()
    for group in groups:
        for team_id in group.team_ids:
            team = session.get(Team, team_id)
            if not team or team.tournament_id != tournament_id:
                raise HTTPException(status_code=422, detail=f"Team {team_id} does not belong to this tournament")
            if team_id in seen:
                raise HTTPException(status_code=422, detail=f"Team {team_id} appears in more than one group")
            seen.add(team_id)


@router.get("/tournaments/{tournament_id}/phases", response_model=List[PhaseResponse])
def list_phases(tournament_id: int, session: Session = Depends(get_session)):
    get_tournament_or_404(session, tournament_id)
    phases = session.exec(select(Phase).where(Phase.tournament_id == tournament_id).order_by(Phase.order)).all()
    return [_phase_response(session, p) for p in phases]


@router.post("/tournaments/{tournament_id}/phases", response_model=PhaseResponse, status_code=201)
def create_phase(tournament_id: int, payload: PhaseCreate, session: Session = Depends(get_session)):
    """Create a pending phase. Groups are given explicitly or dealt from teams."""
    get_tournament_or_404(session, tournament_id)

    groups = payload.groups or []
    if payload.number_of_groups is not None:
        team_ids = payload.team_ids
        if team_ids is None:
            team_ids = [t.id for t in session.exec(select(Team).where(Team.tournament_id == tournament_id).order_by(Team.id)).all()]
        try:
            groups = [GroupIn(name=name, team_ids=ids) for name, ids in distribute_teams(team_ids, payload.number_of_groups)]
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
    _validate_group_teams(session, tournament_id, groups)

    phase = Phase(
        tournament_id=tournament_id,
        name=payload.name,
        phase_type=payload.phase_type,
        order=payload.order,
        status=PHASE_PENDING,
    )
    try:
        session.add(phase)
        session.flush()
        for group in groups:
            session.add(PhaseGroup(phase_id=phase.id, name=group.name, team_ids=list(group.team_ids)))
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=409, detail=f"A phase with order {payload.order} already exists")
    session.refresh(phase)
    return _phase_response(session, phase)


@router.put("/tournaments/{tournament_id}/phases/{phase_id}/groups", response_model=PhaseResponse)
def replace_groups(tournament_id: int, phase_id: int, payload: GroupsReplace, session: Session = Depends(get_session)):
    """Replace group membership. Only allowed while the phase is pending."""
    phase = _get_phase_or_404(session, tournament_id, phase_id)
    if phase.status != PHASE_PENDING:
        raise HTTPException(status_code=409, detail="Group membership is fixed once a phase has started")
    _validate_group_teams(session, tournament_id, payload.groups)

    for group in session.exec(select(PhaseGroup).where(PhaseGroup.phase_id == phase.id)).all():
        session.delete(group)
    session.flush()
    for group in payload.groups:
        session.add(PhaseGroup(phase_id=phase.id, name=group.name, team_ids=list(group.team_ids)))
    session.commit()
    return _phase_response(session, phase)


@router.post("/tournaments/{tournament_id}/phases/start", response_model=StartResponse)
def start_phases(tournament_id: int, session: Session = Depends(get_session)):
    """Activate the first phase. No-op (null id) if a phase has already started."""
    get_tournament_or_404(session, tournament_id)
    return StartResponse(activated_phase_id=start_tournament(session, tournament_id))


@router.post(
    "/tournaments/{tournament_id}/phases/{phase_id}/fixtures",
    response_model=List[MatchResponse],
    status_code=201,
)
def generate_fixtures(
    tournament_id: int,
    phase_id: int,
    payload: FixturesRequest,
    session: Session = Depends(get_session),
):
    """
    Generate matches for a phase.

    - group phases: round robin inside every group
    - elimination/placement phases: single elimination bracket from ``entries`` (seed order)

    Refuses to run twice for the same phase.
    """
    phase = _get_phase_or_404(session, tournament_id, phase_id)
    existing = session.exec(select(Match).where(Match.phase_id == phase.id)).first()
    if existing:
        raise HTTPException(status_code=409, detail="Phase already has matches")

    if phase.phase_type == "group":
        created = create_group_fixtures(session, phase)
    else:
        if not payload.entries:
            raise HTTPException(status_code=422, detail="entries are required for bracket phases")
        try:
            created = create_bracket_fixtures(session, phase, [e.to_source() for e in payload.entries])
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
    return build_match_responses(session, tournament_id, created)
