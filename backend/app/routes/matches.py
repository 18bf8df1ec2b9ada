"""
Match runtime routes: create matches with symbolic sources, status transitions, set entry.
When a match finishes, a progression pass fills downstream slots and may advance the phase.
"""
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, model_validator
from sqlmodel import Session, select

from app.database import get_session
from app.exceptions import MatchStateError, PersistenceError
from app.models.match import (
    MATCH_FINISHED,
    MATCH_NUMBER_PREFIX,
    SOURCE_GROUP_POS,
    SOURCE_MATCH_LOSER,
    SOURCE_MATCH_WINNER,
    SOURCE_TEAM,
    Match,
)
from app.models.phase import Phase
from app.models.team import Team
from app.routes.tournaments import get_tournament_or_404
from app.services.activity_log import log_activity
from app.services.fixture_generator import describe_source, next_match_number
from app.services.match_runtime import change_status, match_sets, record_set
from app.services.progression_service import run_progression_pass
from app.services.snapshot import SourceRef, source_from_columns

router = APIRouter()

SOURCE_TYPES = (SOURCE_TEAM, SOURCE_GROUP_POS, SOURCE_MATCH_WINNER, SOURCE_MATCH_LOSER)


class SourceRefIn(BaseModel):
    type: str
    ref: str
    index: Optional[int] = None

    @model_validator(mode="after")
    def validate_source(self):
        if self.type not in SOURCE_TYPES:
            raise ValueError(f"type must be one of {', '.join(SOURCE_TYPES)}")
        if self.type == SOURCE_GROUP_POS and (self.index is None or self.index < 1):
            raise ValueError("group.pos sources need a 1-based index")
        if self.type in (SOURCE_MATCH_WINNER, SOURCE_MATCH_LOSER):
            number = self.ref[len(MATCH_NUMBER_PREFIX):] if self.ref.startswith(MATCH_NUMBER_PREFIX) else self.ref
            if not number.isdigit():
                raise ValueError("match sources take a match id or a \"#\"-prefixed match number")
        return self

    def to_source(self) -> SourceRef:
        return SourceRef(type=self.type, ref=self.ref, index=self.index)


class MatchCreate(BaseModel):
    phase_id: int
    name: Optional[str] = None
    match_number: Optional[int] = None
    group_name: Optional[str] = None
    round_index: int = 1
    source_home: Optional[SourceRefIn] = None
    source_away: Optional[SourceRefIn] = None


class MatchRuntimeUpdate(BaseModel):
    status: str
    winner_team_id: Optional[int] = None


class SetIn(BaseModel):
    set_number: int = 1
    status: str = "finished"
    local_runs: Optional[int] = None
    visitor_runs: Optional[int] = None
    # Legacy score-entry keys
    home_score: Optional[int] = None
    away_score: Optional[int] = None


class SetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    match_id: int
    set_number: int
    status: str
    local_runs: int
    visitor_runs: int


class MatchResponse(BaseModel):
    id: int
    tournament_id: int
    phase_id: int
    match_number: Optional[int] = None
    name: Optional[str] = None
    group_name: Optional[str] = None
    round_index: int
    status: str
    local_team_id: Optional[int] = None
    visitor_team_id: Optional[int] = None
    source_home: Optional[Dict] = None
    source_away: Optional[Dict] = None
    home_label: str
    away_label: str
    winner_team_id: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class MatchUpdateResponse(BaseModel):
    match: MatchResponse
    advanced_count: int = 0
    transition: Optional[Dict[str, Optional[int]]] = None


def build_match_responses(session: Session, tournament_id: int, matches: List[Match]) -> List[MatchResponse]:
    teams = session.exec(select(Team).where(Team.tournament_id == tournament_id)).all()
    team_names = {t.id: t.name for t in teams}
    all_matches = session.exec(select(Match).where(Match.tournament_id == tournament_id)).all()
    match_numbers = {m.id: m.match_number for m in all_matches}

    responses = []
    for m in matches:
        home = source_from_columns(m.source_home_type, m.source_home_ref, m.source_home_index)
        away = source_from_columns(m.source_away_type, m.source_away_ref, m.source_away_index)
        responses.append(
            MatchResponse(
                id=m.id,
                tournament_id=m.tournament_id,
                phase_id=m.phase_id,
                match_number=m.match_number,
                name=m.name,
                group_name=m.group_name,
                round_index=m.round_index,
                status=m.status,
                local_team_id=m.local_team_id,
                visitor_team_id=m.visitor_team_id,
                source_home=home.to_dict() if home else None,
                source_away=away.to_dict() if away else None,
                home_label=team_names.get(m.local_team_id) or describe_source(home, team_names, match_numbers),
                away_label=team_names.get(m.visitor_team_id) or describe_source(away, team_names, match_numbers),
                winner_team_id=m.winner_team_id,
                started_at=m.started_at,
                completed_at=m.completed_at,
            )
        )
    return responses


def _get_match_or_404(session: Session, tournament_id: int, match_id: int) -> Match:
    match = session.get(Match, match_id)
    if not match or match.tournament_id != tournament_id:
        raise HTTPException(status_code=404, detail="Match not found")
    return match


@router.get("/tournaments/{tournament_id}/matches", response_model=List[MatchResponse])
def list_matches(
    tournament_id: int,
    phase_id: Optional[int] = Query(default=None),
    session: Session = Depends(get_session),
):
    """Matches in stable order: phase, match_number, id."""
    get_tournament_or_404(session, tournament_id)
    query = select(Match).where(Match.tournament_id == tournament_id)
    if phase_id is not None:
        query = query.where(Match.phase_id == phase_id)
    matches = session.exec(query.order_by(Match.phase_id, Match.match_number, Match.id)).all()
    return build_match_responses(session, tournament_id, matches)


@router.post("/tournaments/{tournament_id}/matches", response_model=MatchResponse, status_code=201)
def create_match(tournament_id: int, payload: MatchCreate, session: Session = Depends(get_session)):
    """Create a match. Literal team sources fill the team slot right away; others wait for resolution."""
    get_tournament_or_404(session, tournament_id)
    phase = session.get(Phase, payload.phase_id)
    if not phase or phase.tournament_id != tournament_id:
        raise HTTPException(status_code=422, detail="phase_id does not belong to this tournament")

    match = Match(
        tournament_id=tournament_id,
        phase_id=phase.id,
        match_number=payload.match_number or next_match_number(session, tournament_id),
        name=payload.name,
        group_name=payload.group_name,
        round_index=payload.round_index,
    )
    for side, slot, source in (
        ("home", "local_team_id", payload.source_home),
        ("away", "visitor_team_id", payload.source_away),
    ):
        if source is None:
            continue
        setattr(match, f"source_{side}_type", source.type)
        setattr(match, f"source_{side}_ref", source.ref)
        setattr(match, f"source_{side}_index", source.index)
        if source.type == SOURCE_TEAM:
            team = session.get(Team, int(source.ref)) if source.ref.isdigit() else None
            if not team or team.tournament_id != tournament_id:
                raise HTTPException(status_code=422, detail=f"Team {source.ref} does not belong to this tournament")
            setattr(match, slot, team.id)

    session.add(match)
    session.commit()
    session.refresh(match)
    return build_match_responses(session, tournament_id, [match])[0]


@router.get("/tournaments/{tournament_id}/matches/{match_id}", response_model=MatchResponse)
def get_match(tournament_id: int, match_id: int, session: Session = Depends(get_session)):
    match = _get_match_or_404(session, tournament_id, match_id)
    return build_match_responses(session, tournament_id, [match])[0]


@router.patch("/tournaments/{tournament_id}/matches/{match_id}", response_model=MatchUpdateResponse)
def update_match_runtime(
    tournament_id: int,
    match_id: int,
    payload: MatchRuntimeUpdate,
    session: Session = Depends(get_session),
) -> MatchUpdateResponse:
    """Update match status. When it becomes finished, run a progression pass."""
    match = _get_match_or_404(session, tournament_id, match_id)
    try:
        match = change_status(session, match, payload.status, payload.winner_team_id)
    except MatchStateError as e:
        raise HTTPException(status_code=422, detail=str(e))

    advanced_count = 0
    transition = None
    if match.status == MATCH_FINISHED:
        log_activity(
            session,
            tournament_id,
            "match_end",
            f"Match #{match.match_number} finished",
            {"match_id": match.id, "winner_team_id": match.winner_team_id},
        )
        try:
            result = run_progression_pass(session, tournament_id)
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))
        advanced_count = result.updated_count
        transition = result.transition.to_dict() if result.transition else None
    elif match.status == "live":
        log_activity(session, tournament_id, "match_start", f"Match #{match.match_number} started", {"match_id": match.id})

    session.refresh(match)
    return MatchUpdateResponse(
        match=build_match_responses(session, tournament_id, [match])[0],
        advanced_count=advanced_count,
        transition=transition,
    )


@router.get("/tournaments/{tournament_id}/matches/{match_id}/sets", response_model=List[SetResponse])
def list_sets(tournament_id: int, match_id: int, session: Session = Depends(get_session)):
    _get_match_or_404(session, tournament_id, match_id)
    return match_sets(session, match_id)


@router.post("/tournaments/{tournament_id}/matches/{match_id}/sets", response_model=SetResponse, status_code=201)
def post_set(tournament_id: int, match_id: int, payload: SetIn, session: Session = Depends(get_session)):
    """Record (or overwrite) one set. Accepts local_runs/visitor_runs or legacy home_score/away_score."""
    match = _get_match_or_404(session, tournament_id, match_id)
    try:
        match_set = record_set(session, match, payload.model_dump(exclude_none=True))
    except MatchStateError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if match_set.status == "finished":
        log_activity(
            session,
            tournament_id,
            "set_end",
            f"Set {match_set.set_number} of match #{match.match_number} finished",
            {"match_id": match.id, "local_runs": match_set.local_runs, "visitor_runs": match_set.visitor_runs},
        )
    return match_set
