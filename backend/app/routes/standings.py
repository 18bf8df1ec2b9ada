"""
Standings & progression routes.
Standings are always recomputed from the current rows; nothing is cached.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlmodel import Session

from app.database import get_session
from app.exceptions import PersistenceError
from app.routes.tournaments import get_tournament_or_404
from app.services.progression_service import run_progression_pass
from app.services.snapshot import load_snapshot
from app.services.source_resolver import group_members
from app.services.standings import compute_standings, find_tied_groups

router = APIRouter()


class StandingResponse(BaseModel):
    position: int
    team_id: int
    name: str
    group_name: Optional[str] = None
    games_played: int
    wins: int
    losses: int
    points: int
    runs_scored: int
    runs_allowed: int
    run_diff: int
    seed: int


class TiedGroupResponse(BaseModel):
    group_name: Optional[str] = None
    points: int
    original_rank: int
    team_ids: List[int]


class StandingsResponse(BaseModel):
    tournament_id: int
    phase_id: Optional[int] = None
    group: Optional[str] = None
    standings: List[StandingResponse]
    tied_groups: List[TiedGroupResponse]


class ProgressionRunResponse(BaseModel):
    tournament_id: int
    updated_count: int
    patches: List[Dict[str, Any]]
    group_backfill: Dict[str, str]
    unresolved_slots: int
    settled: bool = True
    transition: Optional[Dict[str, Optional[int]]] = None


@router.get("/tournaments/{tournament_id}/standings", response_model=StandingsResponse)
def get_standings(
    tournament_id: int,
    phase_id: Optional[int] = Query(default=None),
    group: Optional[str] = Query(default=None),
    session: Session = Depends(get_session),
):
    """
    Ordered standings.

    - ``phase_id`` restricts which matches count
    - ``group`` restricts which teams are ranked (group name or group id)

    ``tied_groups`` lists equal-points runs that still need a tiebreak.
    """
    get_tournament_or_404(session, tournament_id)
    snapshot = load_snapshot(session, tournament_id)

    teams = snapshot.teams
    if group is not None:
        teams = group_members(snapshot, group)
        if teams is None:
            raise HTTPException(status_code=404, detail=f"Group '{group}' not found")

    records = compute_standings(teams, snapshot.matches, snapshot.sets, phase_id, snapshot.config)
    standings = []
    for position, record in enumerate(records, start=1):
        standings.append(StandingResponse(position=position, **record.to_dict()))
    return StandingsResponse(
        tournament_id=tournament_id,
        phase_id=phase_id,
        group=group,
        standings=standings,
        tied_groups=[
            TiedGroupResponse(
                group_name=c.group_name, points=c.points, original_rank=c.original_rank, team_ids=c.team_ids
            )
            for c in find_tied_groups(records)
        ],
    )


@router.post("/tournaments/{tournament_id}/progression/run", response_model=ProgressionRunResponse)
def run_progression(tournament_id: int, session: Session = Depends(get_session)):
    """Run one progression pass: resolve pending sources, then advance the phase if complete."""
    get_tournament_or_404(session, tournament_id)
    try:
        result = run_progression_pass(session, tournament_id)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return result.to_dict()
