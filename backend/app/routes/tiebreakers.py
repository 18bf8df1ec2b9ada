"""
Tiebreaker routes.

A session is opened over the tied groups found in the current standings (or
an explicit list), worked group by group, and finalized into Team.seed.
Sessions live in process memory; only seeds and the draw counter are stored.
"""
import logging
import os
import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlmodel import Session

from app.database import get_session
from app.exceptions import DrawBudgetExhausted, PersistenceError, TiebreakerError, TiebreakerNotResolved
from app.routes.tournaments import get_tournament_or_404
from app.services import tiebreaker as tb
from app.services.activity_log import log_activity
from app.services.progression_service import persist_seed_assignments, record_draw_usage, reset_draw_budget
from app.services.snapshot import load_snapshot
from app.services.standings import TiedGroupCandidate, compute_standings, find_tied_groups
from app.services.tiebreaker_store import tiebreaker_sessions

logger = logging.getLogger(__name__)

router = APIRouter()

DRAW_DELAY_MS = int(os.getenv("TIEBREAK_DRAW_DELAY_MS", "0"))


# ============================================================================
# Request/Response Models
# ============================================================================


class TiedGroupIn(BaseModel):
    group_name: Optional[str] = None
    points: int = 0
    original_rank: int = Field(ge=1)
    team_ids: List[int]

    @field_validator("team_ids")
    @classmethod
    def validate_team_ids(cls, v):
        if len(v) < 2:
            raise ValueError("A tied group needs at least two teams")
        if len(set(v)) != len(v):
            raise ValueError("team_ids must be unique")
        return v


class SessionCreate(BaseModel):
    phase_id: Optional[int] = None
    # Explicit groups; when omitted they are detected from current standings
    groups: Optional[List[TiedGroupIn]] = None


class ApplyRequest(BaseModel):
    until_draw: bool = False


class MoveRequest(BaseModel):
    team_id: int
    direction: str

    @field_validator("direction")
    @classmethod
    def validate_direction(cls, v):
        if v not in ("up", "down"):
            raise ValueError("direction must be 'up' or 'down'")
        return v


class BudgetReset(BaseModel):
    random_draw_budget: Optional[int] = Field(default=None, ge=0)


class SeedResponse(BaseModel):
    team_id: int
    rank: int


class FinalizeResponse(BaseModel):
    session_id: str
    seeds: List[SeedResponse]
    teams_updated: int


class BudgetResponse(BaseModel):
    tournament_id: int
    random_draw_budget: int
    random_draws_used: int


# ============================================================================
# Helpers
# ============================================================================


def _get_session_or_404(tournament_id: int, session_id: str) -> tb.TiebreakerSession:
    tie_session = tiebreaker_sessions.get(tournament_id, session_id)
    if tie_session is None:
        raise HTTPException(status_code=404, detail="Tiebreaker session not found")
    return tie_session


def _check_group_index(tie_session: tb.TiebreakerSession, group_index: int) -> None:
    if group_index < 0 or group_index >= len(tie_session.groups):
        raise HTTPException(status_code=404, detail=f"No tied group at index {group_index}")


def _sync_budget(db: Session, tie_session: tb.TiebreakerSession) -> None:
    """The tournament row is authoritative for budget and draws used (reset may happen mid-session)."""
    tournament = get_tournament_or_404(db, tie_session.tournament_id)
    tie_session.draw_budget = tournament.random_draw_budget
    tie_session.draws_used = tournament.random_draws_used or 0


def _tiebreak_error(e: TiebreakerError) -> HTTPException:
    if isinstance(e, DrawBudgetExhausted):
        return HTTPException(
            status_code=409,
            detail={"message": str(e), "random_draw_budget": e.budget, "random_draws_used": e.used},
        )
    return HTTPException(status_code=409, detail=str(e))


def _persist_draw(db: Session, tie_session: tb.TiebreakerSession, group_index: int, kind: str) -> None:
    try:
        record_draw_usage(db, tie_session.tournament_id, tie_session.draws_used)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    group = tie_session.groups[group_index]
    log_activity(
        db,
        tie_session.tournament_id,
        "tiebreak_draw",
        f"{kind.capitalize()} draw for group {group.group_name or '-'}",
        {"session_id": tie_session.session_id, "teams": list(group.teams), "draws_used": tie_session.draws_used},
    )


# ============================================================================
# Session Endpoints
# ============================================================================


@router.post("/tournaments/{tournament_id}/tiebreakers/sessions", status_code=201)
def create_tiebreak_session(
    tournament_id: int, payload: SessionCreate, db: Session = Depends(get_session)
) -> Dict[str, Any]:
    get_tournament_or_404(db, tournament_id)
    snapshot = load_snapshot(db, tournament_id)

    if payload.groups is not None:
        known = {t.id for t in snapshot.teams}
        for group in payload.groups:
            unknown = [tid for tid in group.team_ids if tid not in known]
            if unknown:
                raise HTTPException(status_code=422, detail=f"Teams {unknown} do not belong to this tournament")
        candidates = [
            TiedGroupCandidate(
                group_name=g.group_name, points=g.points, original_rank=g.original_rank, team_ids=list(g.team_ids)
            )
            for g in payload.groups
        ]
    else:
        standings = compute_standings(
            snapshot.teams, snapshot.matches, snapshot.sets, payload.phase_id, snapshot.config
        )
        candidates = find_tied_groups(standings)

    if not candidates:
        raise HTTPException(status_code=422, detail="No tied groups to resolve")

    try:
        tie_session = tb.open_session(snapshot, candidates)
    except TiebreakerError as e:
        raise HTTPException(status_code=422, detail=str(e))
    tiebreaker_sessions.put(tie_session)
    logger.info(
        "Opened tiebreaker session %s for tournament %s (%d group(s))",
        tie_session.session_id,
        tournament_id,
        len(tie_session.groups),
    )
    return tie_session.to_dict()


@router.get("/tournaments/{tournament_id}/tiebreakers/sessions/{session_id}")
def get_tiebreak_session(tournament_id: int, session_id: str, db: Session = Depends(get_session)) -> Dict[str, Any]:
    tie_session = _get_session_or_404(tournament_id, session_id)
    _sync_budget(db, tie_session)
    return tie_session.to_dict()


@router.post("/tournaments/{tournament_id}/tiebreakers/sessions/{session_id}/groups/{group_index}/apply")
def apply_rule(
    tournament_id: int,
    session_id: str,
    group_index: int,
    payload: Optional[ApplyRequest] = None,
) -> Dict[str, Any]:
    """Apply the active rule once (or every non-random rule with ``until_draw``)."""
    tie_session = _get_session_or_404(tournament_id, session_id)
    _check_group_index(tie_session, group_index)
    try:
        if payload is not None and payload.until_draw:
            tb.apply_rules_until_draw(tie_session, group_index)
        else:
            tb.apply_next_rule(tie_session, group_index)
    except TiebreakerError as e:
        raise _tiebreak_error(e)
    return tie_session.to_dict()


@router.post("/tournaments/{tournament_id}/tiebreakers/sessions/{session_id}/groups/{group_index}/draw")
def automatic_draw(
    tournament_id: int, session_id: str, group_index: int, db: Session = Depends(get_session)
) -> Dict[str, Any]:
    """Automatic random draw. Consumes one unit of the tournament's draw budget."""
    tie_session = _get_session_or_404(tournament_id, session_id)
    _check_group_index(tie_session, group_index)
    _sync_budget(db, tie_session)
    try:
        tb.automatic_draw(tie_session, group_index)
    except TiebreakerError as e:
        raise _tiebreak_error(e)
    if DRAW_DELAY_MS > 0:
        # Paces the reveal for the organizer's screen; the result is already fixed.
        time.sleep(DRAW_DELAY_MS / 1000.0)
    _persist_draw(db, tie_session, group_index, "automatic")
    return tie_session.to_dict()


@router.post("/tournaments/{tournament_id}/tiebreakers/sessions/{session_id}/groups/{group_index}/manual/start")
def start_manual_draw(
    tournament_id: int, session_id: str, group_index: int, db: Session = Depends(get_session)
) -> Dict[str, Any]:
    tie_session = _get_session_or_404(tournament_id, session_id)
    _check_group_index(tie_session, group_index)
    _sync_budget(db, tie_session)
    try:
        tb.begin_manual_draw(tie_session, group_index)
    except TiebreakerError as e:
        raise _tiebreak_error(e)
    return tie_session.to_dict()


@router.post("/tournaments/{tournament_id}/tiebreakers/sessions/{session_id}/groups/{group_index}/manual/move")
def move_team(tournament_id: int, session_id: str, group_index: int, payload: MoveRequest) -> Dict[str, Any]:
    tie_session = _get_session_or_404(tournament_id, session_id)
    _check_group_index(tie_session, group_index)
    try:
        tb.move_team(tie_session, group_index, payload.team_id, -1 if payload.direction == "up" else 1)
    except TiebreakerError as e:
        raise _tiebreak_error(e)
    return tie_session.to_dict()


@router.post("/tournaments/{tournament_id}/tiebreakers/sessions/{session_id}/groups/{group_index}/manual/confirm")
def confirm_manual_draw(
    tournament_id: int, session_id: str, group_index: int, db: Session = Depends(get_session)
) -> Dict[str, Any]:
    """Lock in the organizer's order. Consumes one unit of the draw budget."""
    tie_session = _get_session_or_404(tournament_id, session_id)
    _check_group_index(tie_session, group_index)
    _sync_budget(db, tie_session)
    try:
        tb.confirm_manual_draw(tie_session, group_index)
    except TiebreakerError as e:
        raise _tiebreak_error(e)
    _persist_draw(db, tie_session, group_index, "manual")
    return tie_session.to_dict()


@router.post("/tournaments/{tournament_id}/tiebreakers/sessions/{session_id}/groups/{group_index}/reset")
def reset_group(tournament_id: int, session_id: str, group_index: int) -> Dict[str, Any]:
    tie_session = _get_session_or_404(tournament_id, session_id)
    _check_group_index(tie_session, group_index)
    tb.reset_group(tie_session, group_index)
    return tie_session.to_dict()


@router.post(
    "/tournaments/{tournament_id}/tiebreakers/sessions/{session_id}/finalize", response_model=FinalizeResponse
)
def finalize_session(tournament_id: int, session_id: str, db: Session = Depends(get_session)):
    """Write ranks as Team.seed and close the session. 409 while any group is unresolved."""
    tie_session = _get_session_or_404(tournament_id, session_id)
    try:
        assignments = tb.finalize(tie_session)
    except TiebreakerNotResolved as e:
        raise HTTPException(status_code=409, detail=str(e))
    try:
        changed = persist_seed_assignments(db, tournament_id, assignments)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))

    tiebreaker_sessions.discard(session_id)
    seeds = [SeedResponse(team_id=a.team_id, rank=a.rank) for a in assignments]
    log_activity(
        db,
        tournament_id,
        "tiebreak_finalize",
        f"Tiebreak finalized for {len(assignments)} team(s)",
        {"session_id": session_id, "seeds": [s.model_dump() for s in seeds]},
    )
    return FinalizeResponse(session_id=session_id, seeds=seeds, teams_updated=changed)


@router.post("/tournaments/{tournament_id}/tiebreakers/budget/reset", response_model=BudgetResponse)
def reset_budget(tournament_id: int, payload: Optional[BudgetReset] = None, db: Session = Depends(get_session)):
    """Clear draws used, optionally with a new budget."""
    get_tournament_or_404(db, tournament_id)
    try:
        tournament = reset_draw_budget(db, tournament_id, payload.random_draw_budget if payload else None)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return BudgetResponse(
        tournament_id=tournament.id,
        random_draw_budget=tournament.random_draw_budget,
        random_draws_used=tournament.random_draws_used,
    )
