"""
Match runtime: status transitions and set recording.

scheduled -> live -> finished (scheduled -> finished is allowed when results
are entered after the fact). finished is terminal: team ids, winner and sets
are immutable from then on. A match whose participants are not resolved yet
can't be started.
"""
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlmodel import Session, select

from app.exceptions import MatchStateError
from app.models.match import MATCH_FINISHED, MATCH_LIVE, MATCH_SCHEDULED, Match
from app.models.match_set import SET_FINISHED, SET_LIVE, SET_PENDING, MatchSet
from app.services.snapshot import normalize_set_row

VALID_STATUSES = (MATCH_SCHEDULED, MATCH_LIVE, MATCH_FINISHED)
VALID_SET_STATUSES = (SET_PENDING, SET_LIVE, SET_FINISHED)


def _require_participants(match: Match) -> None:
    if match.local_team_id is None or match.visitor_team_id is None:
        raise MatchStateError(f"Match {match.id} has an unresolved participant")


def derive_winner(match: Match, sets: List[MatchSet]) -> Optional[int]:
    """Winner by finished set wins; None on a level count."""
    finished = [s for s in sets if s.status == SET_FINISHED]
    local_wins = sum(1 for s in finished if s.local_runs > s.visitor_runs)
    visitor_wins = sum(1 for s in finished if s.visitor_runs > s.local_runs)
    if local_wins > visitor_wins:
        return match.local_team_id
    if visitor_wins > local_wins:
        return match.visitor_team_id
    return None


def match_sets(session: Session, match_id: int) -> List[MatchSet]:
    return session.exec(select(MatchSet).where(MatchSet.match_id == match_id).order_by(MatchSet.set_number)).all()


def change_status(session: Session, match: Match, new_status: str, winner_team_id: Optional[int] = None) -> Match:
    """Apply a status transition and commit. Raises MatchStateError on invalid transitions."""
    current = match.status or MATCH_SCHEDULED
    if new_status not in VALID_STATUSES:
        raise MatchStateError(f"Invalid status: {new_status}")
    if current == MATCH_FINISHED:
        raise MatchStateError("finished is terminal; match can't be changed")
    if new_status == MATCH_SCHEDULED and current != MATCH_SCHEDULED:
        raise MatchStateError("Cannot revert to scheduled")

    if new_status == MATCH_LIVE:
        _require_participants(match)
        match.status = MATCH_LIVE
        if match.started_at is None:
            match.started_at = datetime.utcnow()
    elif new_status == MATCH_FINISHED:
        _require_participants(match)
        winner = winner_team_id if winner_team_id is not None else derive_winner(match, match_sets(session, match.id))
        if winner is None:
            raise MatchStateError("winner_team_id required: finished sets don't decide a winner")
        if winner not in (match.local_team_id, match.visitor_team_id):
            raise MatchStateError(f"Team {winner} did not play match {match.id}")
        match.winner_team_id = winner
        match.status = MATCH_FINISHED
        match.completed_at = datetime.utcnow()
        if match.started_at is None:
            match.started_at = match.completed_at

    session.add(match)
    session.commit()
    session.refresh(match)
    return match


def record_set(session: Session, match: Match, row: Mapping[str, Any]) -> MatchSet:
    """Insert or update one set of a match. ``row`` may use legacy home_score/away_score keys."""
    if match.status == MATCH_FINISHED:
        raise MatchStateError("Sets of a finished match are immutable")
    _require_participants(match)

    data: Dict[str, Any] = dict(row)
    data["match_id"] = match.id
    record = normalize_set_row(data)
    if record.status not in VALID_SET_STATUSES:
        raise MatchStateError(f"Invalid set status: {record.status}")
    if record.local_runs < 0 or record.visitor_runs < 0:
        raise MatchStateError("Runs can't be negative")

    existing = session.exec(
        select(MatchSet).where(MatchSet.match_id == match.id, MatchSet.set_number == record.set_number)
    ).first()
    match_set = existing or MatchSet(match_id=match.id, set_number=record.set_number)
    match_set.status = record.status
    match_set.local_runs = record.local_runs
    match_set.visitor_runs = record.visitor_runs
    session.add(match_set)
    session.commit()
    session.refresh(match_set)
    return match_set
