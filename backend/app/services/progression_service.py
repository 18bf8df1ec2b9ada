"""
Progression pass: snapshot -> source resolution -> write-back -> phase advancement.

Safe to call any number of times. Standings are recomputed from scratch and
resolution writes are idempotent, so the only hazard is two passes racing on
the same phase transition. That is guarded twice: a per-tournament lock for
callers in this process, and a compare-and-swap on ``phase.status`` for
everything else.
"""
from __future__ import annotations

import logging
import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from app.exceptions import PersistenceError
from app.models.match import MATCH_FINISHED, Match
from app.models.phase import PHASE_ACTIVE, PHASE_FINISHED, PHASE_PENDING, Phase
from app.models.team import Team
from app.models.tournament import Tournament
from app.services.activity_log import log_activity
from app.services.phase_advancement import PhaseTransition, evaluate_phase_advancement, first_startable_phase
from app.services.snapshot import load_snapshot
from app.services.source_resolver import MatchPatch, ResolutionResult, resolve_pending
from app.services.tiebreaker import SeedAssignment

logger = logging.getLogger(__name__)

WRITE_RETRIES = int(os.getenv("PROGRESSION_WRITE_RETRIES", "3"))
RETRY_BACKOFF_SECONDS = 0.05

T = TypeVar("T")

_locks: Dict[int, List] = {}  # tournament_id -> [lock, holders]
_locks_guard = threading.Lock()


@contextmanager
def tournament_lock(tournament_id: int) -> Iterator[threading.Lock]:
    """Single-writer lock for one tournament (process-local).

    The entry is dropped once no caller holds or waits on it.
    """
    with _locks_guard:
        entry = _locks.get(tournament_id)
        if entry is None:
            entry = [threading.Lock(), 0]
            _locks[tournament_id] = entry
        entry[1] += 1
    lock = entry[0]
    try:
        with lock:
            yield lock
    finally:
        with _locks_guard:
            entry[1] -= 1
            if entry[1] == 0 and _locks.get(tournament_id) is entry:
                del _locks[tournament_id]


@dataclass
class ProgressionResult:
    tournament_id: int
    updated_count: int = 0
    patches: List[MatchPatch] = field(default_factory=list)
    group_backfill: Dict[int, str] = field(default_factory=dict)
    unresolved_slots: int = 0
    settled: bool = True
    transition: Optional[PhaseTransition] = None

    def to_dict(self) -> Dict:
        return {
            "tournament_id": self.tournament_id,
            "updated_count": self.updated_count,
            "patches": [{"match_id": p.match_id, "fields": p.fields} for p in self.patches],
            "group_backfill": {str(k): v for k, v in self.group_backfill.items()},
            "unresolved_slots": self.unresolved_slots,
            "settled": self.settled,
            "transition": self.transition.to_dict() if self.transition else None,
        }


def with_retries(session: Session, action: Callable[[], T], what: str) -> T:
    """Run a write, retrying transient database errors. Raises PersistenceError when out of retries."""
    last_exc: Optional[Exception] = None
    for attempt in range(1, WRITE_RETRIES + 1):
        try:
            return action()
        except OperationalError as exc:
            session.rollback()
            last_exc = exc
            logger.warning("Transient failure writing %s (attempt %d/%d): %s", what, attempt, WRITE_RETRIES, exc)
            time.sleep(RETRY_BACKOFF_SECONDS * attempt)
    logger.error("Giving up writing %s after %d attempts", what, WRITE_RETRIES)
    raise PersistenceError(f"Could not persist {what}") from last_exc


def _write_resolution(session: Session, resolution: ResolutionResult) -> int:
    written = 0
    for patch in resolution.patches:
        match = session.get(Match, patch.match_id)
        # Re-checked against the live row: a match finished since the snapshot stays untouched.
        if match is None or match.status == MATCH_FINISHED:
            continue
        for name, value in patch.fields.items():
            setattr(match, name, value)
        session.add(match)
        written += 1
    for team_id, group_name in resolution.group_backfill.items():
        team = session.get(Team, team_id)
        if team is not None and not team.group_name:
            team.group_name = group_name
            session.add(team)
    session.commit()
    return written


def apply_phase_transition(session: Session, tournament_id: int, transition: PhaseTransition) -> bool:
    """Compare-and-swap: only the caller that flips the active phase applies the transition."""
    finished = session.execute(
        update(Phase)
        .where(
            Phase.id == transition.finished_phase_id,
            Phase.tournament_id == tournament_id,
            Phase.status == PHASE_ACTIVE,
        )
        .values(status=PHASE_FINISHED)
    )
    if finished.rowcount != 1:
        session.rollback()
        return False

    if transition.activated_phase_id is not None:
        session.execute(
            update(Phase)
            .where(Phase.id == transition.activated_phase_id, Phase.status == PHASE_PENDING)
            .values(status=PHASE_ACTIVE)
        )
    else:
        remaining = session.exec(
            select(Phase).where(Phase.tournament_id == tournament_id, Phase.status != PHASE_FINISHED)
        ).first()
        tournament = session.get(Tournament, tournament_id)
        if tournament is not None and remaining is None:
            tournament.status = "completed"
            session.add(tournament)
    session.commit()
    session.expire_all()
    return True


def run_progression_pass(session: Session, tournament_id: int) -> Optional[ProgressionResult]:
    """Resolve pending match sources, write changes, then advance the phase if it is complete.

    Returns None when the tournament does not exist.
    """
    with tournament_lock(tournament_id):
        snapshot = load_snapshot(session, tournament_id)
        if snapshot is None:
            return None

        resolution = resolve_pending(snapshot)
        result = ProgressionResult(
            tournament_id=tournament_id,
            updated_count=resolution.updated_count,
            patches=resolution.patches,
            group_backfill=resolution.group_backfill,
            unresolved_slots=resolution.unresolved_slots,
            settled=resolution.settled,
        )
        if resolution.patches or resolution.group_backfill:
            with_retries(session, lambda: _write_resolution(session, resolution), "match resolution")
            logger.info(
                "Tournament %s: resolved %d match(es), backfilled %d group(s)",
                tournament_id,
                resolution.updated_count,
                len(resolution.group_backfill),
            )

        transition = evaluate_phase_advancement(snapshot.phases, resolution.matches)
        if transition is not None:
            applied = with_retries(
                session, lambda: apply_phase_transition(session, tournament_id, transition), "phase transition"
            )
            if applied:
                result.transition = transition
                logger.info("Tournament %s: phase transition %s", tournament_id, transition.to_dict())
                log_activity(
                    session,
                    tournament_id,
                    "phase_advance",
                    f"Phase {transition.finished_phase_id} finished",
                    transition.to_dict(),
                )

        if result.updated_count:
            log_activity(
                session,
                tournament_id,
                "progression",
                f"{result.updated_count} match(es) updated",
                {"patches": [{"match_id": p.match_id, "fields": p.fields} for p in result.patches]},
            )
        return result


def start_tournament(session: Session, tournament_id: int) -> Optional[int]:
    """Activate the first phase by order if no phase has started. Returns the activated phase id."""
    with tournament_lock(tournament_id):
        snapshot = load_snapshot(session, tournament_id)
        if snapshot is None:
            return None
        phase = first_startable_phase(snapshot.phases)
        if phase is None:
            return None

        def _activate() -> bool:
            res = session.execute(
                update(Phase).where(Phase.id == phase.id, Phase.status == PHASE_PENDING).values(status=PHASE_ACTIVE)
            )
            if res.rowcount != 1:
                session.rollback()
                return False
            tournament = session.get(Tournament, tournament_id)
            tournament.status = "active"
            session.add(tournament)
            session.commit()
            session.expire_all()
            return True

        if not with_retries(session, _activate, "tournament start"):
            return None
        log_activity(session, tournament_id, "phase_advance", f"Phase {phase.id} started", {"activated_phase_id": phase.id})
        return phase.id


def persist_seed_assignments(session: Session, tournament_id: int, assignments: List[SeedAssignment]) -> int:
    """Write tiebreaker ranks as Team.seed. Returns the number of teams changed."""

    def _write() -> int:
        changed = 0
        for a in assignments:
            team = session.get(Team, a.team_id)
            if team is None or team.tournament_id != tournament_id:
                continue
            if team.seed != a.rank:
                team.seed = a.rank
                session.add(team)
                changed += 1
        session.commit()
        return changed

    return with_retries(session, _write, "seed assignments")


def record_draw_usage(session: Session, tournament_id: int, draws_used: int) -> None:
    """Persist the tournament-wide random draw counter (never decreases here)."""

    def _write() -> None:
        tournament = session.get(Tournament, tournament_id)
        if tournament is not None and draws_used > (tournament.random_draws_used or 0):
            tournament.random_draws_used = draws_used
            session.add(tournament)
            session.commit()

    with_retries(session, _write, "draw usage")


def reset_draw_budget(session: Session, tournament_id: int, budget: Optional[int] = None) -> Optional[Tournament]:
    """Organizer action: clear draws used and optionally set a new budget."""
    tournament = session.get(Tournament, tournament_id)
    if tournament is None:
        return None

    def _write() -> None:
        tournament.random_draws_used = 0
        if budget is not None:
            tournament.random_draw_budget = budget
        session.add(tournament)
        session.commit()
        session.refresh(tournament)

    with_retries(session, _write, "draw budget reset")
    log_activity(
        session,
        tournament_id,
        "budget_reset",
        "Random draw budget reset",
        {"random_draw_budget": tournament.random_draw_budget},
    )
    return tournament
