"""
Phase advancement state machine: pending -> active -> finished, strictly by order.

Pure decision functions. Applying a transition (with the compare-and-swap guard)
lives in progression_service.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from app.models.phase import PHASE_ACTIVE, PHASE_FINISHED, PHASE_PENDING
from app.services.snapshot import MatchRecord, PhaseRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PhaseTransition:
    finished_phase_id: int
    activated_phase_id: Optional[int]  # None when the finished phase was the last one

    def to_dict(self) -> dict:
        return {
            "finished_phase_id": self.finished_phase_id,
            "activated_phase_id": self.activated_phase_id,
        }


def active_phase(phases: Iterable[PhaseRecord]) -> Optional[PhaseRecord]:
    active = sorted((p for p in phases if p.status == PHASE_ACTIVE), key=lambda p: p.order)
    if len(active) > 1:
        logger.warning("More than one active phase (%s); using lowest order", [p.id for p in active])
    return active[0] if active else None


def is_phase_complete(phase_id: int, matches: Iterable[MatchRecord]) -> bool:
    """A phase is complete when it has at least one match and every one is finished."""
    phase_matches = [m for m in matches if m.phase_id == phase_id]
    return bool(phase_matches) and all(m.is_finished for m in phase_matches)


def evaluate_phase_advancement(
    phases: List[PhaseRecord], matches: List[MatchRecord]
) -> Optional[PhaseTransition]:
    """Return the single transition due now, or None.

    The active phase finishes once all its matches are finished; the next phase
    by order becomes active. Phases are never skipped: the next phase must still
    be pending.
    """
    current = active_phase(phases)
    if current is None or not is_phase_complete(current.id, matches):
        return None

    later = sorted((p for p in phases if p.order > current.order), key=lambda p: p.order)
    if not later:
        return PhaseTransition(finished_phase_id=current.id, activated_phase_id=None)

    nxt = later[0]
    if nxt.status != PHASE_PENDING:
        logger.warning("Phase %s follows active phase %s but is %s", nxt.id, current.id, nxt.status)
        return PhaseTransition(finished_phase_id=current.id, activated_phase_id=None)
    return PhaseTransition(finished_phase_id=current.id, activated_phase_id=nxt.id)


def first_startable_phase(phases: List[PhaseRecord]) -> Optional[PhaseRecord]:
    """The phase to activate when the tournament starts: lowest order, only if nothing has run yet."""
    if any(p.status in (PHASE_ACTIVE, PHASE_FINISHED) for p in phases):
        return None
    pending = sorted((p for p in phases if p.status == PHASE_PENDING), key=lambda p: p.order)
    return pending[0] if pending else None
