"""
Tournament snapshot: the strict, read-only view the progression engine works on.

Database rows (and loosely typed legacy payloads with mixed column names such as
``home_score``/``away_score`` vs ``local_runs``/``visitor_runs``) are normalized
here, once, into plain records. Nothing downstream touches SQLModel objects.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlmodel import Session, select

from app.models.match import MATCH_NUMBER_PREFIX, Match
from app.models.match_set import MatchSet
from app.models.phase import Phase, PhaseGroup
from app.models.team import Team
from app.models.tournament import Tournament

logger = logging.getLogger(__name__)

DEFAULT_POINTS_FOR_WIN = 3
DEFAULT_POINTS_FOR_LOSS = 0
DEFAULT_RANDOM_DRAW_BUDGET = 3


@dataclass(frozen=True)
class SourceRef:
    """Symbolic match participant. ``ref`` is a team id, group name/id, or match id/number."""

    type: str
    ref: Optional[str] = None
    index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "ref": self.ref, "index": self.index}


@dataclass
class TeamRecord:
    id: int
    name: str = ""
    group_name: Optional[str] = None
    seed: int = 0


@dataclass
class MatchRecord:
    id: int
    phase_id: Optional[int]
    status: str = "scheduled"
    local_team_id: Optional[int] = None
    visitor_team_id: Optional[int] = None
    source_home: Optional[SourceRef] = None
    source_away: Optional[SourceRef] = None
    winner_team_id: Optional[int] = None
    match_number: Optional[int] = None

    @property
    def is_finished(self) -> bool:
        return self.status == "finished"


@dataclass
class SetRecord:
    id: Optional[int]
    match_id: int
    set_number: int = 1
    status: str = "pending"
    local_runs: int = 0
    visitor_runs: int = 0

    @property
    def is_finished(self) -> bool:
        return self.status == "finished"


@dataclass
class GroupRecord:
    name: str
    team_ids: List[int] = field(default_factory=list)
    id: Optional[int] = None
    phase_id: Optional[int] = None


@dataclass
class PhaseRecord:
    id: int
    order: int
    status: str = "pending"
    name: str = ""
    phase_type: str = "group"
    groups: List[GroupRecord] = field(default_factory=list)


@dataclass
class TiebreakerRule:
    type: str
    order: int
    active: bool = True


@dataclass
class TournamentConfig:
    points_for_win: int = DEFAULT_POINTS_FOR_WIN
    points_for_loss: int = DEFAULT_POINTS_FOR_LOSS
    tiebreaker_rules: List[TiebreakerRule] = field(default_factory=list)
    random_draw_budget: int = DEFAULT_RANDOM_DRAW_BUDGET


@dataclass
class TournamentSnapshot:
    tournament_id: int
    teams: List[TeamRecord] = field(default_factory=list)
    matches: List[MatchRecord] = field(default_factory=list)
    sets: List[SetRecord] = field(default_factory=list)
    phases: List[PhaseRecord] = field(default_factory=list)
    config: TournamentConfig = field(default_factory=TournamentConfig)
    random_draws_used: int = 0

    def find_match(self, ref: Optional[str]) -> Optional[MatchRecord]:
        """Find a match by id, or by match number for a ``#<number>`` ref."""
        if ref is None:
            return None
        ref = str(ref)
        by_number = ref.startswith(MATCH_NUMBER_PREFIX)
        key = _to_int(ref[len(MATCH_NUMBER_PREFIX):] if by_number else ref)
        if key is None:
            return None
        for m in self.matches:
            if (m.match_number if by_number else m.id) == key:
                return m
        return None

    def find_group(self, ref: Optional[str]) -> Optional[GroupRecord]:
        """Find a phase group by name; phases are searched in order. Numeric refs also match group ids."""
        if ref is None:
            return None
        ordered = sorted(self.phases, key=lambda p: p.order)
        for phase in ordered:
            for group in phase.groups:
                if group.name == ref:
                    return group
        key = _to_int(ref)
        if key is not None:
            for phase in ordered:
                for group in phase.groups:
                    if group.id == key:
                        return group
        return None


# ============================================================================
# Row normalization
# ============================================================================


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _first(row: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = row.get(key)
        if value is not None:
            return value
    return None


def source_from_columns(source_type: Optional[str], ref: Any, index: Any = None) -> Optional[SourceRef]:
    """Build a SourceRef from flat columns; None when no source is configured."""
    if not source_type:
        return None
    return SourceRef(
        type=str(source_type),
        ref=None if ref is None else str(ref),
        index=_to_int(index),
    )


def normalize_team_row(row: Mapping[str, Any]) -> TeamRecord:
    return TeamRecord(
        id=int(row["id"]),
        name=str(row.get("name") or ""),
        group_name=_first(row, "group_name", "group_id") or None,
        seed=_to_int(row.get("seed")) or 0,
    )


def normalize_match_row(row: Mapping[str, Any]) -> MatchRecord:
    """Normalize a match row. Accepts ``stage_id`` for ``phase_id`` and
    ``source_home_id``/``global_id`` for ``source_home_ref``/``match_number``."""
    return MatchRecord(
        id=int(row["id"]),
        phase_id=_to_int(_first(row, "phase_id", "stage_id")),
        status=str(row.get("status") or "scheduled"),
        local_team_id=_to_int(row.get("local_team_id")),
        visitor_team_id=_to_int(row.get("visitor_team_id")),
        source_home=source_from_columns(
            row.get("source_home_type"),
            _first(row, "source_home_ref", "source_home_id"),
            row.get("source_home_index"),
        ),
        source_away=source_from_columns(
            row.get("source_away_type"),
            _first(row, "source_away_ref", "source_away_id"),
            row.get("source_away_index"),
        ),
        winner_team_id=_to_int(row.get("winner_team_id")),
        match_number=_to_int(_first(row, "match_number", "global_id")),
    )


def normalize_set_row(row: Mapping[str, Any]) -> SetRecord:
    """Normalize a set row. Legacy ``home_score``/``away_score`` win over run columns."""
    local_runs = _first(row, "home_score", "local_runs")
    visitor_runs = _first(row, "away_score", "visitor_runs")
    return SetRecord(
        id=_to_int(row.get("id")),
        match_id=int(row["match_id"]),
        set_number=_to_int(row.get("set_number")) or 1,
        status=str(row.get("status") or "pending"),
        local_runs=_to_int(local_runs) or 0,
        visitor_runs=_to_int(visitor_runs) or 0,
    )


def normalize_rules(raw_rules: Optional[Iterable[Mapping[str, Any]]]) -> List[TiebreakerRule]:
    rules: List[TiebreakerRule] = []
    for position, raw in enumerate(raw_rules or [], start=1):
        rule_type = raw.get("type") if isinstance(raw, Mapping) else None
        if not rule_type:
            logger.debug("Skipping malformed tiebreaker rule %r", raw)
            continue
        rules.append(
            TiebreakerRule(
                type=str(rule_type),
                order=_to_int(raw.get("order")) or position,
                active=bool(raw.get("active", True)),
            )
        )
    return rules


def config_from_tournament(tournament: Tournament) -> TournamentConfig:
    return TournamentConfig(
        points_for_win=tournament.points_for_win if tournament.points_for_win is not None else DEFAULT_POINTS_FOR_WIN,
        points_for_loss=tournament.points_for_loss if tournament.points_for_loss is not None else DEFAULT_POINTS_FOR_LOSS,
        tiebreaker_rules=normalize_rules(tournament.tiebreaker_rules),
        random_draw_budget=(
            tournament.random_draw_budget
            if tournament.random_draw_budget is not None
            else DEFAULT_RANDOM_DRAW_BUDGET
        ),
    )


# ============================================================================
# Loading
# ============================================================================


def load_snapshot(session: Session, tournament_id: int) -> Optional[TournamentSnapshot]:
    """Read everything the engine needs for one tournament. Returns None if it doesn't exist."""
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        return None

    teams = session.exec(select(Team).where(Team.tournament_id == tournament_id).order_by(Team.id)).all()
    matches = session.exec(select(Match).where(Match.tournament_id == tournament_id).order_by(Match.id)).all()
    match_ids = [m.id for m in matches]
    sets = (
        session.exec(select(MatchSet).where(MatchSet.match_id.in_(match_ids)).order_by(MatchSet.id)).all()
        if match_ids
        else []
    )
    phases = session.exec(select(Phase).where(Phase.tournament_id == tournament_id).order_by(Phase.order)).all()
    phase_ids = [p.id for p in phases]
    groups = (
        session.exec(select(PhaseGroup).where(PhaseGroup.phase_id.in_(phase_ids)).order_by(PhaseGroup.id)).all()
        if phase_ids
        else []
    )

    groups_by_phase: Dict[int, List[GroupRecord]] = {}
    for g in groups:
        groups_by_phase.setdefault(g.phase_id, []).append(
            GroupRecord(name=g.name, team_ids=[int(t) for t in (g.team_ids or [])], id=g.id, phase_id=g.phase_id)
        )

    return TournamentSnapshot(
        tournament_id=tournament_id,
        teams=[normalize_team_row(t.model_dump()) for t in teams],
        matches=[normalize_match_row(m.model_dump()) for m in matches],
        sets=[normalize_set_row(s.model_dump()) for s in sets],
        phases=[
            PhaseRecord(
                id=p.id,
                order=p.order,
                status=p.status,
                name=p.name,
                phase_type=p.phase_type,
                groups=groups_by_phase.get(p.id, []),
            )
            for p in phases
        ],
        config=config_from_tournament(tournament),
        random_draws_used=tournament.random_draws_used or 0,
    )
