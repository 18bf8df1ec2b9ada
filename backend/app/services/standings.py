"""
Standings Calculator.

Recomputes ranked standing records from scratch out of teams, matches and
finished sets. Never patched incrementally, never raises: missing data just
yields zero-valued records.

Sort order (first difference wins):
  1. points, descending
  2. seed, ascending, only when both teams carry a nonzero seed
  3. run differential, descending
  4. runs scored, descending
  5. team id, ascending

With every team of an equal-points run seeded, or none, this is a strict total
order. A partly seeded run is not transitive: seeded pairs compare on seed while
mixed pairs fall through to run differential. Records enter the sort in team id
order so such a run still comes out the same way for the same data, and
find_tied_groups keeps reporting it until every team holds a distinct seed.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from functools import cmp_to_key
from typing import Dict, Iterable, List, Optional

from app.services.snapshot import MatchRecord, SetRecord, TeamRecord, TournamentConfig


@dataclass
class StandingRecord:
    team_id: int
    name: str
    group_name: Optional[str]
    games_played: int = 0
    wins: int = 0
    losses: int = 0
    points: int = 0
    runs_scored: int = 0
    runs_allowed: int = 0
    seed: int = 0

    @property
    def run_diff(self) -> int:
        return self.runs_scored - self.runs_allowed

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["run_diff"] = self.run_diff
        return data


@dataclass
class TiedGroupCandidate:
    """Teams sharing points inside one group, not yet separated by seeds."""

    group_name: Optional[str]
    points: int
    original_rank: int  # 1-based rank of the first team of the tie within its group
    team_ids: List[int]


def compare_standings(a: StandingRecord, b: StandingRecord) -> int:
    if a.points != b.points:
        return b.points - a.points
    # Seed only decides between two seeded teams; see the module docstring for mixed runs.
    if a.seed > 0 and b.seed > 0 and a.seed != b.seed:
        return a.seed - b.seed
    if a.run_diff != b.run_diff:
        return b.run_diff - a.run_diff
    if a.runs_scored != b.runs_scored:
        return b.runs_scored - a.runs_scored
    return a.team_id - b.team_id


def compute_standings(
    teams: Iterable[TeamRecord],
    matches: Iterable[MatchRecord],
    sets: Iterable[SetRecord],
    phase_id: Optional[int] = None,
    config: Optional[TournamentConfig] = None,
) -> List[StandingRecord]:
    """Build ordered standings for ``teams``.

    Runs count for every match with at least one finished set, whatever the
    match status. Wins, losses, points and games played only count once the
    match itself is finished, decided by finished set wins.
    """
    config = config or TournamentConfig()

    records: Dict[int, StandingRecord] = {}
    for team in teams:
        records[team.id] = StandingRecord(
            team_id=team.id,
            name=team.name,
            group_name=team.group_name,
            seed=team.seed or 0,
        )

    finished_sets: Dict[int, List[SetRecord]] = {}
    for s in sets:
        if s.is_finished:
            finished_sets.setdefault(s.match_id, []).append(s)

    for match in matches:
        if phase_id is not None and match.phase_id != phase_id:
            continue
        match_sets = finished_sets.get(match.id)
        if not match_sets:
            continue

        local = records.get(match.local_team_id) if match.local_team_id is not None else None
        visitor = records.get(match.visitor_team_id) if match.visitor_team_id is not None else None

        for s in match_sets:
            if local:
                local.runs_scored += s.local_runs
                local.runs_allowed += s.visitor_runs
            if visitor:
                visitor.runs_scored += s.visitor_runs
                visitor.runs_allowed += s.local_runs

        if not match.is_finished or not (local and visitor):
            continue

        local_set_wins = sum(1 for s in match_sets if s.local_runs > s.visitor_runs)
        visitor_set_wins = sum(1 for s in match_sets if s.visitor_runs > s.local_runs)

        local.games_played += 1
        visitor.games_played += 1
        if local_set_wins > visitor_set_wins:
            winner, loser = local, visitor
        elif visitor_set_wins > local_set_wins:
            winner, loser = visitor, local
        else:
            continue
        winner.wins += 1
        winner.points += config.points_for_win
        loser.losses += 1
        loser.points += config.points_for_loss

    ordered = sorted(records.values(), key=lambda r: r.team_id)
    return sorted(ordered, key=cmp_to_key(compare_standings))


def find_tied_groups(standings: List[StandingRecord]) -> List[TiedGroupCandidate]:
    """Find runs of equal points within each group that still need a tiebreak.

    A run is skipped when every team in it already has a distinct nonzero seed
    (a previous tiebreak already ordered it).
    """
    by_group: Dict[Optional[str], List[StandingRecord]] = {}
    for record in standings:
        by_group.setdefault(record.group_name, []).append(record)

    candidates: List[TiedGroupCandidate] = []
    for group_name, rows in by_group.items():
        i = 0
        while i < len(rows):
            j = i + 1
            while j < len(rows) and rows[j].points == rows[i].points:
                j += 1
            run = rows[i:j]
            if len(run) >= 2:
                seeds = [r.seed for r in run]
                already_seeded = all(s > 0 for s in seeds) and len(set(seeds)) == len(seeds)
                if not already_seeded:
                    candidates.append(
                        TiedGroupCandidate(
                            group_name=group_name,
                            points=run[0].points,
                            original_rank=i + 1,
                            team_ids=[r.team_id for r in run],
                        )
                    )
            i = j
    return candidates
