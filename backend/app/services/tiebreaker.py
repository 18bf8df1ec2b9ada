"""
Tiebreaker resolution workflow.

A TiebreakerSession is an explicit, caller-owned state object: the tied groups
being worked on, the tournament's rule chain, the random-draw budget, and a
frozen copy of the matches/sets taken when the session opened. Every operation
mutates the session passed in and returns the affected group.

Per group, rules are applied one at a time in chain order. A rule sorts the
group by its head-to-head stat (descending, stable); if any neighbours are
still equal the next rule becomes active, otherwise the group is resolved.
``random`` is always the last rule and is never applied automatically: the
organizer picks an automatic draw (shuffle) or a manual draw (reorder, then
confirm). Each draw costs one unit of the tournament's draw budget.
"""
from __future__ import annotations

import logging
import random
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from app.exceptions import DrawBudgetExhausted, RandomDrawRequired, TiebreakerError, TiebreakerNotResolved
from app.services.snapshot import MatchRecord, SetRecord, TiebreakerRule, TournamentSnapshot
from app.services.standings import TiedGroupCandidate

logger = logging.getLogger(__name__)

RULE_DIRECT_MATCH = "direct_match"
RULE_RUN_DIFF = "run_diff"
RULE_RUNS_SCORED = "runs_scored"
RULE_RANDOM = "random"
VALID_RULES = (RULE_DIRECT_MATCH, RULE_RUN_DIFF, RULE_RUNS_SCORED, RULE_RANDOM)


@dataclass
class TiebreakerStats:
    team_id: int
    wins: int = 0
    run_diff: int = 0
    runs_scored: int = 0

    def value_for(self, rule: str) -> int:
        if rule == RULE_DIRECT_MATCH:
            return self.wins
        if rule == RULE_RUN_DIFF:
            return self.run_diff
        if rule == RULE_RUNS_SCORED:
            return self.runs_scored
        raise TiebreakerError(f"Rule {rule!r} has no comparable stat")


@dataclass
class TiedGroupState:
    group_name: Optional[str]
    points: int
    original_rank: int
    teams: List[int]
    active_rule_index: int = 0
    resolved: bool = False
    manual_draw: bool = False
    applied_rules: List[str] = field(default_factory=list)

    def to_dict(self, rule_chain: Sequence[str]) -> Dict:
        active_rule = rule_chain[self.active_rule_index] if self.active_rule_index < len(rule_chain) else None
        return {
            "group_name": self.group_name,
            "points": self.points,
            "original_rank": self.original_rank,
            "teams": list(self.teams),
            "active_rule_index": self.active_rule_index,
            "active_rule": active_rule,
            "resolved": self.resolved,
            "manual_draw": self.manual_draw,
            "applied_rules": list(self.applied_rules),
        }


@dataclass(frozen=True)
class SeedAssignment:
    team_id: int
    rank: int


@dataclass
class TiebreakerSession:
    tournament_id: int
    rule_chain: List[str]
    groups: List[TiedGroupState]
    draw_budget: int
    draws_used: int = 0
    matches: Tuple[MatchRecord, ...] = ()
    sets: Tuple[SetRecord, ...] = ()
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def draws_remaining(self) -> int:
        return max(self.draw_budget - self.draws_used, 0)

    @property
    def all_resolved(self) -> bool:
        return all(g.resolved for g in self.groups)

    def group(self, index: int) -> TiedGroupState:
        if index < 0 or index >= len(self.groups):
            raise TiebreakerError(f"No tied group at index {index}")
        return self.groups[index]

    def active_rule(self, index: int) -> str:
        return self.rule_chain[min(self.group(index).active_rule_index, len(self.rule_chain) - 1)]

    def to_dict(self) -> Dict:
        return {
            "session_id": self.session_id,
            "tournament_id": self.tournament_id,
            "rule_chain": list(self.rule_chain),
            "draw_budget": self.draw_budget,
            "draws_used": self.draws_used,
            "draws_remaining": self.draws_remaining,
            "all_resolved": self.all_resolved,
            "groups": [g.to_dict(self.rule_chain) for g in self.groups],
        }


def build_rule_chain(rules: Iterable[TiebreakerRule]) -> List[str]:
    """Active rules by order, unknown and repeated types dropped, ``random`` last."""
    chain: List[str] = []
    for rule in sorted((r for r in rules if r.active), key=lambda r: r.order):
        if rule.type not in VALID_RULES:
            logger.warning("Ignoring unknown tiebreaker rule %r", rule.type)
            continue
        if rule.type == RULE_RANDOM or rule.type in chain:
            continue
        chain.append(rule.type)
    chain.append(RULE_RANDOM)
    return chain


def compute_tiebreaker_stats(
    team_ids: Sequence[int], matches: Iterable[MatchRecord], sets: Iterable[SetRecord]
) -> Dict[int, TiebreakerStats]:
    """Head-to-head stats over finished matches played between members of the group only."""
    members = set(team_ids)
    stats = {tid: TiebreakerStats(team_id=tid) for tid in team_ids}

    finished_sets: Dict[int, List[SetRecord]] = {}
    for s in sets:
        if s.is_finished:
            finished_sets.setdefault(s.match_id, []).append(s)

    for match in matches:
        if not match.is_finished:
            continue
        if match.local_team_id not in members or match.visitor_team_id not in members:
            continue
        local = stats[match.local_team_id]
        visitor = stats[match.visitor_team_id]
        match_sets = finished_sets.get(match.id, [])
        for s in match_sets:
            local.runs_scored += s.local_runs
            local.run_diff += s.local_runs - s.visitor_runs
            visitor.runs_scored += s.visitor_runs
            visitor.run_diff += s.visitor_runs - s.local_runs

        winner_id = match.winner_team_id
        if winner_id is None:
            local_wins = sum(1 for s in match_sets if s.local_runs > s.visitor_runs)
            visitor_wins = sum(1 for s in match_sets if s.visitor_runs > s.local_runs)
            if local_wins > visitor_wins:
                winner_id = match.local_team_id
            elif visitor_wins > local_wins:
                winner_id = match.visitor_team_id
        if winner_id in stats:
            stats[winner_id].wins += 1

    return stats


def open_session(
    snapshot: TournamentSnapshot,
    candidates: Sequence[TiedGroupCandidate],
    session_id: Optional[str] = None,
) -> TiebreakerSession:
    """Start a session over the given tied groups, freezing the snapshot's matches and sets."""
    groups = []
    for candidate in candidates:
        if len(candidate.team_ids) < 2:
            raise TiebreakerError("A tied group needs at least two teams")
        groups.append(
            TiedGroupState(
                group_name=candidate.group_name,
                points=candidate.points,
                original_rank=candidate.original_rank,
                teams=list(candidate.team_ids),
            )
        )
    session = TiebreakerSession(
        tournament_id=snapshot.tournament_id,
        rule_chain=build_rule_chain(snapshot.config.tiebreaker_rules),
        groups=groups,
        draw_budget=snapshot.config.random_draw_budget,
        draws_used=snapshot.random_draws_used,
        matches=tuple(snapshot.matches),
        sets=tuple(snapshot.sets),
    )
    if session_id:
        session.session_id = session_id
    return session


def apply_next_rule(session: TiebreakerSession, group_index: int) -> TiedGroupState:
    """Apply the group's active (non-random) rule once."""
    group = session.group(group_index)
    if group.resolved:
        return group
    rule = session.active_rule(group_index)
    if rule == RULE_RANDOM:
        raise RandomDrawRequired("Remaining tie needs a draw: choose automatic or manual")

    stats = compute_tiebreaker_stats(group.teams, session.matches, session.sets)
    # Earlier rules stay primary keys; each new rule only splits teams still level on them.
    chain = [r for r in group.applied_rules if r != RULE_RANDOM] + [rule]

    def key(tid: int) -> tuple:
        return tuple(stats[tid].value_for(r) for r in chain)

    group.teams = sorted(group.teams, key=key, reverse=True)
    group.applied_rules.append(rule)

    keys = [key(tid) for tid in group.teams]
    still_tied = any(a == b for a, b in zip(keys, keys[1:]))
    if still_tied:
        group.active_rule_index = min(group.active_rule_index + 1, len(session.rule_chain) - 1)
    else:
        group.resolved = True
    logger.debug(
        "Tiebreak group %d rule %s -> %s (resolved=%s)", group_index, rule, group.teams, group.resolved
    )
    return group


def apply_rules_until_draw(session: TiebreakerSession, group_index: int) -> TiedGroupState:
    """Apply non-random rules until the group resolves or reaches ``random``."""
    group = session.group(group_index)
    while not group.resolved and session.active_rule(group_index) != RULE_RANDOM:
        apply_next_rule(session, group_index)
    return group


def _require_draw(session: TiebreakerSession, group_index: int) -> TiedGroupState:
    group = session.group(group_index)
    if group.resolved:
        raise TiebreakerError("Group is already resolved")
    if session.active_rule(group_index) != RULE_RANDOM:
        raise TiebreakerError("A draw is only allowed once the random rule is active")
    if session.draws_used >= session.draw_budget:
        raise DrawBudgetExhausted(session.draw_budget, session.draws_used)
    return group


def automatic_draw(
    session: TiebreakerSession, group_index: int, rng: Optional[random.Random] = None
) -> TiedGroupState:
    """Uniform shuffle of the group; resolves it and consumes one draw."""
    group = _require_draw(session, group_index)
    (rng or random.SystemRandom()).shuffle(group.teams)
    group.manual_draw = False
    group.resolved = True
    group.applied_rules.append(RULE_RANDOM)
    session.draws_used += 1
    logger.info("Automatic draw for tiebreak group %d: %s", group_index, group.teams)
    return group


def begin_manual_draw(session: TiebreakerSession, group_index: int) -> TiedGroupState:
    group = _require_draw(session, group_index)
    group.manual_draw = True
    return group


def move_team(session: TiebreakerSession, group_index: int, team_id: int, delta: int) -> TiedGroupState:
    """Move one team a single position up (-1) or down (+1) during a manual draw."""
    group = session.group(group_index)
    if not group.manual_draw or group.resolved:
        raise TiebreakerError("Start a manual draw before reordering teams")
    if delta not in (-1, 1):
        raise TiebreakerError("Teams move one position at a time")
    if team_id not in group.teams:
        raise TiebreakerError(f"Team {team_id} is not in this tied group")
    pos = group.teams.index(team_id)
    target = pos + delta
    if 0 <= target < len(group.teams):
        group.teams[pos], group.teams[target] = group.teams[target], group.teams[pos]
    return group


def confirm_manual_draw(session: TiebreakerSession, group_index: int) -> TiedGroupState:
    group = session.group(group_index)
    if not group.manual_draw:
        raise TiebreakerError("No manual draw in progress")
    _require_draw(session, group_index)
    group.manual_draw = False
    group.resolved = True
    group.applied_rules.append(RULE_RANDOM)
    session.draws_used += 1
    logger.info("Manual draw confirmed for tiebreak group %d: %s", group_index, group.teams)
    return group


def reset_group(session: TiebreakerSession, group_index: int) -> TiedGroupState:
    """Undo: back to the first rule, unresolved. Draws already spent stay spent."""
    group = session.group(group_index)
    group.active_rule_index = 0
    group.resolved = False
    group.manual_draw = False
    group.applied_rules = []
    return group


def finalize(session: TiebreakerSession) -> List[SeedAssignment]:
    """Seeds for every team in every group: ``original_rank + position``."""
    if not session.all_resolved:
        pending = [i for i, g in enumerate(session.groups) if not g.resolved]
        raise TiebreakerNotResolved(f"Tied groups still unresolved: {pending}")
    assignments: List[SeedAssignment] = []
    for group in session.groups:
        for position, team_id in enumerate(group.teams):
            assignments.append(SeedAssignment(team_id=team_id, rank=group.original_rank + position))
    return assignments
