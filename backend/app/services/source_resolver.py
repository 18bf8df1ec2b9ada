"""
Source Resolver: turn symbolic match participants into concrete team ids.

Works on a TournamentSnapshot and returns per-match field patches; it never
writes. Resolution is re-attempted every pass for every unfinished match, so a
corrected upstream result re-heals the bracket. Finished matches are never
touched, and a live match keeps a group position it already holds. Anything
that cannot be resolved yet (or is misconfigured) is simply left alone.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from app.models.match import MATCH_FINISHED, MATCH_LIVE, SOURCE_GROUP_POS, SOURCE_MATCH_LOSER, SOURCE_MATCH_WINNER, SOURCE_TEAM
from app.services.snapshot import MatchRecord, SourceRef, TeamRecord, TournamentSnapshot
from app.services.standings import StandingRecord, compute_standings

logger = logging.getLogger(__name__)

SLOT_FIELDS = (("source_home", "local_team_id"), ("source_away", "visitor_team_id"))


@dataclass
class MatchPatch:
    match_id: int
    fields: Dict[str, Optional[int]]


@dataclass
class ResolutionResult:
    patches: List[MatchPatch] = field(default_factory=list)
    group_backfill: Dict[int, str] = field(default_factory=dict)  # team_id -> group name
    matches: List[MatchRecord] = field(default_factory=list)  # snapshot matches with patches applied
    unresolved_slots: int = 0
    passes: int = 0
    settled: bool = True

    @property
    def updated_count(self) -> int:
        return len(self.patches)


def backfill_group_names(snapshot: TournamentSnapshot) -> Dict[int, str]:
    """Map team ids with no group to the first phase group (by phase order) listing them."""
    missing = {t.id for t in snapshot.teams if not t.group_name}
    if not missing:
        return {}
    backfill: Dict[int, str] = {}
    for phase in sorted(snapshot.phases, key=lambda p: p.order):
        for group in phase.groups:
            for team_id in group.team_ids:
                if team_id in missing and team_id not in backfill:
                    backfill[team_id] = group.name
    return backfill


def group_members(snapshot: TournamentSnapshot, group_ref: Optional[str]) -> Optional[List[TeamRecord]]:
    """Teams in a group, in membership order. None when the group is unknown."""
    teams_by_id = {t.id: t for t in snapshot.teams}
    group = snapshot.find_group(group_ref)
    if group is not None:
        return [teams_by_id[tid] for tid in group.team_ids if tid in teams_by_id]
    members = [t for t in snapshot.teams if group_ref is not None and t.group_name == group_ref]
    return members or None


def group_standings(
    snapshot: TournamentSnapshot, group_ref: Optional[str], exclude_match_id: Optional[int] = None
) -> List[StandingRecord]:
    """Group standings over the whole tournament's matches and sets.

    ``exclude_match_id`` leaves one match out, so a match fed from a group
    never counts its own score towards deciding who plays in it.
    """
    members = group_members(snapshot, group_ref)
    if not members:
        return []
    matches = snapshot.matches
    sets = snapshot.sets
    if exclude_match_id is not None:
        matches = [m for m in matches if m.id != exclude_match_id]
        sets = [s for s in sets if s.match_id != exclude_match_id]
    return compute_standings(members, matches, sets, None, snapshot.config)


class _Resolver:
    def __init__(self, snapshot: TournamentSnapshot):
        self.snapshot = snapshot
        self.team_ids = {t.id for t in snapshot.teams}
        self._group_cache: Dict[Tuple[Optional[str], Optional[int]], List[StandingRecord]] = {}

    def invalidate(self) -> None:
        self._group_cache.clear()

    def standings_for(self, group_ref: Optional[str], exclude_match_id: Optional[int] = None) -> List[StandingRecord]:
        key = (group_ref, exclude_match_id)
        if key not in self._group_cache:
            self._group_cache[key] = group_standings(self.snapshot, group_ref, exclude_match_id)
        return self._group_cache[key]

    def resolve(self, source: SourceRef, for_match: Optional[int] = None) -> Optional[int]:
        if source.type == SOURCE_TEAM:
            try:
                team_id = int(source.ref)
            except (TypeError, ValueError):
                logger.debug("Malformed team source %r", source)
                return None
            return team_id if team_id in self.team_ids else None

        if source.type == SOURCE_GROUP_POS:
            if not source.index or source.index < 1:
                logger.debug("group.pos source without a valid index: %r", source)
                return None
            standings = self.standings_for(source.ref, for_match)
            if len(standings) < source.index:
                return None
            return standings[source.index - 1].team_id

        if source.type in (SOURCE_MATCH_WINNER, SOURCE_MATCH_LOSER):
            upstream = self.snapshot.find_match(source.ref)
            if upstream is None or not upstream.is_finished or upstream.winner_team_id is None:
                return None
            if source.type == SOURCE_MATCH_WINNER:
                return upstream.winner_team_id
            if upstream.local_team_id == upstream.winner_team_id:
                return upstream.visitor_team_id
            return upstream.local_team_id

        logger.debug("Unknown source type %r", source.type)
        return None


def _slot_is_held(match: MatchRecord, source: SourceRef, team_attr: str) -> bool:
    """A live match keeps the group position it started with."""
    return match.status == MATCH_LIVE and source.type == SOURCE_GROUP_POS and getattr(match, team_attr) is not None


def resolve_pending(snapshot: TournamentSnapshot) -> ResolutionResult:
    """Resolve every unfinished match's sources against the snapshot.

    Repeats over its own patched view until nothing changes (a fixed point), so
    a chain of dependent matches settles in a single call. Finished
    matches keep their participants.
    Only fields whose value changed appear in the patches. If the passes run
    out before the view settles, nothing is patched and ``settled`` is False.
    """
    backfill = backfill_group_names(snapshot)
    teams = [replace(t, group_name=backfill.get(t.id, t.group_name)) for t in snapshot.teams]
    working = replace(snapshot, teams=teams, matches=[replace(m) for m in snapshot.matches])
    resolver = _Resolver(working)

    passes = 0
    max_passes = len(working.matches) + 1
    changed = True
    while changed and passes < max_passes:
        changed = False
        passes += 1
        resolver.invalidate()
        for match in working.matches:
            if match.status == MATCH_FINISHED:
                continue
            for source_attr, team_attr in SLOT_FIELDS:
                source = getattr(match, source_attr)
                if source is None or _slot_is_held(match, source, team_attr):
                    continue
                team_id = resolver.resolve(source, match.id)
                if team_id is not None and getattr(match, team_attr) != team_id:
                    setattr(match, team_attr, team_id)
                    changed = True

    settled = not changed
    if not settled:
        logger.warning(
            "Tournament %s: sources still changing after %d passes, keeping stored participants",
            snapshot.tournament_id,
            passes,
        )
        working = replace(working, matches=[replace(m) for m in snapshot.matches])

    originals = {m.id: m for m in snapshot.matches}
    patches: List[MatchPatch] = []
    unresolved = 0
    for match in working.matches:
        before = originals[match.id]
        fields: Dict[str, Optional[int]] = {}
        for source_attr, team_attr in SLOT_FIELDS:
            if getattr(match, team_attr) != getattr(before, team_attr):
                fields[team_attr] = getattr(match, team_attr)
            if match.status != MATCH_FINISHED and getattr(match, source_attr) is not None and getattr(match, team_attr) is None:
                unresolved += 1
        if fields:
            patches.append(MatchPatch(match_id=match.id, fields=fields))

    return ResolutionResult(
        patches=patches,
        group_backfill=backfill,
        matches=working.matches,
        unresolved_slots=unresolved,
        passes=passes,
        settled=settled,
    )
