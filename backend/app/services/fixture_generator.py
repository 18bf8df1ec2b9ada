"""
Fixture generation: group distribution, round-robin group matches, and single
elimination brackets wired with symbolic sources.

Pure helpers first; the ``create_*`` functions write Match rows for a phase.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from app.models.match import (
    MATCH_NUMBER_PREFIX,
    MATCH_SCHEDULED,
    SOURCE_GROUP_POS,
    SOURCE_MATCH_LOSER,
    SOURCE_MATCH_WINNER,
    SOURCE_TEAM,
    Match,
)
from app.models.phase import Phase, PhaseGroup
from app.services.snapshot import SourceRef

logger = logging.getLogger(__name__)

GROUP_NAMES = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def distribute_teams(team_ids: Sequence[int], number_of_groups: int) -> List[Tuple[str, List[int]]]:
    """Deal teams into groups A, B, ... in order (team i goes to group i % n)."""
    if number_of_groups < 1 or number_of_groups > len(GROUP_NAMES):
        raise ValueError(f"number_of_groups must be between 1 and {len(GROUP_NAMES)}")
    groups: List[Tuple[str, List[int]]] = [(GROUP_NAMES[i], []) for i in range(number_of_groups)]
    for index, team_id in enumerate(team_ids):
        groups[index % number_of_groups][1].append(team_id)
    return groups


def round_robin_pairings(team_ids: Sequence[int]) -> List[Tuple[int, int, int, int]]:
    """
    Circle-method round robin. Returns (round_index, sequence_in_round, local_id, visitor_id).

    Odd groups get a BYE slot; pairings against the BYE are dropped. The first
    team stays fixed while the rest rotate one position per round.
    """
    slots: List[Optional[int]] = list(team_ids)
    if len(slots) < 2:
        return []
    if len(slots) % 2 == 1:
        slots.append(None)

    n = len(slots)
    result: List[Tuple[int, int, int, int]] = []
    for round_index in range(1, n):
        seq = 0
        for i in range(n // 2):
            home, away = slots[i], slots[n - 1 - i]
            if home is None or away is None:
                continue
            seq += 1
            result.append((round_index, seq, home, away))
        slots = [slots[0], slots[-1]] + slots[1:-1]
    return result


def bracket_positions(size: int) -> List[int]:
    """Seed numbers in bracket order: 4 -> [1, 4, 2, 3], 8 -> [1, 8, 4, 5, 2, 7, 3, 6]."""
    if size < 2:
        return [1]
    positions = [1, 2]
    while len(positions) < size:
        total = len(positions) * 2 + 1
        positions = [s for seed in positions for s in (seed, total - seed)]
    return positions


def round_name(round_index: int, total_rounds: int) -> str:
    remaining = total_rounds - round_index
    if remaining == 0:
        return "Final"
    if remaining == 1:
        return "Semifinal"
    if remaining == 2:
        return "Quarterfinal"
    return f"Round {round_index}"


@dataclass
class PlannedMatch:
    round_index: int
    position: int  # 1-based within round
    name: str
    source_home: Optional[SourceRef] = None
    source_away: Optional[SourceRef] = None
    home_feeder: Optional[int] = None  # index of the planned match whose winner plays home
    away_feeder: Optional[int] = None


def single_elimination(entries: Sequence[SourceRef]) -> List[PlannedMatch]:
    """
    Build a single elimination bracket from entries given in seed order.

    Entries are padded with byes to the next power of two; a first-round slot
    facing a bye is passed straight through to the next round instead of
    producing a match.
    """
    if len(entries) < 2:
        raise ValueError("A bracket needs at least two entries")

    size = 1
    while size < len(entries):
        size *= 2
    total_rounds = size.bit_length() - 1

    # Each feed is either ("source", SourceRef) or ("match", index into planned)
    feeds: List[Tuple[str, object]] = []
    for seed in bracket_positions(size):
        feeds.append(("source", entries[seed - 1]) if seed <= len(entries) else ("bye", None))

    planned: List[PlannedMatch] = []
    for round_index in range(1, total_rounds + 1):
        next_feeds: List[Tuple[str, object]] = []
        position = 0
        for i in range(0, len(feeds), 2):
            home, away = feeds[i], feeds[i + 1]
            if home[0] == "bye" or away[0] == "bye":
                next_feeds.append(away if home[0] == "bye" else home)
                continue
            position += 1
            plan = PlannedMatch(
                round_index=round_index,
                position=position,
                name=round_name(round_index, total_rounds),
            )
            for side, feed in (("home", home), ("away", away)):
                if feed[0] == "match":
                    setattr(plan, f"{side}_feeder", feed[1])
                else:
                    setattr(plan, f"source_{side}", feed[1])
            planned.append(plan)
            next_feeds.append(("match", len(planned) - 1))
        feeds = next_feeds

    # Finals and semifinals get numbered names when a round has several matches
    per_round: Dict[int, int] = {}
    for plan in planned:
        per_round[plan.round_index] = per_round.get(plan.round_index, 0) + 1
    for plan in planned:
        if per_round[plan.round_index] > 1:
            plan.name = f"{plan.name} {plan.position}"
    return planned


def _ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def describe_source(
    source: Optional[SourceRef],
    team_names: Optional[Dict[int, str]] = None,
    match_numbers: Optional[Dict[int, Optional[int]]] = None,
) -> str:
    """Human label for a source: '1st Group A', 'Winner #5', 'Loser #5', team name, or 'TBD'."""
    if source is None:
        return "TBD"
    if source.type == SOURCE_GROUP_POS:
        return f"{_ordinal(source.index or 0)} Group {source.ref}"
    if source.type in (SOURCE_MATCH_WINNER, SOURCE_MATCH_LOSER):
        label = "Winner" if source.type == SOURCE_MATCH_WINNER else "Loser"
        number = source.ref
        if source.ref is not None and source.ref.startswith(MATCH_NUMBER_PREFIX):
            number = source.ref[len(MATCH_NUMBER_PREFIX):]
        elif match_numbers and source.ref is not None and source.ref.isdigit():
            number = match_numbers.get(int(source.ref)) or source.ref
        return f"{label} #{number}"
    if source.type == SOURCE_TEAM:
        if team_names and source.ref is not None and source.ref.isdigit():
            return team_names.get(int(source.ref), "TBD")
        return "TBD"
    return "TBD"


# ============================================================================
# Persistence
# ============================================================================


def next_match_number(session: Session, tournament_id: int) -> int:
    current = session.exec(
        select(func.max(Match.match_number)).where(Match.tournament_id == tournament_id)
    ).one()
    return (current or 0) + 1


def create_group_fixtures(session: Session, phase: Phase) -> List[Match]:
    """Round-robin matches for every group of a phase. Team ids are set directly (literal sources)."""
    groups = session.exec(
        select(PhaseGroup).where(PhaseGroup.phase_id == phase.id).order_by(PhaseGroup.name)
    ).all()
    number = next_match_number(session, phase.tournament_id)
    created: List[Match] = []
    for group in groups:
        for round_index, seq, local_id, visitor_id in round_robin_pairings(group.team_ids or []):
            match = Match(
                tournament_id=phase.tournament_id,
                phase_id=phase.id,
                match_number=number,
                name=f"R{round_index} - Group {group.name}",
                group_name=group.name,
                round_index=round_index,
                status=MATCH_SCHEDULED,
                local_team_id=local_id,
                visitor_team_id=visitor_id,
                source_home_type=SOURCE_TEAM,
                source_home_ref=str(local_id),
                source_away_type=SOURCE_TEAM,
                source_away_ref=str(visitor_id),
            )
            session.add(match)
            created.append(match)
            number += 1
    session.commit()
    for match in created:
        session.refresh(match)
    logger.info("Created %d group matches for phase %s", len(created), phase.id)
    return created


def create_bracket_fixtures(session: Session, phase: Phase, entries: Sequence[SourceRef]) -> List[Match]:
    """Single elimination matches for a phase; later rounds point at earlier matches' winners."""
    planned = single_elimination(entries)
    number = next_match_number(session, phase.tournament_id)
    created: List[Match] = []
    for plan in planned:
        home = plan.source_home
        away = plan.source_away
        if plan.home_feeder is not None:
            home = SourceRef(type=SOURCE_MATCH_WINNER, ref=str(created[plan.home_feeder].id))
        if plan.away_feeder is not None:
            away = SourceRef(type=SOURCE_MATCH_WINNER, ref=str(created[plan.away_feeder].id))
        match = Match(
            tournament_id=phase.tournament_id,
            phase_id=phase.id,
            match_number=number,
            name=plan.name,
            round_index=plan.round_index,
            status=MATCH_SCHEDULED,
            source_home_type=home.type if home else None,
            source_home_ref=home.ref if home else None,
            source_home_index=home.index if home else None,
            source_away_type=away.type if away else None,
            source_away_ref=away.ref if away else None,
            source_away_index=away.index if away else None,
        )
        session.add(match)
        session.flush()
        created.append(match)
        number += 1
    session.commit()
    for match in created:
        session.refresh(match)
    logger.info("Created %d bracket matches for phase %s", len(created), phase.id)
    return created
