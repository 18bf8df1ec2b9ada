"""Row normalization at the snapshot boundary, and loading a snapshot from the database."""
from sqlmodel import Session

from app.models.match import Match
from app.models.match_set import MatchSet
from app.models.phase import Phase, PhaseGroup
from app.models.team import Team
from app.models.tournament import Tournament
from app.services.snapshot import (
    GroupRecord,
    MatchRecord,
    PhaseRecord,
    SourceRef,
    TournamentSnapshot,
    load_snapshot,
    normalize_match_row,
    normalize_rules,
    normalize_set_row,
    normalize_team_row,
)


def test_legacy_set_scores_take_priority():
    record = normalize_set_row({"match_id": "4", "home_score": 7, "away_score": "2", "local_runs": 1, "status": "finished"})

    assert record.match_id == 4
    assert (record.local_runs, record.visitor_runs) == (7, 2)
    assert record.set_number == 1
    assert record.is_finished


def test_set_row_defaults_to_zero_runs():
    record = normalize_set_row({"match_id": 1, "visitor_runs": None})
    assert (record.local_runs, record.visitor_runs, record.status) == (0, 0, "pending")


def test_match_row_accepts_legacy_column_names():
    record = normalize_match_row(
        {
            "id": 3,
            "stage_id": "2",
            "global_id": 17,
            "source_home_type": "match.winner",
            "source_home_id": 9,
            "source_away_type": "group.pos",
            "source_away_ref": "A",
            "source_away_index": "2",
        }
    )

    assert record.phase_id == 2
    assert record.match_number == 17
    assert record.status == "scheduled"
    assert record.source_home == SourceRef(type="match.winner", ref="9")
    assert record.source_away == SourceRef(type="group.pos", ref="A", index=2)


def test_match_row_without_sources():
    record = normalize_match_row({"id": 1, "phase_id": 1, "local_team_id": 5})
    assert record.source_home is None and record.source_away is None
    assert record.local_team_id == 5


def test_team_row():
    record = normalize_team_row({"id": 2, "name": "Owls", "group_id": "B", "seed": None})
    assert (record.group_name, record.seed) == ("B", 0)


def test_malformed_rules_are_skipped():
    rules = normalize_rules([{"type": "run_diff", "order": 2}, {"order": 1}, "junk", {"type": "random", "active": False}])

    assert [(r.type, r.order, r.active) for r in rules] == [("run_diff", 2, True), ("random", 4, False)]
    assert normalize_rules(None) == []


def test_find_match_and_group():
    snapshot = TournamentSnapshot(
        tournament_id=1,
        matches=[MatchRecord(id=1, phase_id=1, match_number=5), MatchRecord(id=5, phase_id=1, match_number=9)],
        phases=[
            PhaseRecord(id=2, order=2, groups=[GroupRecord(name="A", id=30)]),
            PhaseRecord(id=1, order=1, groups=[GroupRecord(name="A", id=20), GroupRecord(name="B", id=21)]),
        ],
    )

    assert snapshot.find_match("5").id == 5
    assert snapshot.find_match("#5").id == 1
    assert snapshot.find_match("#9").id == 5
    assert snapshot.find_match("9") is None
    assert snapshot.find_match("x") is None
    assert snapshot.find_match("#") is None
    assert snapshot.find_group("A").id == 20
    assert snapshot.find_group("30").name == "A"
    assert snapshot.find_group("Z") is None


def test_load_snapshot(session: Session):
    tournament = Tournament(name="Snapshot Cup", tiebreaker_rules=[{"type": "run_diff", "order": 1}], random_draws_used=2)
    session.add(tournament)
    session.commit()
    session.refresh(tournament)

    teams = [Team(tournament_id=tournament.id, name=n) for n in ("Red", "Blue")]
    session.add_all(teams)
    phase = Phase(tournament_id=tournament.id, name="Groups", order=1, status="active")
    session.add(phase)
    session.commit()
    for t in teams:
        session.refresh(t)
    session.refresh(phase)

    session.add(PhaseGroup(phase_id=phase.id, name="A", team_ids=[teams[1].id, teams[0].id]))
    match = Match(
        tournament_id=tournament.id,
        phase_id=phase.id,
        match_number=1,
        local_team_id=teams[0].id,
        visitor_team_id=teams[1].id,
        source_home_type="team",
        source_home_ref=str(teams[0].id),
    )
    session.add(match)
    session.commit()
    session.refresh(match)
    session.add(MatchSet(match_id=match.id, set_number=1, status="finished", local_runs=4, visitor_runs=2))
    session.commit()

    snapshot = load_snapshot(session, tournament.id)

    assert [t.name for t in snapshot.teams] == ["Red", "Blue"]
    assert snapshot.phases[0].groups[0].team_ids == [teams[1].id, teams[0].id]
    assert snapshot.matches[0].source_home == SourceRef(type="team", ref=str(teams[0].id))
    assert snapshot.sets[0].local_runs == 4
    assert snapshot.config.points_for_win == 3
    assert [r.type for r in snapshot.config.tiebreaker_rules] == ["run_diff"]
    assert snapshot.random_draws_used == 2

    assert load_snapshot(session, 9999) is None


def test_match_ids_and_numbers_never_collide():
    # Ids 21-50 carry numbers 1-30, so 21-30 exist as both.
    snapshot = TournamentSnapshot(
        tournament_id=1,
        matches=[MatchRecord(id=20 + n, phase_id=1, match_number=n) for n in range(1, 31)],
    )

    assert snapshot.find_match("25").id == 25
    assert snapshot.find_match("25").match_number == 5
    assert snapshot.find_match("#25").id == 45
    assert snapshot.find_match("3") is None
    assert snapshot.find_match("#3").id == 23
