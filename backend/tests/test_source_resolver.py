"""Source resolver: symbolic slots -> team ids, against an in-memory snapshot."""
import itertools
from dataclasses import replace

from app.services.snapshot import (
    GroupRecord,
    MatchRecord,
    PhaseRecord,
    SetRecord,
    SourceRef,
    TeamRecord,
    TournamentSnapshot,
)
from app.services import source_resolver
from app.services.source_resolver import backfill_group_names, resolve_pending


def _snapshot(matches, sets=(), teams=None, phases=None):
    teams = teams or [TeamRecord(id=i, name=f"T{i}", group_name="A" if i <= 4 else "B") for i in range(1, 9)]
    phases = phases or [
        PhaseRecord(
            id=1,
            order=1,
            status="active",
            groups=[GroupRecord(name="A", team_ids=[1, 2, 3, 4], id=10), GroupRecord(name="B", team_ids=[5, 6, 7, 8], id=11)],
        ),
        PhaseRecord(id=2, order=2, status="pending", phase_type="elimination"),
    ]
    return TournamentSnapshot(tournament_id=1, teams=teams, matches=list(matches), sets=list(sets), phases=phases)


def _apply(snapshot, result):
    """Write patches back into a snapshot, like the persistence layer does."""
    by_id = {p.match_id: p.fields for p in result.patches}
    matches = [replace(m, **by_id.get(m.id, {})) for m in snapshot.matches]
    return replace(snapshot, matches=matches)


def test_match_winner_resolves_once_upstream_finishes():
    upstream = MatchRecord(id=1, phase_id=2, status="live", local_team_id=5, visitor_team_id=6)
    downstream = MatchRecord(
        id=2,
        phase_id=2,
        source_home=SourceRef(type="match.winner", ref="1"),
        source_away=SourceRef(type="team", ref="7"),
    )
    snapshot = _snapshot([upstream, downstream])

    result = resolve_pending(snapshot)
    patched = {p.match_id: p.fields for p in result.patches}
    assert patched == {2: {"visitor_team_id": 7}}
    assert result.unresolved_slots == 1

    finished = replace(upstream, status="finished", winner_team_id=5)
    result = resolve_pending(_snapshot([finished, replace(downstream, visitor_team_id=7)]))

    assert [(p.match_id, p.fields) for p in result.patches] == [(2, {"local_team_id": 5})]
    assert result.unresolved_slots == 0


def test_match_loser_and_match_number_reference():
    upstream = MatchRecord(
        id=40, phase_id=2, status="finished", local_team_id=5, visitor_team_id=6, winner_team_id=6, match_number=7
    )
    downstream = MatchRecord(id=41, phase_id=2, source_home=SourceRef(type="match.loser", ref="#7"))

    result = resolve_pending(_snapshot([upstream, downstream]))

    assert result.patches[0].fields == {"local_team_id": 5}


def test_bare_refs_are_ids_and_hash_refs_are_numbers():
    by_id = MatchRecord(id=3, phase_id=2, status="finished", local_team_id=1, visitor_team_id=2, winner_team_id=1, match_number=9)
    by_number = MatchRecord(id=9, phase_id=2, status="finished", local_team_id=3, visitor_team_id=4, winner_team_id=4, match_number=3)
    downstream = MatchRecord(
        id=12,
        phase_id=2,
        source_home=SourceRef(type="match.winner", ref="3"),
        source_away=SourceRef(type="match.winner", ref="#3"),
    )

    result = resolve_pending(_snapshot([by_id, by_number, downstream]))

    assert result.patches[0].fields == {"local_team_id": 1, "visitor_team_id": 4}


def test_group_position_uses_group_standings():
    group_games = [
        MatchRecord(id=1, phase_id=1, status="finished", local_team_id=1, visitor_team_id=2, winner_team_id=2),
        MatchRecord(id=2, phase_id=1, status="finished", local_team_id=3, visitor_team_id=4, winner_team_id=3),
        MatchRecord(id=3, phase_id=1, status="finished", local_team_id=2, visitor_team_id=3, winner_team_id=2),
    ]
    sets = [
        SetRecord(id=1, match_id=1, status="finished", local_runs=1, visitor_runs=4),
        SetRecord(id=2, match_id=2, status="finished", local_runs=6, visitor_runs=0),
        SetRecord(id=3, match_id=3, status="finished", local_runs=2, visitor_runs=1),
    ]
    semi = MatchRecord(
        id=20,
        phase_id=2,
        source_home=SourceRef(type="group.pos", ref="A", index=1),
        source_away=SourceRef(type="group.pos", ref="A", index=2),
    )

    result = resolve_pending(_snapshot(group_games + [semi], sets))

    # T2: 6 pts; T3: 3 pts; T1, T4: 0
    assert result.patches[0].fields == {"local_team_id": 2, "visitor_team_id": 3}


def test_group_position_by_group_id_and_out_of_range():
    semi = MatchRecord(
        id=20,
        phase_id=2,
        source_home=SourceRef(type="group.pos", ref="11", index=1),
        source_away=SourceRef(type="group.pos", ref="A", index=9),
    )
    result = resolve_pending(_snapshot([semi]))

    # No results yet: group B ranks by team id; position 9 doesn't exist.
    assert result.patches[0].fields == {"local_team_id": 5}
    assert result.unresolved_slots == 1


def test_malformed_sources_are_skipped_without_blocking_others():
    bad_group = MatchRecord(id=1, phase_id=2, source_home=SourceRef(type="group.pos", ref="Z", index=1))
    bad_type = MatchRecord(id=2, phase_id=2, source_home=SourceRef(type="bogus", ref="1"))
    bad_team = MatchRecord(id=3, phase_id=2, source_home=SourceRef(type="team", ref="not-a-number"))
    no_index = MatchRecord(id=4, phase_id=2, source_home=SourceRef(type="group.pos", ref="A"))
    good = MatchRecord(id=5, phase_id=2, source_home=SourceRef(type="team", ref="8"))

    result = resolve_pending(_snapshot([bad_group, bad_type, bad_team, no_index, good]))

    assert [(p.match_id, p.fields) for p in result.patches] == [(5, {"local_team_id": 8})]
    assert result.unresolved_slots == 4


def test_finished_matches_are_never_touched():
    finished = MatchRecord(
        id=1,
        phase_id=2,
        status="finished",
        local_team_id=1,
        visitor_team_id=2,
        winner_team_id=1,
        source_home=SourceRef(type="team", ref="3"),
    )
    result = resolve_pending(_snapshot([finished]))

    assert result.patches == []
    assert result.matches[0].local_team_id == 1


def test_second_pass_is_a_no_op():
    upstream = MatchRecord(id=1, phase_id=2, status="finished", local_team_id=5, visitor_team_id=6, winner_team_id=6)
    downstream = MatchRecord(
        id=2,
        phase_id=2,
        source_home=SourceRef(type="match.winner", ref="1"),
        source_away=SourceRef(type="group.pos", ref="A", index=1),
    )
    snapshot = _snapshot([upstream, downstream])

    first = resolve_pending(snapshot)
    second = resolve_pending(_apply(snapshot, first))

    assert first.updated_count == 1
    assert second.patches == []
    assert [m.local_team_id for m in second.matches] == [m.local_team_id for m in first.matches]


def test_backfill_group_names_from_phase_groups():
    teams = [TeamRecord(id=1, name="T1"), TeamRecord(id=2, name="T2", group_name="X"), TeamRecord(id=3, name="T3")]
    phases = [
        PhaseRecord(id=2, order=2, groups=[GroupRecord(name="Later", team_ids=[1, 3])]),
        PhaseRecord(id=1, order=1, groups=[GroupRecord(name="A", team_ids=[1, 2])]),
    ]
    snapshot = _snapshot([], teams=teams, phases=phases)

    assert backfill_group_names(snapshot) == {1: "A", 3: "Later"}
    assert resolve_pending(snapshot).group_backfill == {1: "A", 3: "Later"}


def test_live_match_follows_corrected_upstream():
    # Upstream result was corrected after the semi went live: T2 won, not T1.
    upstream = MatchRecord(id=1, phase_id=2, status="finished", local_team_id=1, visitor_team_id=2, winner_team_id=2)
    live = MatchRecord(
        id=2,
        phase_id=2,
        status="live",
        local_team_id=1,
        visitor_team_id=5,
        source_home=SourceRef(type="match.winner", ref="1"),
    )

    result = resolve_pending(_snapshot([upstream, live]))

    assert [(p.match_id, p.fields) for p in result.patches] == [(2, {"local_team_id": 2})]
    assert result.unresolved_slots == 0


def test_live_match_keeps_its_group_position():
    group_game = MatchRecord(id=1, phase_id=1, status="finished", local_team_id=1, visitor_team_id=2, winner_team_id=2)
    group_set = SetRecord(id=1, match_id=1, status="finished", local_runs=0, visitor_runs=3)
    # Started while T1 still led the group on team id; T2 has since won.
    live = MatchRecord(
        id=2,
        phase_id=2,
        status="live",
        local_team_id=1,
        visitor_team_id=5,
        source_home=SourceRef(type="group.pos", ref="A", index=1),
    )
    scheduled = MatchRecord(id=3, phase_id=2, source_home=SourceRef(type="group.pos", ref="A", index=1))

    result = resolve_pending(_snapshot([group_game, live, scheduled], [group_set]))

    assert [(p.match_id, p.fields) for p in result.patches] == [(3, {"local_team_id": 2})]


def _group_fed_semi(status, local_team_id):
    # T1 and T2 share group A on zero points; the semi fed by 1st of A has a 0-5 set.
    teams = [TeamRecord(id=1, name="T1", group_name="A"), TeamRecord(id=2, name="T2", group_name="A"), TeamRecord(id=5, name="T5")]
    phases = [PhaseRecord(id=1, order=1, status="active", groups=[GroupRecord(name="A", team_ids=[1, 2], id=10)])]
    other = MatchRecord(id=1, phase_id=1, status="finished", local_team_id=5, visitor_team_id=2, winner_team_id=5)
    semi = MatchRecord(
        id=2,
        phase_id=2,
        status=status,
        local_team_id=local_team_id,
        visitor_team_id=5,
        source_home=SourceRef(type="group.pos", ref="A", index=1),
    )
    sets = [SetRecord(id=1, match_id=2, status="finished", local_runs=0, visitor_runs=5)]
    return _snapshot([other, semi], sets, teams=teams, phases=phases)


def test_group_slot_ignores_the_score_of_the_match_it_feeds():
    snapshot = _group_fed_semi("scheduled", None)

    for _ in range(4):
        result = resolve_pending(snapshot)
        assert result.settled
        snapshot = _apply(snapshot, result)
        assert snapshot.find_match("2").local_team_id == 1


def test_live_group_slot_is_stable_across_passes():
    snapshot = _group_fed_semi("live", 1)

    for _ in range(4):
        result = resolve_pending(snapshot)
        assert result.patches == []
        assert result.settled
        snapshot = _apply(snapshot, result)
    assert snapshot.find_match("2").local_team_id == 1


def test_unsettled_resolution_keeps_stored_participants(monkeypatch, caplog):
    flips = itertools.count()
    monkeypatch.setattr(source_resolver._Resolver, "resolve", lambda self, source, for_match=None: 1 + next(flips) % 2)
    match = MatchRecord(id=7, phase_id=2, source_home=SourceRef(type="team", ref="1"))

    result = resolve_pending(_snapshot([match]))

    assert not result.settled
    assert result.patches == []
    assert result.passes == 2
    assert result.matches[0].local_team_id is None
    assert result.unresolved_slots == 1
    assert "still changing" in caplog.text
