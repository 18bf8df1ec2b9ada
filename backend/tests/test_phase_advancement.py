"""Phase advancement decisions (pure)."""
from app.services.phase_advancement import (
    PhaseTransition,
    active_phase,
    evaluate_phase_advancement,
    first_startable_phase,
    is_phase_complete,
)
from app.services.snapshot import MatchRecord, PhaseRecord


def _phases(*statuses):
    return [PhaseRecord(id=i, order=i, status=s) for i, s in enumerate(statuses, start=1)]


def _match(match_id, phase_id, status):
    return MatchRecord(id=match_id, phase_id=phase_id, status=status)


def test_phase_without_matches_is_not_complete():
    assert not is_phase_complete(1, [])
    assert not is_phase_complete(1, [_match(1, 2, "finished")])


def test_phase_complete_only_when_every_match_finished():
    matches = [_match(1, 1, "finished"), _match(2, 1, "live")]
    assert not is_phase_complete(1, matches)
    matches[1].status = "finished"
    assert is_phase_complete(1, matches)


def test_advance_to_next_phase_by_order():
    phases = [PhaseRecord(id=7, order=2, status="pending"), PhaseRecord(id=3, order=1, status="active"),
              PhaseRecord(id=9, order=3, status="pending")]
    matches = [_match(1, 3, "finished"), _match(2, 7, "scheduled")]

    assert evaluate_phase_advancement(phases, matches) == PhaseTransition(finished_phase_id=3, activated_phase_id=7)


def test_no_transition_while_matches_remain():
    phases = _phases("active", "pending")
    assert evaluate_phase_advancement(phases, [_match(1, 1, "finished"), _match(2, 1, "scheduled")]) is None


def test_no_transition_for_empty_active_phase():
    assert evaluate_phase_advancement(_phases("active", "pending"), []) is None


def test_last_phase_just_finishes():
    phases = _phases("finished", "active")
    transition = evaluate_phase_advancement(phases, [_match(1, 2, "finished")])

    assert transition == PhaseTransition(finished_phase_id=2, activated_phase_id=None)
    assert transition.to_dict() == {"finished_phase_id": 2, "activated_phase_id": None}


def test_no_active_phase_means_nothing_to_do():
    assert evaluate_phase_advancement(_phases("finished", "finished"), [_match(1, 1, "finished")]) is None
    assert evaluate_phase_advancement(_phases("pending", "pending"), [_match(1, 1, "finished")]) is None


def test_phases_are_never_skipped():
    # The next phase by order is not pending: nothing gets activated out of order.
    phases = _phases("active", "finished", "pending")
    transition = evaluate_phase_advancement(phases, [_match(1, 1, "finished")])

    assert transition.activated_phase_id is None


def test_active_phase_picks_lowest_order():
    phases = _phases("finished", "active", "active")
    assert active_phase(phases).id == 2


def test_first_startable_phase():
    assert first_startable_phase(_phases("pending", "pending")).id == 1
    assert first_startable_phase(_phases("active", "pending")) is None
    assert first_startable_phase(_phases("finished", "pending")) is None
    assert first_startable_phase([]) is None
