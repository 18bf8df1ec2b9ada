"""End-to-end over the API: groups -> fixtures -> results -> standings -> bracket resolution -> phase advance."""
import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def tournament(client: TestClient):
    """Four teams in one group (phase 1) and a final between 1st and 2nd of group A (phase 2)."""
    tid = client.post("/api/tournaments", json={"name": "Flow Cup"}).json()["id"]
    team_ids = [
        client.post(f"/api/tournaments/{tid}/teams", json={"name": name}).json()["id"]
        for name in ("Lions", "Bears", "Wolves", "Eagles")
    ]

    groups = client.post(
        f"/api/tournaments/{tid}/phases",
        json={"name": "Group stage", "phase_type": "group", "order": 1, "number_of_groups": 1},
    )
    assert groups.status_code == 201
    assert groups.json()["groups"][0]["team_ids"] == team_ids

    finals = client.post(
        f"/api/tournaments/{tid}/phases", json={"name": "Final", "phase_type": "elimination", "order": 2}
    )
    assert finals.status_code == 201

    return {"tid": tid, "team_ids": team_ids, "groups_id": groups.json()["id"], "finals_id": finals.json()["id"]}


def _generate(client: TestClient, t):
    group_matches = client.post(f"/api/tournaments/{t['tid']}/phases/{t['groups_id']}/fixtures", json={})
    assert group_matches.status_code == 201
    final = client.post(
        f"/api/tournaments/{t['tid']}/phases/{t['finals_id']}/fixtures",
        json={"entries": [{"type": "group.pos", "ref": "A", "index": 1}, {"type": "group.pos", "ref": "A", "index": 2}]},
    )
    assert final.status_code == 201
    return group_matches.json(), final.json()[0]


def _play(client: TestClient, tid, match_id, local_runs, visitor_runs):
    response = client.post(
        f"/api/tournaments/{tid}/matches/{match_id}/sets",
        json={"set_number": 1, "local_runs": local_runs, "visitor_runs": visitor_runs},
    )
    assert response.status_code == 201
    response = client.patch(f"/api/tournaments/{tid}/matches/{match_id}", json={"status": "finished"})
    assert response.status_code == 200
    return response.json()


def test_group_fixtures_are_round_robin(client: TestClient, tournament):
    group_matches, final = _generate(client, tournament)

    assert len(group_matches) == 6
    assert all(m["group_name"] == "A" for m in group_matches)
    assert [m["match_number"] for m in group_matches] == [1, 2, 3, 4, 5, 6]
    assert final["match_number"] == 7
    assert final["name"] == "Final"
    assert final["source_home"] == {"type": "group.pos", "ref": "A", "index": 1}
    assert final["home_label"] == "1st Group A"

    again = client.post(f"/api/tournaments/{tournament['tid']}/phases/{tournament['groups_id']}/fixtures", json={})
    assert again.status_code == 409


def test_bracket_fixtures_need_entries(client: TestClient, tournament):
    response = client.post(f"/api/tournaments/{tournament['tid']}/phases/{tournament['finals_id']}/fixtures", json={})
    assert response.status_code == 422


def test_full_progression(client: TestClient, tournament):
    tid = tournament["tid"]
    lions, bears, wolves, eagles = tournament["team_ids"]
    group_matches, final = _generate(client, tournament)

    start = client.post(f"/api/tournaments/{tid}/phases/start")
    assert start.json() == {"activated_phase_id": tournament["groups_id"]}
    assert client.post(f"/api/tournaments/{tid}/phases/start").json() == {"activated_phase_id": None}

    # The home side wins every group game 5-0: Lions 9 pts, the other three on 3 pts and -5.
    results = [_play(client, tid, m["id"], 5, 0) for m in group_matches]

    assert all(r["match"]["status"] == "finished" for r in results)
    assert results[-1]["transition"] == {
        "finished_phase_id": tournament["groups_id"],
        "activated_phase_id": tournament["finals_id"],
    }

    standings = client.get(f"/api/tournaments/{tid}/standings", params={"phase_id": tournament["groups_id"]}).json()
    rows = standings["standings"]
    assert [r["team_id"] for r in rows] == [lions, bears, wolves, eagles]
    assert rows[0]["points"] == 9 and rows[0]["run_diff"] == 15
    assert [r["points"] for r in rows[1:]] == [3, 3, 3]
    assert standings["tied_groups"] == [
        {"group_name": "A", "points": 3, "original_rank": 2, "team_ids": [bears, wolves, eagles]}
    ]

    final = client.get(f"/api/tournaments/{tid}/matches/{final['id']}").json()
    assert (final["local_team_id"], final["visitor_team_id"]) == (lions, bears)
    assert final["home_label"] == "Lions"

    # Group stage is over: its results can't change any more.
    locked = client.post(
        f"/api/tournaments/{tid}/matches/{group_matches[0]['id']}/sets", json={"local_runs": 0, "visitor_runs": 9}
    )
    assert locked.status_code == 422

    done = _play(client, tid, final["id"], 2, 1)
    assert done["match"]["winner_team_id"] == lions
    assert done["transition"] == {"finished_phase_id": tournament["finals_id"], "activated_phase_id": None}
    assert client.get(f"/api/tournaments/{tid}").json()["status"] == "completed"

    activity = client.get(f"/api/tournaments/{tid}/activity").json()
    assert {"match_end", "phase_advance", "set_end"} <= {a["activity_type"] for a in activity}


def test_unresolved_match_cannot_start(client: TestClient, tournament):
    _, final = _generate(client, tournament)
    tid = tournament["tid"]

    # A loser slot stays empty until its match finishes.
    response = client.post(
        f"/api/tournaments/{tid}/matches",
        json={
            "phase_id": tournament["finals_id"],
            "name": "Third place",
            "source_home": {"type": "match.loser", "ref": str(final["id"])},
            "source_away": {"type": "team", "ref": str(tournament["team_ids"][2])},
        },
    )
    assert response.status_code == 201
    third = response.json()
    assert third["home_label"] == f"Loser #{final['match_number']}"
    assert third["away_label"] == "Wolves"

    live = client.patch(f"/api/tournaments/{tid}/matches/{third['id']}", json={"status": "live"})
    assert live.status_code == 422


def test_match_sources_by_number_and_malformed_refs(client: TestClient, tournament):
    _, final = _generate(client, tournament)
    tid = tournament["tid"]
    url = f"/api/tournaments/{tid}/matches"

    by_number = client.post(
        url,
        json={
            "phase_id": tournament["finals_id"],
            "source_home": {"type": "match.winner", "ref": f"#{final['match_number']}"},
        },
    )
    assert by_number.status_code == 201
    assert by_number.json()["home_label"] == f"Winner #{final['match_number']}"

    for ref in ("final", "#", "#x", "12a"):
        bad = client.post(url, json={"phase_id": tournament["finals_id"], "source_home": {"type": "match.loser", "ref": ref}})
        assert bad.status_code == 422


def test_status_transitions(client: TestClient, tournament):
    tid = tournament["tid"]
    lions, bears = tournament["team_ids"][:2]
    group_matches, _ = _generate(client, tournament)
    match = next(m for m in group_matches if {m["local_team_id"], m["visitor_team_id"]} == {lions, bears})
    mid = match["id"]

    assert client.patch(f"/api/tournaments/{tid}/matches/{mid}", json={"status": "paused"}).status_code == 422

    live = client.patch(f"/api/tournaments/{tid}/matches/{mid}", json={"status": "live"})
    assert live.status_code == 200
    assert live.json()["match"]["started_at"] is not None
    assert client.patch(f"/api/tournaments/{tid}/matches/{mid}", json={"status": "scheduled"}).status_code == 422

    # No finished sets yet: a winner has to be named, and it has to be a participant.
    assert client.patch(f"/api/tournaments/{tid}/matches/{mid}", json={"status": "finished"}).status_code == 422
    outsider = tournament["team_ids"][3]
    response = client.patch(
        f"/api/tournaments/{tid}/matches/{mid}", json={"status": "finished", "winner_team_id": outsider}
    )
    assert response.status_code == 422

    # Legacy score keys are accepted for set entry.
    response = client.post(
        f"/api/tournaments/{tid}/matches/{mid}/sets", json={"set_number": 1, "home_score": 1, "away_score": 4}
    )
    assert response.status_code == 201
    assert (response.json()["local_runs"], response.json()["visitor_runs"]) == (1, 4)

    finished = client.patch(f"/api/tournaments/{tid}/matches/{mid}", json={"status": "finished"})
    assert finished.status_code == 200
    assert finished.json()["match"]["winner_team_id"] == match["visitor_team_id"]

    assert client.patch(f"/api/tournaments/{tid}/matches/{mid}", json={"status": "live"}).status_code == 422
    sets = client.get(f"/api/tournaments/{tid}/matches/{mid}/sets").json()
    assert len(sets) == 1


def test_negative_runs_rejected(client: TestClient, tournament):
    group_matches, _ = _generate(client, tournament)
    response = client.post(
        f"/api/tournaments/{tournament['tid']}/matches/{group_matches[0]['id']}/sets",
        json={"local_runs": -1, "visitor_runs": 2},
    )
    assert response.status_code == 422


def test_standings_by_group(client: TestClient, tournament):
    tid = tournament["tid"]
    _generate(client, tournament)

    response = client.get(f"/api/tournaments/{tid}/standings", params={"group": "A"})
    assert response.status_code == 200
    assert len(response.json()["standings"]) == 4
    assert response.json()["standings"][0]["position"] == 1

    assert client.get(f"/api/tournaments/{tid}/standings", params={"group": "Z"}).status_code == 404


def test_progression_run_endpoint_is_idempotent(client: TestClient, tournament):
    tid = tournament["tid"]
    _generate(client, tournament)

    first = client.post(f"/api/tournaments/{tid}/progression/run")
    second = client.post(f"/api/tournaments/{tid}/progression/run")

    assert first.status_code == 200
    assert second.json()["updated_count"] == 0
    assert second.json()["transition"] is None
