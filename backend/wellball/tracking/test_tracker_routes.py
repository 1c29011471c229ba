from __future__ import annotations

from fastapi.testclient import TestClient

from wellball.main import app
from wellball.store.documents import get_store

MAIN = {"X-Caller-Id": "main-op"}
ALICE = {"X-Caller-Id": "alice"}
BOB = {"X-Caller-Id": "bob"}


def _new_game(client: TestClient) -> str:
    r = client.post(
        "/games",
        json={
            "team_a_ids": ["a1"],
            "team_b_ids": ["b1"],
            "mode": "freestyle",
            "freestyle": {"target_score": 5, "points_for_win": 1},
        },
        headers=MAIN,
    )
    assert r.status_code == 200, r.text
    return r.json()["game_id"]


def test_join_claim_and_score_through_the_lock() -> None:
    get_store().clear()
    client = TestClient(app)
    game_id = _new_game(client)

    r = client.post(f"/games/{game_id}/trackers/join", json={"team": "A"}, headers=ALICE)
    assert r.status_code == 200, r.text
    assert r.json()["team"] == "A"

    r = client.post(f"/games/{game_id}/trackers/claim", json={"team": "A"}, headers=ALICE)
    assert r.json() == {"A": "alice", "B": None}

    r = client.post(f"/games/{game_id}/trackers/claim", json={"team": "A"}, headers=BOB)
    assert r.status_code == 409
    assert r.json()["code"] == "InvalidLockTransition"

    r = client.post(f"/games/{game_id}/shots", json={"player_id": "a1", "shot_type": "mid", "made": True}, headers=ALICE)
    assert r.status_code == 200, r.text
    assert r.json()["log"]["source"] == "manual"

    trackers = client.get(f"/games/{game_id}/trackers").json()
    assert [t["uid"] for t in trackers] == ["alice"]

    ready = {t["team"]: t for t in client.get(f"/games/{game_id}/readiness").json()}
    assert ready["A"]["ready"] is True
    assert ready["B"]["ready"] is False

    r = client.post(f"/games/{game_id}/trackers/leave", headers=ALICE)
    assert r.json() == {"A": None, "B": None}


def test_force_assign_is_main_only() -> None:
    get_store().clear()
    client = TestClient(app)
    game_id = _new_game(client)

    r = client.put(f"/games/{game_id}/locks/B", json={"uid": "bob"}, headers=ALICE)
    assert r.status_code == 403

    r = client.put(f"/games/{game_id}/locks/B", json={"uid": "bob"}, headers=MAIN)
    assert r.json() == {"A": None, "B": "bob"}

    r = client.post(f"/games/{game_id}/trackers/heartbeat", headers=BOB)
    assert r.json() == {"A": None, "B": "bob"}

    r = client.put(f"/games/{game_id}/locks/C", json={"uid": "bob"}, headers=MAIN)
    assert r.status_code == 422
