import inspect
import time

from fastapi.testclient import TestClient

from andar_bahar.api import routes
from andar_bahar.engine.cards import FULL_DECK, parse_deck
from andar_bahar.main import app

client = TestClient(app)


def deck_codes_starting_with(codes):
    head = parse_deck(codes)
    return [c.code for c in head + [c for c in FULL_DECK if c not in head]]


def test_health():
    assert client.get("/health").json() == {"status": "ok"}


def test_deck_and_shuffle():
    deck = client.get("/api/deck").json()
    assert len(deck) == 52
    assert deck[0] == {"rank": "A", "suit": "Hearts"}
    shuffled = client.post("/api/shuffle", json={"seed": 4}).json()
    assert sorted(map(str, shuffled)) == sorted(map(str, deck))
    assert client.post("/api/shuffle", json={"seed": 4}).json() == shuffled


def test_round_from_given_deck():
    resp = client.post("/api/rounds", json={"deck": deck_codes_starting_with("AH 5D AS 2C")})
    assert resp.status_code == 200
    body = resp.json()
    assert body == {"marker": {"rank": "A", "suit": "Hearts"}, "winner": "Andar", "cards_dealt": 2}


def test_round_rejects_partial_deck():
    resp = client.post("/api/rounds", json={"deck": ["AH", "5D", "AS"]})
    assert resp.status_code == 422


def test_random_round():
    body = client.post("/api/rounds", json={"seed": 9}).json()
    assert 1 <= body["cards_dealt"] <= 51
    assert body["winner"] in ("Andar", "Bahar")


def test_predictions():
    resp = client.post("/api/predictions", json={"deck": ["AH", "5D", "AS", "2C"], "marker": "AH"})
    assert resp.status_code == 200
    assert [(p["card"]["rank"], p["side"], p["position"], p["type"]) for p in resp.json()] == [
        ("5", "Bahar", 2, "higher"),
        ("A", "Andar", 3, "match"),
        ("2", "Bahar", 4, "higher"),
    ]


def test_predictions_missing_marker_is_empty():
    resp = client.post("/api/predictions", json={"deck": ["2C", "3D"], "marker": "AH"})
    assert resp.status_code == 200
    assert resp.json() == []


def test_predictions_reject_duplicate_cards():
    resp = client.post("/api/predictions", json={"deck": ["AH", "AH"], "marker": "AH"})
    assert resp.status_code == 422


def test_generate_and_cheat_sheet():
    generated = client.post("/api/predictions/generate", json={"marker": "KS", "seed": 2}).json()
    assert generated["deck"][0] == {"rank": "K", "suit": "Spades"}
    assert set(generated["grouped"]["higher"]) <= {"A", "2", "3", "4", "5", "6"}

    sheet = client.post("/api/cheat-sheet", json={"deck": ["AH", "5D", "AS"]}).json()
    assert sheet[0]["winner"] == "Andar"
    assert sheet[2]["winner"] is None
    assert len(client.post("/api/cheat-sheet", json={"seed": 1}).json()) == 52


def test_exact_probability():
    body = client.get("/api/probability/exact").json()
    assert body["bahar_fraction"] == "429/833"
    assert abs(body["bahar"] + body["andar"] - 1.0) < 1e-9


def test_estimate_job_lifecycle():
    job_id = client.post("/api/estimates", json={"marker": "7H", "trials": 600, "seed": 1}).json()["id"]
    deadline = time.time() + 10
    status = client.get(f"/api/estimates/{job_id}/status").json()
    while status["status"] not in ("done", "stopped", "failed") and time.time() < deadline:
        time.sleep(0.05)
        status = client.get(f"/api/estimates/{job_id}/status").json()
    assert status["status"] == "done"
    result = client.get(f"/api/estimates/{job_id}").json()
    assert result["trials"] == 600
    assert result["andar_wins"] + result["bahar_wins"] == 600


def test_estimate_unknown_job():
    assert client.get("/api/estimates/nope").status_code == 404
    assert client.get("/api/estimates/nope/status").status_code == 404
    assert client.post("/api/estimates/nope/stop").status_code == 404


def test_estimate_rejects_bad_trials():
    assert client.post("/api/estimates", json={"marker": "7H", "trials": 0}).status_code == 422


def test_negative_seed_is_a_validation_error():
    assert client.post("/api/rounds", json={"seed": -1}).status_code == 422
    assert client.post("/api/shuffle", json={"seed": -3}).status_code == 422
    assert client.post("/api/predictions/generate", json={"marker": "AH", "seed": -2}).status_code == 422
    assert client.post("/api/cheat-sheet", json={"seed": -4}).status_code == 422
    assert client.post("/api/estimates", json={"marker": "AH", "trials": 10, "seed": -5}).status_code == 422


def test_scheduler_tick_feeds_history():
    client.delete("/api/history")
    status = client.get("/api/scheduler").json()
    results = client.post("/api/scheduler/tick").json()
    assert len(results) == status["slot_count"]
    summary = client.get("/api/history/summary").json()
    assert summary["total_games"] == status["slot_count"]
    ranks = client.get("/api/history/ranks").json()
    assert sum(r["total"] for r in ranks) == status["slot_count"]
    cards = client.get("/api/history/cards", params={"sort": "total", "descending": True}).json()
    assert sum(c["total"] for c in cards) == status["slot_count"]
    cleared = client.delete("/api/history").json()
    assert cleared["total_games"] == 0


def test_history_rejects_unknown_sort():
    assert client.get("/api/history/cards", params={"sort": "colour"}).status_code == 400


def test_scheduler_slots_and_interval():
    before = client.get("/api/scheduler").json()["slot_count"]
    added = client.post("/api/scheduler/slots").json()
    assert client.get("/api/scheduler").json()["slot_count"] == before + 1
    removed = client.delete("/api/scheduler/slots").json()
    assert removed["id"] == added["id"]

    assert client.put("/api/scheduler/interval", json={"interval_ms": 10}).status_code == 400
    resp = client.put("/api/scheduler/interval", json={"interval_ms": 250})
    assert resp.status_code == 200
    assert resp.json()["interval_ms"] == 250


def test_scheduler_remove_at_minimum_conflicts():
    count = client.get("/api/scheduler").json()["slot_count"]
    for _ in range(count - 1):
        client.delete("/api/scheduler/slots")
    assert client.delete("/api/scheduler/slots").status_code == 409
    assert client.get("/api/scheduler").json()["can_remove"] is False
    for _ in range(count - 1):
        client.post("/api/scheduler/slots")


def test_pause_and_resume():
    assert client.post("/api/scheduler/resume").json()["running"] is True
    assert client.post("/api/scheduler/pause").json()["running"] is False


def test_scheduler_handlers_run_in_threadpool():
    # They take the scheduler lock, which can wait out a tick.
    for handler in (routes.get_scheduler, routes.add_slot, routes.remove_slot, routes.tick,
                    routes.pause, routes.resume, routes.set_interval):
        assert not inspect.iscoroutinefunction(handler)
