import pytest
from fastapi.testclient import TestClient

from arena import main
from arena.config import GameSettings
from arena.main import create_app


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client


def register(client, telegram_id, deposit="100.00"):
    user = client.post("/api/v1/users", json={"telegram_id": telegram_id}).json()
    if deposit:
        response = client.post(f"/api/v1/users/{user['id']}/deposit", json={"amount": deposit})
        assert response.status_code == 200
    return user["id"]


def as_user(user_id):
    return {"X-User-Id": str(user_id)}


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_games_catalogue(client):
    games = client.get("/api/v1/games").json()["games"]
    assert {g["game_type"] for g in games} == {"coin_flip", "domino"}


def test_register_deposit_and_history(client):
    user_id = register(client, 501, deposit="40.00")

    user = client.get(f"/api/v1/users/{user_id}").json()
    assert user["balance"] == "40.00"

    history = client.get(f"/api/v1/users/{user_id}/transactions").json()["transactions"]
    assert len(history) == 1
    assert history[0]["type"] == "deposit"
    assert history[0]["balance_after"] == "40.00"


def test_coin_flip_match_over_http(client):
    creator = register(client, 601)
    opponent = register(client, 602)

    created = client.post(
        "/api/v1/matches",
        json={"game_type": "coin_flip", "bet_amount": "10.00"},
        headers=as_user(creator),
    )
    assert created.status_code == 200
    match = created.json()
    assert match["status"] == "waiting"
    assert match["bet_amount"] == "10.00"

    available = client.get("/api/v1/matches/available").json()["matches"]
    assert [m["id"] for m in available] == [match["id"]]

    joined = client.post(f"/api/v1/matches/{match['id']}/join", headers=as_user(opponent)).json()
    assert joined["status"] == "active"

    waiting = client.post(
        f"/api/v1/matches/{match['id']}/coin-flip", json={"choice": "heads"}, headers=as_user(creator)
    ).json()
    assert waiting["waiting"] is True

    done = client.post(
        f"/api/v1/matches/{match['id']}/coin-flip", json={"choice": "heads"}, headers=as_user(opponent)
    ).json()
    assert done["waiting"] is False
    assert done["settlement"]["winner_id"] == creator
    assert done["settlement"]["prize"] == "19.00"

    final = client.get(f"/api/v1/matches/{match['id']}").json()
    assert final["status"] == "completed"
    assert final["rake_amount"] == "1.00"
    assert client.get(f"/api/v1/users/{creator}").json()["balance"] == "109.00"


def test_domino_state_over_http(client):
    creator = register(client, 701)
    opponent = register(client, 702)
    match = client.post(
        "/api/v1/matches",
        json={"game_type": "domino", "bet_amount": "10.00"},
        headers=as_user(creator),
    ).json()
    client.post(f"/api/v1/matches/{match['id']}/join", headers=as_user(opponent))

    state = client.get(f"/api/v1/matches/{match['id']}/domino", headers=as_user(creator)).json()
    assert len(state["state"]["hand"]) == 7
    piece_id = state["available_moves"][0]["piece"]["id"]

    move = client.post(
        f"/api/v1/matches/{match['id']}/domino",
        json={"piece_id": piece_id, "side": "left"},
        headers=as_user(creator),
    ).json()
    assert move["waiting"] is True
    assert move["next_player"] == opponent

    wrong_turn = client.post(
        f"/api/v1/matches/{match['id']}/domino/pass", headers=as_user(creator)
    )
    assert wrong_turn.status_code == 409
    assert wrong_turn.json()["error"] == "INVALID_STATE"


def test_domain_errors_map_to_http(client):
    creator = register(client, 801, deposit="5.00")

    missing = client.post("/api/v1/matches/999/join", headers=as_user(creator))
    assert missing.status_code == 404
    assert missing.json() == {"error": "NOT_FOUND", "message": "Partida no encontrada"}

    first = client.post(
        "/api/v1/matches",
        json={"game_type": "coin_flip", "bet_amount": "5.00"},
        headers=as_user(creator),
    )
    assert first.status_code == 200

    broke = client.post(
        "/api/v1/matches",
        json={"game_type": "coin_flip", "bet_amount": "5.00"},
        headers=as_user(creator),
    )
    assert broke.status_code == 402
    assert broke.json()["error"] == "INSUFFICIENT_FUNDS"

    bad_game = client.post(
        "/api/v1/matches",
        json={"game_type": "ludo", "bet_amount": "5.00"},
        headers=as_user(creator),
    )
    assert bad_game.status_code == 400

    house = client.post(
        "/api/v1/games/coin-flip/house",
        json={"bet_amount": "5.00", "choice": "heads"},
        headers=as_user(creator),
    )
    assert house.status_code == 409


def test_acting_user_header_required(client):
    response = client.post("/api/v1/matches", json={"game_type": "coin_flip", "bet_amount": "10.00"})
    assert response.status_code == 422


def test_run_serves_app_with_configured_address(monkeypatch):
    calls = []
    monkeypatch.setattr(main, "get_settings", lambda: GameSettings(host="0.0.0.0", port=9001, log_level="WARNING"))
    monkeypatch.setattr(main.uvicorn, "run", lambda target, **kwargs: calls.append((target, kwargs)))

    main.run()

    assert calls == [("arena.main:app", {"host": "0.0.0.0", "port": 9001, "log_level": "warning"})]
