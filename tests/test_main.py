from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi.testclient import TestClient

from conftest import FailingResolver, FixedResolver, PayloadResolver, make_settings
from rgs.commands.reconcile import reconcile
from rgs.config import RoundStatus, TransactionType
from rgs.exceptions import RoundInProgress
from rgs.main import create_app
from rgs.models import LedgerTransaction, Round, WalletAccount


def _session(client, player="player-1", currency="USD"):
    return client.post("/session", json={"playerId": player, "currency": currency})


def _play(client, txn="txn-1", wager=5.00, player="player-1", **extra):
    body = {"gameId": "game-1", "wager": wager, "currency": "USD", "playerId": player, "clientTxnId": txn}
    body.update(extra)
    return client.post("/play", json=body)


def _rollback(client, round_id, player="player-1", txn="rb-1"):
    return client.post(
        "/rollback",
        json={"roundId": round_id, "playerId": player, "currency": "USD", "clientTxnId": txn},
    )


def _transactions(app, **filters):
    with app.state.database.session_factory() as db:
        return db.query(LedgerTransaction).filter_by(**filters).order_by(LedgerTransaction.created_at).all()


def _round_status(app, round_id):
    with app.state.database.session_factory() as db:
        return db.get(Round, round_id).status


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_session_creates_account_once(client):
    first = _session(client)
    assert first.status_code == 200
    assert first.json() == {
        "success": True,
        "operatorId": "demo_operator",
        "playerId": "player-1",
        "currency": "USD",
        "balance": 1000.0,
    }
    _play(client)
    assert _session(client).json()["balance"] == 995.0


def test_session_defaults_currency(client):
    resp = client.post("/session", json={"playerId": "player-1"})
    assert resp.json()["currency"] == "USD"


def test_losing_play_debits_wager_and_replays(client, app, resolver):
    _session(client)
    first = _play(client, txn="abc")
    assert first.status_code == 200
    body = first.json()
    assert body["success"] is True
    assert body["balance"] == 995.0
    assert body["outcome"]["finalPrizeCents"] == 0
    assert body["outcome"]["finalPrize"] == 0.0
    assert body["outcome"]["revealMap"] == ["cherry", "bell", "cherry"]
    assert _round_status(app, body["roundId"]) == RoundStatus.COMMITTED.value

    again = _play(client, txn="abc")
    assert again.status_code == 200
    assert again.json() == body
    assert len(resolver.calls) == 1
    assert len(_transactions(app, type=TransactionType.BET.value)) == 1


def test_winning_play_credits_prize(tmp_path):
    settings = make_settings(tmp_path / "win.db")
    app = create_app(settings, resolver=FixedResolver(prize_cents=1200))
    with TestClient(app) as client:
        resp = _play(client, txn="lucky")
        assert resp.status_code == 200
        assert resp.json()["balance"] == 1007.0
        assert resp.json()["outcome"]["finalPrize"] == 12.0

        wins = _transactions(app, type=TransactionType.WIN.value)
        assert [(w.amount_cents, w.client_txn_id) for w in wins] == [(1200, "lucky:WIN")]
        with app.state.database.session_factory() as db:
            round_obj = db.get(Round, resp.json()["roundId"])
            assert round_obj.win_tx_id == wins[0].tx_id


def test_missing_fields(client):
    resp = client.post("/play", json={"gameId": "game-1", "playerId": "player-1"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "MISSING_FIELDS"
    assert "wager" in body["detail"] and "clientTxnId" in body["detail"]

    assert client.post("/session", json={}).json()["error"] == "MISSING_FIELDS"


@pytest.mark.parametrize("wager", ["lots", 0, -5, "1e20", 1e20, "NaN"])
def test_invalid_wager(client, wager):
    resp = _play(client, wager=wager)
    assert resp.status_code == 400
    assert resp.json()["error"] == "INVALID_REQUEST"


def test_unsupported_currency(client):
    resp = client.post("/session", json={"playerId": "player-1", "currency": "XYZ"})
    assert resp.status_code == 422
    assert resp.json()["error"] == "UNSUPPORTED_CURRENCY"


def test_insufficient_funds_leaves_round_initiated(client, app):
    resp = _play(client, wager=1000.01)
    assert resp.status_code == 402
    assert resp.json()["error"] == "INSUFFICIENT_FUNDS"
    assert _session(client).json()["balance"] == 1000.0
    assert _transactions(app) == []
    with app.state.database.session_factory() as db:
        statuses = [r.status for r in db.query(Round).all()]
    assert statuses == [RoundStatus.INITIATED.value]


def test_reused_client_txn_id_with_different_wager_conflicts(client):
    _play(client, txn="dup", wager=5)
    resp = _play(client, txn="dup", wager=6)
    assert resp.status_code == 409
    assert resp.json()["error"] == "IDEMPOTENCY_CONFLICT"
    assert _session(client).json()["balance"] == 995.0


def test_rollback_reverses_bet_and_win(client, app):
    _session(client)
    service = app.state.play_service
    round_obj = service.rounds.init_round("demo_operator", "player-1", "game-1", "USD", 500)
    ledger = app.state.ledger
    ledger.apply_transaction(
        "demo_operator", "player-1", "USD", TransactionType.BET, -500, "t-bet", round_obj.round_id
    )
    ledger.apply_transaction(
        "demo_operator", "player-1", "USD", TransactionType.WIN, 1200, "t-bet:WIN", round_obj.round_id
    )
    assert ledger.get_balance("demo_operator", "player-1", "USD") == 100700

    resp = _rollback(client, round_obj.round_id)
    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "roundId": round_obj.round_id,
        "status": RoundStatus.ROLLED_BACK.value,
        "balance": 1000.0,
    }
    compensations = {
        t.type: t.amount_cents for t in _transactions(app, round_id=round_obj.round_id)
        if t.type.startswith("ROLLBACK")
    }
    assert compensations == {"ROLLBACK_BET": 500, "ROLLBACK_WIN": -1200}

    # Repeating the rollback, even under a new clientTxnId, moves nothing.
    again = _rollback(client, round_obj.round_id, txn="rb-2")
    assert again.status_code == 200
    assert again.json()["balance"] == 1000.0
    assert len(_transactions(app, round_id=round_obj.round_id)) == 4


def test_failed_resolution_can_be_rolled_back(tmp_path):
    settings = make_settings(tmp_path / "fail.db")
    app = create_app(settings, resolver=FailingResolver())
    with TestClient(app) as client:
        resp = _play(client, txn="doomed")
        assert resp.status_code == 500
        assert resp.json()["error"] == "PLAY_FAILED"
        assert _session(client).json()["balance"] == 995.0

        with app.state.database.session_factory() as db:
            round_obj = db.query(Round).one()
        assert round_obj.status == RoundStatus.INITIATED.value

        resp = _rollback(client, round_obj.round_id)
        assert resp.status_code == 200
        assert resp.json()["balance"] == 1000.0
        types = [t.type for t in _transactions(app, round_id=round_obj.round_id)]
        assert sorted(types) == ["BET", "ROLLBACK_BET"]


def test_rollback_of_committed_round_rejected(client):
    round_id = _play(client).json()["roundId"]
    resp = _rollback(client, round_id)
    assert resp.status_code == 409
    assert resp.json()["error"] == "INVALID_ROUND_STATE"
    assert _session(client).json()["balance"] == 995.0


def test_rollback_unknown_or_foreign_round(client):
    assert _rollback(client, "rnd_nope").status_code == 404
    round_id = _play(client).json()["roundId"]
    resp = _rollback(client, round_id, player="someone-else")
    assert resp.status_code == 404
    assert resp.json()["error"] == "ROUND_NOT_FOUND"


def test_rollback_missing_fields(client):
    resp = client.post("/rollback", json={"roundId": "rnd_x"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "MISSING_FIELDS"


def test_complete_round(client, app):
    round_id = _play(client).json()["roundId"]
    resp = client.post("/complete", json={"roundId": round_id, "durationMs": 1534, "playerId": "player-1"})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "roundId": round_id, "status": RoundStatus.COMPLETED.value}
    with app.state.database.session_factory() as db:
        assert db.get(Round, round_id).duration_ms == 1534

    # Completing again is harmless.
    assert client.post("/complete", json={"roundId": round_id}).status_code == 200


def test_complete_errors(client):
    assert client.post("/complete", json={}).json()["error"] == "MISSING_FIELDS"
    assert client.post("/complete", json={"roundId": "rnd_nope"}).status_code == 404

    round_id = _play(client).json()["roundId"]
    resp = client.post("/complete", json={"roundId": round_id, "durationMs": -1})
    assert resp.status_code == 400


def test_complete_uncommitted_round_rejected(client, app):
    round_obj = app.state.play_service.rounds.init_round("demo_operator", "player-1", "game-1", "USD", 100)
    resp = client.post("/complete", json={"roundId": round_obj.round_id})
    assert resp.status_code == 409


def test_concurrent_duplicate_plays_debit_once(client, app):
    _session(client)
    service = app.state.play_service

    def play(_):
        try:
            return service.play("demo_operator", "player-1", "game-1", "USD", 500, "same-txn").round_id
        except RoundInProgress as exc:
            # A copy that arrives while the first one is still settling.
            return exc.round_id

    with ThreadPoolExecutor(max_workers=6) as pool:
        round_ids = set(pool.map(play, range(12)))

    assert len(round_ids) == 1
    assert len(_transactions(app, type=TransactionType.BET.value)) == 1
    assert app.state.ledger.get_balance("demo_operator", "player-1", "USD") == 99500
    (winner,) = round_ids
    assert _round_status(app, winner) == RoundStatus.COMMITTED.value
    with app.state.database.session_factory() as db:
        others = db.query(Round).filter(Round.round_id != winner).all()
    assert all(r.status == RoundStatus.ROLLED_BACK.value for r in others)


def test_events_and_round_inspection(client):
    round_id = _play(client).json()["roundId"]

    events = client.get("/events", params={"roundId": round_id}).json()
    assert [e["eventType"] for e in events] == [
        "ROUND_INITIATED",
        "BET_AUTHORIZED",
        "ROUND_COMMITTED",
    ]

    detail = client.get(f"/rounds/{round_id}").json()
    assert detail["status"] == RoundStatus.COMMITTED.value
    assert detail["wagerCents"] == 500
    assert [t["type"] for t in detail["transactions"]] == ["BET"]
    assert client.get("/rounds/rnd_nope").status_code == 404


def test_publish_game_feeds_resolver(client, resolver):
    config = {"scratch": {"prizes": [{"id": "t", "payout": 1, "weight": 1}]}}
    resp = client.put("/games/game-1", json={"displayName": "Lucky", "config": config})
    assert resp.json() == {"success": True, "gameId": "game-1", "displayName": "Lucky"}
    _play(client)
    game_config, seed = resolver.calls[0]
    assert game_config == {**config, "gameId": "game-1"}
    assert seed


def test_operational_routes_require_bearer_token(tmp_path):
    settings = make_settings(tmp_path / "ops.db", bearer_token="ops-token")
    with TestClient(create_app(settings, resolver=FixedResolver())) as client:
        assert client.get("/events").status_code == 401
        assert client.get("/reconciliation_data").status_code == 401
        wrong = client.get("/events", headers={"Authorization": "Bearer nope"})
        assert wrong.status_code == 401
        ok = client.get("/events", headers={"Authorization": "Bearer ops-token"})
        assert ok.status_code == 200
        # Wallet endpoints are not affected by the operational token.
        assert _session(client).status_code == 200


def test_reconciliation_detects_tampered_balance(client, app, settings, tmp_path):
    _play(client, txn="one")
    _play(client, txn="two")
    resp = client.get("/reconciliation_data")
    assert resp.status_code == 200
    assert resp.headers["X-Mismatch-Count"] == "0"
    assert resp.text.splitlines() == ["kind,operatorId,playerId,currency,reference,expected,actual"]

    with app.state.database.session_factory.begin() as db:
        account = db.query(WalletAccount).one()
        account.balance_cents += 1

    resp = client.get("/reconciliation_data")
    assert resp.headers["X-Mismatch-Count"] == "1"
    assert resp.text.splitlines()[1] == "BALANCE,demo_operator,player-1,USD,,99000,99001"

    output = tmp_path / "report.csv"
    assert reconcile(settings, str(output)) == 1
    assert "BALANCE" in output.read_text()


def test_outcome_is_stored_as_resolved(tmp_path):
    payload = {"tierId": 3, "isWin": "no", "finalPrizeCents": 0, "symbols": ["a"]}
    settings = make_settings(tmp_path / "payload.db")
    app = create_app(settings, resolver=PayloadResolver(payload))
    with TestClient(app) as client:
        resp = _play(client, txn="raw")
        assert resp.status_code == 200
        expected = {**payload, "finalPrize": 0.0}
        assert resp.json()["outcome"] == expected
        with app.state.database.session_factory() as db:
            assert db.get(Round, resp.json()["roundId"]).outcome == expected


def test_tagged_outcome_with_non_string_tier(tmp_path):
    payload = {"gameType": "scratch", "tierId": 3, "finalPrizeCents": 250}
    settings = make_settings(tmp_path / "tagged.db")
    with TestClient(create_app(settings, resolver=PayloadResolver(payload))) as client:
        resp = _play(client, txn="tier")
        assert resp.status_code == 200
        assert resp.json()["outcome"] == {**payload, "finalPrize": 2.5}
        assert resp.json()["balance"] == 997.5


def test_oversized_initial_balance_rejected(tmp_path):
    settings = make_settings(tmp_path / "huge.db", initial_balance_cents=2**63)
    with TestClient(create_app(settings, resolver=FixedResolver())) as client:
        resp = _session(client)
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_REQUEST"


def test_replay_of_unsettled_round_is_retryable_conflict(client, app):
    _session(client)
    round_obj = app.state.play_service.rounds.init_round("demo_operator", "player-1", "game-1", "USD", 500)
    app.state.ledger.apply_transaction(
        "demo_operator", "player-1", "USD", TransactionType.BET, -500, "pending", round_obj.round_id
    )

    resp = _play(client, txn="pending")
    assert resp.status_code == 409
    assert resp.json()["error"] == "ROUND_IN_PROGRESS"
    assert resp.json()["retryable"] is True
    assert _round_status(app, round_obj.round_id) == RoundStatus.INITIATED.value

    # Once the round is rolled back the replay answers from storage again.
    _rollback(client, round_obj.round_id)
    replay = _play(client, txn="pending")
    assert replay.status_code == 200
    assert replay.json()["roundId"] == round_obj.round_id
    assert replay.json()["outcome"] is None
