import httpx
import pytest

from conftest import make_settings
from rgs.clients import outcome_client
from rgs.clients.outcome_client import HttpOutcomeResolver
from rgs.exceptions import OutcomeError
from rgs.outcomes import (
    BaseOutcome,
    GameCatalog,
    InstantOutcome,
    PrizeTableResolver,
    ScratchOutcome,
    parse_outcome,
)


def test_parse_outcome_dispatches_on_game_type():
    scratch = parse_outcome({"gameType": "scratch", "finalPrizeCents": 500, "tierId": "t1", "isWin": True})
    assert isinstance(scratch, ScratchOutcome)
    assert scratch.tierId == "t1"

    plinko = parse_outcome({"gameType": "plinko", "finalPrizeCents": 0, "path": [0, 1, 1]})
    assert isinstance(plinko, InstantOutcome)

    unknown = parse_outcome({"gameType": "wheel", "finalPrizeCents": 10})
    assert type(unknown) is BaseOutcome


def test_parse_outcome_keeps_game_specific_fields():
    outcome = parse_outcome({"gameType": "scratch", "finalPrizeCents": 0, "revealMap": ["a", "b"]})
    dumped = outcome.model_dump()
    assert dumped["revealMap"] == ["a", "b"]
    assert dumped["finalPrizeCents"] == 0


def test_parse_outcome_leaves_game_fields_untyped():
    scratch = parse_outcome({"gameType": "scratch", "tierId": 3, "isWin": "yes", "finalPrizeCents": 0})
    assert isinstance(scratch, ScratchOutcome)
    assert scratch.tierId == 3

    untagged = parse_outcome({"finalPrizeCents": 0, "symbols": ["a"]})
    assert type(untagged) is BaseOutcome
    assert untagged.gameType is None
    assert "gameType" not in untagged.model_dump(exclude_unset=True)


@pytest.mark.parametrize(
    "raw",
    [
        None,
        ["finalPrizeCents", 1],
        {"gameType": "scratch"},
        {"gameType": "scratch", "finalPrizeCents": -1},
        {"gameType": "scratch", "finalPrizeCents": 1.5},
        {"gameType": "scratch", "finalPrizeCents": "100"},
        {"finalPrizeCents": True},
        {"gameType": ["scratch"], "finalPrizeCents": 0},
        {"gameType": "slot", "finalPrizeCents": 2**63},
    ],
)
def test_parse_outcome_rejects_unusable_results(raw):
    with pytest.raises(OutcomeError):
        parse_outcome(raw)


def test_prize_table_is_deterministic_per_seed():
    resolver = PrizeTableResolver()
    config = {"gameId": "g1"}
    first = resolver.resolve(config, "seed-a")
    assert resolver.resolve(config, "seed-a") == first
    assert first["gameId"] == "g1"
    assert first["tierId"] in {"tier_win_big", "tier_win_small", "tier_lose"}


def test_prize_table_converts_payout_to_cents():
    config = {"gameId": "g1", "scratch": {"prizes": [
        {"id": "only", "payout": 2.5, "weight": 1},
        {"id": "never", "payout": 1000, "weight": 0},
    ]}}
    outcome = PrizeTableResolver().resolve(config, "any-seed")
    assert outcome["tierId"] == "only"
    assert outcome["finalPrizeCents"] == 250
    assert outcome["isWin"] is True
    assert isinstance(parse_outcome(outcome), ScratchOutcome)


def test_prize_table_without_weights_fails():
    config = {"gameId": "g1", "scratch": {"prizes": [{"id": "x", "payout": 1, "weight": 0}]}}
    with pytest.raises(OutcomeError):
        PrizeTableResolver().resolve(config, "seed")


def test_catalog_fallback_and_publish(database):
    catalog = GameCatalog(database)
    assert catalog.load("missing") == {"gameId": "missing", "scratch": {"prizes": []}}

    config = {"scratch": {"prizes": [{"id": "t", "payout": 1, "weight": 1}]}}
    record = catalog.publish("g1", config, "Lucky Dip")
    assert record.display_name == "Lucky Dip"
    assert catalog.load("g1") == {**config, "gameId": "g1"}

    catalog.publish("g1", {"displayName": "Renamed", "scratch": {"prizes": []}})
    loaded = catalog.load("g1")
    assert loaded["displayName"] == "Renamed"
    assert loaded["scratch"] == {"prizes": []}


# HTTP resolver
@pytest.fixture
def http_settings(tmp_path):
    return make_settings(
        tmp_path / "unused.db",
        outcome_resolver_url="http://math.local/resolve",
        resolver_max_retries=2,
        resolver_backoff_seconds=0.1,
    )


@pytest.fixture
def sleeps(monkeypatch):
    calls = []
    monkeypatch.setattr(outcome_client.time, "sleep", calls.append)
    return calls


def _resolver(settings, handler):
    return HttpOutcomeResolver(settings, client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_http_resolver_posts_config_and_seed(http_settings):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"gameType": "slot", "finalPrizeCents": 40})

    result = _resolver(http_settings, handler).resolve({"gameId": "g1"}, "seed-1")
    assert result == {"gameType": "slot", "finalPrizeCents": 40}
    assert str(seen[0].url) == "http://math.local/resolve"
    assert b'"seed":"seed-1"' in seen[0].content.replace(b" ", b"")


def test_http_resolver_retries_server_errors(http_settings, sleeps):
    statuses = iter([503, 502, 200])

    def handler(request):
        status = next(statuses)
        if status == 200:
            return httpx.Response(200, json={"gameType": "scratch", "finalPrizeCents": 0})
        return httpx.Response(status)

    result = _resolver(http_settings, handler).resolve({}, "seed")
    assert result["finalPrizeCents"] == 0
    assert sleeps == [0.1, 0.2]


def test_http_resolver_gives_up_after_max_retries(http_settings, sleeps):
    resolver = _resolver(http_settings, lambda request: httpx.Response(500))
    with pytest.raises(OutcomeError, match="500"):
        resolver.resolve({}, "seed")
    assert len(sleeps) == 2


def test_http_resolver_does_not_retry_client_errors(http_settings, sleeps):
    resolver = _resolver(http_settings, lambda request: httpx.Response(400))
    with pytest.raises(OutcomeError, match="400"):
        resolver.resolve({}, "seed")
    assert sleeps == []


def test_http_resolver_wraps_transport_errors(http_settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(OutcomeError, match="request error"):
        _resolver(http_settings, handler).resolve({}, "seed")


def test_http_resolver_rejects_invalid_json(http_settings):
    resolver = _resolver(http_settings, lambda request: httpx.Response(200, content=b"not json"))
    with pytest.raises(OutcomeError, match="invalid JSON"):
        resolver.resolve({}, "seed")
