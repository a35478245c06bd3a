import hashlib
import hmac
import json
import sys
import time
import uuid
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rgs.config import Settings  # noqa: E402
from rgs.database import Database  # noqa: E402
from rgs.main import create_app  # noqa: E402

DEMO_SECRET = "test_secret"


class FixedResolver:
    """Outcome resolver that always pays the configured prize."""

    def __init__(self, prize_cents: int = 0):
        self.prize_cents = prize_cents
        self.calls = []

    def resolve(self, game_config, seed):
        self.calls.append((game_config, seed))
        return {
            "gameType": "scratch",
            "tierId": "tier_win" if self.prize_cents else "tier_lose",
            "isWin": self.prize_cents > 0,
            "finalPrizeCents": self.prize_cents,
            "revealMap": ["cherry", "bell", "cherry"],
        }


class PayloadResolver:
    """Returns the given resolver payload verbatim."""

    def __init__(self, payload):
        self.payload = payload

    def resolve(self, game_config, seed):
        return dict(self.payload)


class FailingResolver:
    def resolve(self, game_config, seed):
        raise RuntimeError("math service down")


def make_settings(db_path, **overrides) -> Settings:
    values = {
        "db_url": f"sqlite:///{db_path}",
        "auth_enabled": False,
        "demo_operator_secret": DEMO_SECRET,
        "bearer_token": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings(tmp_path_factory):
    """
    Settings pointing at a disposable SQLite DB, authentication off.
    """
    return make_settings(tmp_path_factory.mktemp("data") / "test.db")


@pytest.fixture
def database(settings):
    db = Database(settings)
    db.run_migrations()
    yield db
    db.dispose()


@pytest.fixture
def resolver():
    return FixedResolver()


@pytest.fixture
def app(settings, resolver):
    return create_app(settings, resolver=resolver)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def signed_headers(path, body, secret=DEMO_SECRET, operator_id="demo_operator", nonce=None, timestamp=None, method="POST"):
    """
    Return (raw_body, headers) for a request signed the way operators sign them.
    """
    raw = json.dumps(body).encode()
    timestamp = str(int(time.time())) if timestamp is None else str(timestamp)
    nonce = nonce or uuid.uuid4().hex
    message = f"{timestamp}.{nonce}.{method}.{path}.".encode() + raw
    signature = hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()
    headers = {
        "content-type": "application/json",
        "x-operator-id": operator_id,
        "x-timestamp": timestamp,
        "x-nonce": nonce,
        "x-signature": signature,
    }
    return raw, headers
