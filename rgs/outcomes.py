"""
Boundary with the external game-math collaborator.

Resolvers take a game configuration and the round seed and return a JSON
object. Only ``finalPrizeCents`` is interpreted here; the rest of the payload
belongs to the game and is stored and returned untouched.
"""
import random
from typing import Any, Literal, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rgs.config import MAX_CENTS
from rgs.database import Database
from rgs.exceptions import OutcomeError
from rgs.helpers import to_cents
from rgs.logging_config import get_logger
from rgs.models import GameConfig

logger = get_logger(__name__)


# Only the tag and the prize are typed; every other field belongs to the game.
class BaseOutcome(BaseModel):
    model_config = ConfigDict(extra="allow")

    gameType: Optional[str] = None
    finalPrizeCents: int = Field(ge=0, le=MAX_CENTS, strict=True)


class ScratchOutcome(BaseOutcome):
    gameType: Literal["scratch"]


class InstantOutcome(BaseOutcome):
    gameType: Literal["plinko", "mines", "coin_flip"]


class SlotOutcome(BaseOutcome):
    gameType: Literal["slot"]


Outcome = Union[ScratchOutcome, InstantOutcome, SlotOutcome, BaseOutcome]

OUTCOME_TYPES: dict[str, type[BaseOutcome]] = {
    "scratch": ScratchOutcome,
    "plinko": InstantOutcome,
    "mines": InstantOutcome,
    "coin_flip": InstantOutcome,
    "slot": SlotOutcome,
}


def parse_outcome(raw: Any) -> Outcome:
    """Validate a resolver result, dispatching on its ``gameType`` tag."""
    if not isinstance(raw, dict):
        raise OutcomeError(f"outcome must be an object, got {type(raw).__name__}")
    tag = raw.get("gameType")
    model = OUTCOME_TYPES.get(tag, BaseOutcome) if isinstance(tag, str) else BaseOutcome
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise OutcomeError(f"invalid outcome: {exc.errors()[0]['msg']}") from exc


class OutcomeResolver(Protocol):
    def resolve(self, game_config: dict[str, Any], seed: str) -> dict[str, Any]:
        ...


DEFAULT_PRIZE_TIERS = [
    {"id": "tier_win_big", "payout": 100, "weight": 10},
    {"id": "tier_win_small", "payout": 10, "weight": 30},
    {"id": "tier_lose", "payout": 0, "weight": 60},
]


class PrizeTableResolver:
    """
    In-process stand-in for the game-math service: picks a weighted prize
    tier from ``config["scratch"]["prizes"]`` with an RNG seeded by the round
    seed, so the same round always resolves the same way.
    """

    def resolve(self, game_config: dict[str, Any], seed: str) -> dict[str, Any]:
        prizes = (game_config.get("scratch") or {}).get("prizes") or DEFAULT_PRIZE_TIERS
        tiers = [p for p in prizes if p.get("weight", 0) > 0]
        if not tiers:
            raise OutcomeError(f"game {game_config.get('gameId')} has no weighted prize tiers")
        rng = random.Random(seed)
        selected = rng.choices(tiers, weights=[t["weight"] for t in tiers], k=1)[0]
        prize_cents = to_cents(selected.get("payout", 0))
        return {
            "gameType": "scratch",
            "gameId": game_config.get("gameId"),
            "tierId": selected.get("id"),
            "isWin": prize_cents > 0,
            "finalPrizeCents": prize_cents,
            "presentationSeed": rng.randrange(1_000_000),
        }


class GameCatalog:
    """Game configurations published by the builder, loaded by id."""

    def __init__(self, database: Database):
        self.session_factory = database.session_factory

    def load(self, game_id: str) -> dict[str, Any]:
        with self.session_factory.begin() as db:
            record = db.get(GameConfig, game_id)
            config = dict(record.config) if record is not None else None
        if config is None:
            logger.warning("Game config not found, using fallback for game=%s", game_id)
            return {"gameId": game_id, "scratch": {"prizes": []}}
        config.setdefault("gameId", game_id)
        return config

    def publish(self, game_id: str, config: dict[str, Any], display_name: Optional[str] = None) -> GameConfig:
        name = display_name or config.get("displayName") or "Untitled Game"
        with self.session_factory.begin() as db:
            record = db.get(GameConfig, game_id)
            if record is None:
                record = GameConfig(game_id=game_id, display_name=name, status="LIVE", config=config)
                db.add(record)
            else:
                record.display_name = name
                record.config = config
                record.status = "LIVE"
        logger.info("Published game config game=%s name=%s", game_id, name)
        return record
