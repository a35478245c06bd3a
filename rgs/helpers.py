from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from rgs.config import MAX_CENTS, Settings
from rgs.exceptions import InvalidRequest, UnsupportedCurrency
from rgs.models import LedgerTransaction, Round, RoundEvent


def to_cents(amount: Union[Decimal, float, int, str]) -> int:
    """Convert a decimal currency amount from the wire to integer minor units."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise InvalidRequest(f"invalid amount: {amount!r}") from exc
    if not value.is_finite():
        raise InvalidRequest(f"invalid amount: {amount!r}")
    if abs(value) * 100 > MAX_CENTS:
        raise InvalidRequest(f"amount out of range: {amount!r}")
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: Optional[int]) -> Optional[float]:
    if cents is None:
        return None
    return cents / 100  # convert to higher unit


def validate_currency(settings: Settings, currency: str):
    if currency not in settings.supported_currencies:
        raise UnsupportedCurrency("unsupported currency")


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_transaction(txn: LedgerTransaction) -> dict:
    return {
        "txId": txn.tx_id,
        "operatorId": txn.operator_id,
        "playerId": txn.player_id,
        "currency": txn.currency,
        "type": txn.type,
        "amountCents": txn.amount_cents,
        "clientTxnId": txn.client_txn_id,
        "roundId": txn.round_id,
        "createdAt": _iso(txn.created_at),
    }


def serialize_round(round_obj: Round) -> dict:
    return {
        "roundId": round_obj.round_id,
        "operatorId": round_obj.operator_id,
        "playerId": round_obj.player_id,
        "gameId": round_obj.game_id,
        "currency": round_obj.currency,
        "wager": from_cents(round_obj.wager_cents),
        "wagerCents": round_obj.wager_cents,
        "seed": round_obj.seed,
        "status": round_obj.status,
        "outcome": round_obj.outcome,
        "betTxId": round_obj.bet_tx_id,
        "winTxId": round_obj.win_tx_id,
        "createdAt": _iso(round_obj.created_at),
        "committedAt": _iso(round_obj.committed_at),
        "rolledBackAt": _iso(round_obj.rolled_back_at),
        "completedAt": _iso(round_obj.completed_at),
        "durationMs": round_obj.duration_ms,
    }


def serialize_event(record: RoundEvent) -> dict:
    return {
        "id": record.id,
        "operatorId": record.operator_id,
        "playerId": record.player_id,
        "roundId": record.round_id,
        "gameId": record.game_id,
        "eventType": record.event_type,
        "payload": record.payload,
        "createdAt": _iso(record.created_at),
    }
