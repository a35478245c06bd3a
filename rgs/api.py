from contextlib import contextmanager
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import OperationalError

from rgs.config import Settings
from rgs.exceptions import MissingFields, RGSError, ServiceFailure
from rgs.helpers import from_cents, to_cents, validate_currency
from rgs.logging_config import get_logger
from rgs.play import PlayService
from rgs.schemas import (
    CompleteRequest,
    CompleteResponse,
    PlayRequest,
    PlayResponse,
    RollbackRequest,
    RollbackResponse,
    SessionRequest,
    SessionResponse,
)
from rgs.security import require_signature

router = APIRouter(tags=["wallet"])
logger = get_logger(__name__)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_play_service(request: Request) -> PlayService:
    return request.app.state.play_service


@contextmanager
def failure_code(code: str):
    """
    Client errors pass through with their own code; everything else becomes
    a 500 carrying the endpoint's failure code.
    """
    try:
        yield
    except RGSError as exc:
        if exc.status_code < 500:
            raise
        logger.error("%s: %s %s", code, exc.code, exc.detail)
        raise ServiceFailure(code, f"{exc.code}: {exc.detail}") from exc
    except OperationalError as exc:
        logger.warning("%s: persistence unavailable: %s", code, exc)
        raise ServiceFailure(code, "storage busy, retry with the same clientTxnId", retryable=True) from exc
    except Exception as exc:
        logger.exception("%s: unexpected error", code)
        raise ServiceFailure(code, str(exc)) from exc


def _require(**fields):
    missing = [name for name, value in fields.items() if value is None or value == ""]
    if missing:
        raise MissingFields(missing)


def _operator(authenticated: Optional[str], body_operator: Optional[str], settings: Settings) -> str:
    return authenticated or body_operator or settings.default_operator_id


@router.post("/session", response_model=SessionResponse)
def create_session(
    body: SessionRequest,
    authenticated: Optional[str] = Depends(require_signature),
    settings: Settings = Depends(get_settings),
    service: PlayService = Depends(get_play_service),
):
    _require(playerId=body.playerId)
    operator_id = _operator(authenticated, body.operatorId, settings)
    currency = body.currency or settings.default_currency
    validate_currency(settings, currency)
    with failure_code("SESSION_FAILED"):
        balance = service.open_session(operator_id, body.playerId, currency)
    return SessionResponse(
        operatorId=operator_id,
        playerId=body.playerId,
        currency=currency,
        balance=from_cents(balance),
    )


@router.post("/play", response_model=PlayResponse)
def play(
    body: PlayRequest,
    authenticated: Optional[str] = Depends(require_signature),
    settings: Settings = Depends(get_settings),
    service: PlayService = Depends(get_play_service),
):
    _require(gameId=body.gameId, playerId=body.playerId, wager=body.wager, clientTxnId=body.clientTxnId)
    operator_id = _operator(authenticated, body.operatorId, settings)
    currency = body.currency or settings.default_currency
    validate_currency(settings, currency)
    wager_cents = to_cents(body.wager)
    with failure_code("PLAY_FAILED"):
        result = service.play(operator_id, body.playerId, body.gameId, currency, wager_cents, body.clientTxnId)
    return PlayResponse(
        roundId=result.round_id,
        outcome=result.outcome,
        balance=from_cents(result.balance_cents),
    )


@router.post("/complete", response_model=CompleteResponse)
def complete(
    body: CompleteRequest,
    authenticated: Optional[str] = Depends(require_signature),
    settings: Settings = Depends(get_settings),
    service: PlayService = Depends(get_play_service),
):
    _require(roundId=body.roundId)
    operator_id = _operator(authenticated, body.operatorId, settings)
    with failure_code("COMPLETE_FAILED"):
        round_obj = service.complete(operator_id, body.roundId, body.durationMs, body.playerId, body.gameId)
    return CompleteResponse(roundId=round_obj.round_id, status=round_obj.status)


@router.post("/rollback", response_model=RollbackResponse)
def rollback(
    body: RollbackRequest,
    authenticated: Optional[str] = Depends(require_signature),
    settings: Settings = Depends(get_settings),
    service: PlayService = Depends(get_play_service),
):
    _require(roundId=body.roundId, playerId=body.playerId, clientTxnId=body.clientTxnId)
    operator_id = _operator(authenticated, body.operatorId, settings)
    with failure_code("ROLLBACK_FAILED"):
        result = service.rollback(operator_id, body.roundId, body.playerId, body.clientTxnId, body.gameId)
    return RollbackResponse(
        roundId=result.round_id,
        status=result.status,
        balance=from_cents(result.balance_cents),
    )
