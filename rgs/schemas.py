from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel


# Request fields are optional at the schema level so that a missing field is
# reported as MISSING_FIELDS (400) by the handlers instead of a 422.

class SessionRequest(BaseModel):
    playerId: Optional[str] = None
    currency: Optional[str] = None
    operatorId: Optional[str] = None


class PlayRequest(BaseModel):
    gameId: Optional[str] = None
    wager: Optional[Decimal] = None
    currency: Optional[str] = None
    playerId: Optional[str] = None
    clientTxnId: Optional[str] = None
    operatorId: Optional[str] = None


class CompleteRequest(BaseModel):
    roundId: Optional[str] = None
    durationMs: Optional[int] = None
    playerId: Optional[str] = None
    gameId: Optional[str] = None
    operatorId: Optional[str] = None


class RollbackRequest(BaseModel):
    roundId: Optional[str] = None
    playerId: Optional[str] = None
    currency: Optional[str] = None
    clientTxnId: Optional[str] = None
    gameId: Optional[str] = None
    operatorId: Optional[str] = None


class SessionResponse(BaseModel):
    success: bool = True
    operatorId: str
    playerId: str
    currency: str
    balance: float


class PlayResponse(BaseModel):
    success: bool = True
    roundId: str
    outcome: Optional[dict[str, Any]] = None
    balance: float


class CompleteResponse(BaseModel):
    success: bool = True
    roundId: str
    status: str


class RollbackResponse(BaseModel):
    success: bool = True
    roundId: str
    status: str
    balance: Optional[float] = None


class GameConfigRequest(BaseModel):
    displayName: Optional[str] = None
    config: dict[str, Any]


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    detail: Optional[str] = None
    retryable: bool = False
