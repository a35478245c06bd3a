from enum import Enum
from typing import Optional

from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Process configuration. Built once at startup and passed to create_app;
    frozen so nothing can mutate it while requests are being served.
    """

    model_config = SettingsConfigDict(env_file=".env", frozen=True)

    db_url: str = "sqlite:///./rgs.db"
    busy_timeout_ms: int = 5000
    log_level: str = "INFO"

    auth_enabled: bool = True
    timestamp_window_seconds: int = 300
    bearer_token: Optional[str] = None

    default_operator_id: str = "demo_operator"
    demo_operator_secret: str = "dev_secret"
    initial_balance_cents: int = 100000
    default_currency: str = "USD"
    supported_currencies: list[str] = ["USD", "EUR"]

    outcome_resolver_url: Optional[AnyHttpUrl] = None
    resolver_timeout_seconds: float = 5.0
    resolver_max_retries: int = 2
    resolver_backoff_seconds: float = 0.5


# Amounts are stored as signed 64-bit integers.
MAX_CENTS = 2**63 - 1


class TransactionType(str, Enum):
    BET = "BET"
    WIN = "WIN"
    ROLLBACK_BET = "ROLLBACK_BET"
    ROLLBACK_WIN = "ROLLBACK_WIN"


# BET and ROLLBACK_WIN take money out of the account, the others put it back.
DEBIT_TYPES = {TransactionType.BET, TransactionType.ROLLBACK_WIN}
CREDIT_TYPES = {TransactionType.WIN, TransactionType.ROLLBACK_BET}


class RoundStatus(str, Enum):
    INITIATED = "INITIATED"
    COMMITTED = "COMMITTED"
    ROLLED_BACK = "ROLLED_BACK"
    COMPLETED = "COMPLETED"


ROUND_TRANSITIONS = {
    RoundStatus.INITIATED: {RoundStatus.COMMITTED, RoundStatus.ROLLED_BACK},
    RoundStatus.COMMITTED: {RoundStatus.COMPLETED},
    RoundStatus.ROLLED_BACK: set(),
    RoundStatus.COMPLETED: set(),
}


class EventType(str, Enum):
    SESSION_CREATED = "SESSION_CREATED"
    ROUND_INITIATED = "ROUND_INITIATED"
    BET_AUTHORIZED = "BET_AUTHORIZED"
    BET_DECLINED = "BET_DECLINED"
    WIN_APPLIED = "WIN_APPLIED"
    ROUND_COMMITTED = "ROUND_COMMITTED"
    ROUND_ABANDONED = "ROUND_ABANDONED"
    ROUND_COMPLETED = "ROUND_COMPLETED"
    ROLLBACK_REQUESTED = "ROLLBACK_REQUESTED"
    ROUND_ROLLED_BACK = "ROUND_ROLLED_BACK"
