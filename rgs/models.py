from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from rgs.database import Base


class Operator(Base):
    __tablename__ = "operators"
    operator_id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    hmac_secret = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RequestNonce(Base):
    __tablename__ = "request_nonces"
    id = Column(Integer, primary_key=True)
    operator_id = Column(String, nullable=False)
    nonce = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    __table_args__ = (UniqueConstraint("operator_id", "nonce", name="uq_operator_nonce"),)


class WalletAccount(Base):
    __tablename__ = "wallet_accounts"
    id = Column(Integer, primary_key=True)
    operator_id = Column(String, nullable=False)
    player_id = Column(String, nullable=False)
    currency = Column(String, nullable=False)
    balance_cents = Column(BigInteger, nullable=False)
    initial_balance_cents = Column(BigInteger, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    __table_args__ = (
        UniqueConstraint("operator_id", "player_id", "currency", name="uq_account_identity"),
        CheckConstraint("balance_cents >= 0", name="ck_balance_non_negative"),
    )


class LedgerTransaction(Base):
    __tablename__ = "wallet_transactions"
    tx_id = Column(String, primary_key=True)
    operator_id = Column(String, nullable=False)
    player_id = Column(String, nullable=False)
    currency = Column(String, nullable=False)
    type = Column(String, nullable=False)  # BET|WIN|ROLLBACK_BET|ROLLBACK_WIN
    amount_cents = Column(BigInteger, nullable=False)
    client_txn_id = Column(String, nullable=False)
    round_id = Column(String, index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    __table_args__ = (
        UniqueConstraint(
            "operator_id", "player_id", "currency", "type", "client_txn_id",
            name="uq_wallet_tx_idempotency",
        ),
    )


class Round(Base):
    __tablename__ = "rounds"
    round_id = Column(String, primary_key=True)
    operator_id = Column(String, nullable=False)
    player_id = Column(String, index=True, nullable=False)
    game_id = Column(String, nullable=False)
    currency = Column(String, nullable=False)
    wager_cents = Column(BigInteger, nullable=False)
    seed = Column(String, nullable=False)
    outcome = Column(JSON, nullable=True)
    status = Column(String, nullable=False)
    bet_tx_id = Column(String, nullable=True)
    win_tx_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    committed_at = Column(DateTime(timezone=True), nullable=True)
    rolled_back_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)


class RoundEvent(Base):
    __tablename__ = "round_events"
    id = Column(Integer, primary_key=True)
    operator_id = Column(String, nullable=False)
    player_id = Column(String, nullable=True)
    round_id = Column(String, index=True, nullable=True)
    game_id = Column(String, nullable=True)
    event_type = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class GameConfig(Base):
    __tablename__ = "games"
    game_id = Column(String, primary_key=True)
    display_name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="LIVE")
    config = Column(JSON, nullable=False)
    published_at = Column(DateTime(timezone=True), server_default=func.now())
