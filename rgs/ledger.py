"""
Wallet ledger: per-(operator, player, currency) balances and the
append-only, idempotent transaction log.
"""
import uuid
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rgs.config import CREDIT_TYPES, DEBIT_TYPES, MAX_CENTS, TransactionType
from rgs.database import Database
from rgs.exceptions import AccountNotFound, InsufficientFunds, InvalidRequest
from rgs.logging_config import get_logger
from rgs.models import LedgerTransaction, WalletAccount

logger = get_logger(__name__)


class WalletLedger:
    def __init__(self, database: Database):
        self.session_factory = database.session_factory

    def ensure_account(self, operator_id: str, player_id: str, currency: str, initial_balance_cents: int) -> int:
        """
        Create the account if it does not exist yet and return its balance.
        An existing account is returned untouched.
        """
        if not 0 <= initial_balance_cents <= MAX_CENTS:
            raise InvalidRequest(f"initial balance out of range: {initial_balance_cents}")
        try:
            with self.session_factory.begin() as db:
                account = self._account(db, operator_id, player_id, currency)
                if account is not None:
                    return account.balance_cents
                db.add(WalletAccount(
                    operator_id=operator_id,
                    player_id=player_id,
                    currency=currency,
                    balance_cents=initial_balance_cents,
                    initial_balance_cents=initial_balance_cents,
                ))
        except IntegrityError:
            # Another request created it between our read and our insert.
            logger.info("Account created concurrently operator=%s player=%s currency=%s", operator_id, player_id, currency)
            balance = self.get_balance(operator_id, player_id, currency)
            if balance is None:
                raise
            return balance
        logger.info(
            "Opened wallet account operator=%s player=%s currency=%s balanceCents=%s",
            operator_id,
            player_id,
            currency,
            initial_balance_cents,
        )
        return initial_balance_cents

    def get_balance(self, operator_id: str, player_id: str, currency: str) -> Optional[int]:
        with self.session_factory.begin() as db:
            account = self._account(db, operator_id, player_id, currency)
            return account.balance_cents if account is not None else None

    def apply_transaction(
        self,
        operator_id: str,
        player_id: str,
        currency: str,
        tx_type: TransactionType,
        amount_cents: int,
        client_txn_id: str,
        round_id: Optional[str] = None,
    ) -> LedgerTransaction:
        """
        Apply one balance change exactly once.

        The idempotency lookup, the funds check and the insert share one
        transaction. A replay of the same (operator, player, currency, type,
        clientTxnId) returns the stored row without touching the balance.
        """
        tx_type = TransactionType(tx_type)
        _check_sign(tx_type, amount_cents)
        args = (operator_id, player_id, currency, tx_type, amount_cents, client_txn_id, round_id)
        try:
            return self._apply_once(*args)
        except IntegrityError:
            # Lost an insert race on the idempotency key; the second pass finds
            # the winner's row and returns it as a replay.
            logger.warning("Idempotency race on type=%s clientTxnId=%s, re-reading", tx_type.value, client_txn_id)
        return self._apply_once(*args)

    def _apply_once(self, operator_id, player_id, currency, tx_type, amount_cents, client_txn_id, round_id):
        with self.session_factory.begin() as db:
            existing = self._find(db, operator_id, player_id, currency, tx_type, client_txn_id)
            if existing is not None:
                logger.info(
                    "Replayed ledger transaction txId=%s type=%s clientTxnId=%s",
                    existing.tx_id,
                    tx_type.value,
                    client_txn_id,
                )
                return existing
            account = (
                db.query(WalletAccount)
                .filter_by(operator_id=operator_id, player_id=player_id, currency=currency)
                .with_for_update()
                .one_or_none()
            )
            if account is None:
                raise AccountNotFound(f"no {currency} account for player {player_id}")
            new_balance = account.balance_cents + amount_cents
            if new_balance > MAX_CENTS:
                raise InvalidRequest(f"balance would exceed {MAX_CENTS} cents")
            if new_balance < 0:
                logger.info(
                    "Insufficient funds type=%s clientTxnId=%s balanceCents=%s amountCents=%s",
                    tx_type.value,
                    client_txn_id,
                    account.balance_cents,
                    amount_cents,
                )
                raise InsufficientFunds(account.balance_cents, amount_cents)
            txn = LedgerTransaction(
                tx_id=str(uuid.uuid4()),
                operator_id=operator_id,
                player_id=player_id,
                currency=currency,
                type=tx_type.value,
                amount_cents=amount_cents,
                client_txn_id=client_txn_id,
                round_id=round_id,
            )
            db.add(txn)
            account.balance_cents = new_balance
            db.flush()
            db.refresh(txn)
        logger.info(
            "Applied ledger transaction txId=%s type=%s amountCents=%s clientTxnId=%s roundId=%s balanceCents=%s",
            txn.tx_id,
            txn.type,
            amount_cents,
            client_txn_id,
            round_id,
            new_balance,
        )
        return txn

    def find_transaction(
        self, operator_id: str, player_id: str, currency: str, tx_type: TransactionType, client_txn_id: str
    ) -> Optional[LedgerTransaction]:
        with self.session_factory.begin() as db:
            return self._find(db, operator_id, player_id, currency, TransactionType(tx_type), client_txn_id)

    def get_transaction(self, tx_id: str) -> Optional[LedgerTransaction]:
        with self.session_factory.begin() as db:
            return db.get(LedgerTransaction, tx_id)

    def find_round_transaction(self, round_id: str, tx_type: TransactionType) -> Optional[LedgerTransaction]:
        with self.session_factory.begin() as db:
            return (
                db.query(LedgerTransaction)
                .filter(LedgerTransaction.round_id == round_id)
                .filter(LedgerTransaction.type == TransactionType(tx_type).value)
                .order_by(LedgerTransaction.created_at)
                .first()
            )

    def list_transactions(self, operator_id: str, player_id: str, currency: str) -> list[LedgerTransaction]:
        with self.session_factory.begin() as db:
            return (
                db.query(LedgerTransaction)
                .filter_by(operator_id=operator_id, player_id=player_id, currency=currency)
                .order_by(LedgerTransaction.created_at)
                .all()
            )

    def list_accounts(self) -> list[WalletAccount]:
        with self.session_factory.begin() as db:
            return db.query(WalletAccount).order_by(WalletAccount.id).all()

    @staticmethod
    def _account(db: Session, operator_id, player_id, currency) -> Optional[WalletAccount]:
        return (
            db.query(WalletAccount)
            .filter_by(operator_id=operator_id, player_id=player_id, currency=currency)
            .one_or_none()
        )

    @staticmethod
    def _find(db: Session, operator_id, player_id, currency, tx_type, client_txn_id) -> Optional[LedgerTransaction]:
        return (
            db.query(LedgerTransaction)
            .filter_by(
                operator_id=operator_id,
                player_id=player_id,
                currency=currency,
                type=tx_type.value,
                client_txn_id=client_txn_id,
            )
            .one_or_none()
        )


def _check_sign(tx_type: TransactionType, amount_cents: int):
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise InvalidRequest("amountCents must be an integer")
    if abs(amount_cents) > MAX_CENTS:
        raise InvalidRequest("amountCents out of range")
    if tx_type in DEBIT_TYPES and amount_cents >= 0:
        raise InvalidRequest(f"{tx_type.value} must be a negative amount")
    if tx_type in CREDIT_TYPES and amount_cents <= 0:
        raise InvalidRequest(f"{tx_type.value} must be a positive amount")
