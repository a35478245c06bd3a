"""
Play orchestration: the wallet ledger and the round lifecycle composed into
the session / play / complete / rollback protocol.
"""
from dataclasses import dataclass
from typing import Any, Optional

from rgs.config import EventType, RoundStatus, Settings, TransactionType
from rgs.events import EventLog
from rgs.exceptions import (
    IdempotencyConflict,
    InsufficientFunds,
    IntegrityFault,
    InvalidRequest,
    InvalidStateTransition,
    RoundNotFound,
    RoundInProgress,
)
from rgs.helpers import from_cents
from rgs.ledger import WalletLedger
from rgs.logging_config import get_logger
from rgs.models import LedgerTransaction, Round
from rgs.outcomes import GameCatalog, OutcomeResolver, parse_outcome
from rgs.rounds import RoundManager

logger = get_logger(__name__)


@dataclass(frozen=True)
class PlayResult:
    round_id: str
    outcome: Optional[dict[str, Any]]
    balance_cents: int


@dataclass(frozen=True)
class RollbackResult:
    round_id: str
    status: str
    balance_cents: Optional[int]
    had_bet: bool
    had_win: bool


class PlayService:
    def __init__(
        self,
        settings: Settings,
        ledger: WalletLedger,
        rounds: RoundManager,
        events: EventLog,
        catalog: GameCatalog,
        resolver: OutcomeResolver,
    ):
        self.initial_balance_cents = settings.initial_balance_cents
        self.ledger = ledger
        self.rounds = rounds
        self.events = events
        self.catalog = catalog
        self.resolver = resolver

    def open_session(self, operator_id: str, player_id: str, currency: str) -> int:
        self.ledger.ensure_account(operator_id, player_id, currency, self.initial_balance_cents)
        self.events.record(operator_id, EventType.SESSION_CREATED, {"currency": currency}, player_id=player_id)
        return self._balance(operator_id, player_id, currency)

    def play(
        self,
        operator_id: str,
        player_id: str,
        game_id: str,
        currency: str,
        wager_cents: int,
        client_txn_id: str,
    ) -> PlayResult:
        if wager_cents <= 0:
            raise InvalidRequest("wager must be positive")
        self.ledger.ensure_account(operator_id, player_id, currency, self.initial_balance_cents)

        # Fast path: this clientTxnId already placed its bet, answer from storage.
        existing_bet = self.ledger.find_transaction(
            operator_id, player_id, currency, TransactionType.BET, client_txn_id
        )
        if existing_bet is not None:
            return self._replay(existing_bet, wager_cents)

        round_obj = self.rounds.init_round(operator_id, player_id, game_id, currency, wager_cents)
        round_id = round_obj.round_id
        context = {"player_id": player_id, "round_id": round_id, "game_id": game_id}
        self.events.record(
            operator_id,
            EventType.ROUND_INITIATED,
            {"wagerCents": wager_cents, "clientTxnId": client_txn_id},
            **context,
        )

        try:
            bet = self.ledger.apply_transaction(
                operator_id, player_id, currency, TransactionType.BET, -wager_cents, client_txn_id, round_id
            )
        except InsufficientFunds:
            self.events.record(
                operator_id,
                EventType.BET_DECLINED,
                {"reason": "INSUFFICIENT_FUNDS", "wagerCents": wager_cents, "clientTxnId": client_txn_id},
                **context,
            )
            raise

        if bet.round_id != round_id:
            # A concurrent copy of this request placed the bet first; our
            # round never moved money, so retire it and answer as a replay.
            self.rounds.rollback_round(round_id)
            self.events.record(
                operator_id,
                EventType.ROUND_ABANDONED,
                {"clientTxnId": client_txn_id, "winningRoundId": bet.round_id},
                **context,
            )
            logger.warning(
                "Duplicate play lost the race clientTxnId=%s roundId=%s winner=%s",
                client_txn_id,
                round_id,
                bet.round_id,
            )
            return self._replay(bet, wager_cents)

        self.events.record(
            operator_id,
            EventType.BET_AUTHORIZED,
            {"txId": bet.tx_id, "wagerCents": wager_cents, "clientTxnId": client_txn_id},
            **context,
        )

        try:
            committed = self._settle(operator_id, player_id, currency, round_obj, bet, client_txn_id)
        except Exception:
            logger.exception(
                "Play failed after bet; round left for rollback roundId=%s clientTxnId=%s",
                round_id,
                client_txn_id,
            )
            raise

        self.events.record(operator_id, EventType.ROUND_COMMITTED, {"status": committed.status}, **context)
        return PlayResult(round_id, committed.outcome, self._balance(operator_id, player_id, currency))

    def _settle(
        self,
        operator_id: str,
        player_id: str,
        currency: str,
        round_obj: Round,
        bet: LedgerTransaction,
        client_txn_id: str,
    ) -> Round:
        round_id = round_obj.round_id
        game_config = self.catalog.load(round_obj.game_id)
        raw_outcome = self.resolver.resolve(game_config, round_obj.seed)
        outcome = parse_outcome(raw_outcome)
        win_cents = outcome.finalPrizeCents

        win = None
        if win_cents > 0:
            win = self.ledger.apply_transaction(
                operator_id,
                player_id,
                currency,
                TransactionType.WIN,
                win_cents,
                f"{client_txn_id}:WIN",
                round_id,
            )
            self.events.record(
                operator_id,
                EventType.WIN_APPLIED,
                {"txId": win.tx_id, "winCents": win_cents, "baseClientTxnId": client_txn_id},
                player_id=player_id,
                round_id=round_id,
                game_id=round_obj.game_id,
            )

        document = dict(raw_outcome, finalPrize=from_cents(win_cents), finalPrizeCents=win_cents)
        try:
            return self.rounds.commit_round(round_id, document, bet.tx_id, win.tx_id if win else None)
        except InvalidStateTransition:
            # Rolled back while we were resolving: the rollback may have
            # missed the transactions we just wrote, so compensate them here.
            self._compensate(round_id, operator_id, player_id, currency, bet, win)
            raise

    def _replay(self, bet: LedgerTransaction, wager_cents: int) -> PlayResult:
        if bet.amount_cents != -wager_cents:
            raise IdempotencyConflict(
                f"clientTxnId {bet.client_txn_id} was used for a wager of {-bet.amount_cents} cents"
            )
        round_obj = self.rounds.get_round(bet.round_id) if bet.round_id else None
        if round_obj is None:
            logger.error(
                "Integrity fault: BET txId=%s clientTxnId=%s references missing round roundId=%s",
                bet.tx_id,
                bet.client_txn_id,
                bet.round_id,
            )
            raise IntegrityFault("ROUND_MISSING_FOR_EXISTING_TX")
        if round_obj.status == RoundStatus.INITIATED.value:
            logger.info("Replay found unsettled round clientTxnId=%s roundId=%s", bet.client_txn_id, round_obj.round_id)
            raise RoundInProgress(round_obj.round_id)
        logger.info("Replayed play clientTxnId=%s roundId=%s", bet.client_txn_id, round_obj.round_id)
        balance = self._balance(bet.operator_id, bet.player_id, bet.currency)
        return PlayResult(round_obj.round_id, round_obj.outcome, balance)

    def complete(
        self,
        operator_id: str,
        round_id: str,
        duration_ms: Optional[int],
        player_id: Optional[str] = None,
        game_id: Optional[str] = None,
    ) -> Round:
        if duration_ms is not None and duration_ms < 0:
            raise InvalidRequest("durationMs must not be negative")
        self._owned_round(operator_id, round_id, player_id)
        completed = self.rounds.complete_round(round_id, duration_ms)
        self.events.record(
            operator_id,
            EventType.ROUND_COMPLETED,
            {"durationMs": duration_ms},
            player_id=player_id,
            round_id=round_id,
            game_id=game_id,
        )
        return completed

    def rollback(
        self,
        operator_id: str,
        round_id: str,
        player_id: str,
        client_txn_id: str,
        game_id: Optional[str] = None,
    ) -> RollbackResult:
        """
        Abandon an uncommitted round and reverse whatever money it moved.
        """
        round_obj = self._owned_round(operator_id, round_id, player_id)
        context = {"player_id": player_id, "round_id": round_id, "game_id": game_id}
        self.events.record(operator_id, EventType.ROLLBACK_REQUESTED, {"clientTxnId": client_txn_id}, **context)

        rolled = self.rounds.rollback_round(round_id)
        bet = self._round_transaction(rolled.bet_tx_id, round_id, TransactionType.BET)
        win = self._round_transaction(rolled.win_tx_id, round_id, TransactionType.WIN)
        self._compensate(round_id, operator_id, player_id, round_obj.currency, bet, win)

        self.events.record(
            operator_id,
            EventType.ROUND_ROLLED_BACK,
            {"hadBet": bet is not None, "hadWin": win is not None, "clientTxnId": client_txn_id},
            **context,
        )
        balance = self.ledger.get_balance(operator_id, player_id, round_obj.currency)
        return RollbackResult(round_id, rolled.status, balance, bet is not None, win is not None)

    def _compensate(
        self,
        round_id: str,
        operator_id: str,
        player_id: str,
        currency: str,
        bet: Optional[LedgerTransaction],
        win: Optional[LedgerTransaction],
    ) -> None:
        # Keys derive from the round, so a round is reversed at most once no
        # matter how many rollback requests reach it.
        if bet is not None:
            self.ledger.apply_transaction(
                operator_id,
                player_id,
                currency,
                TransactionType.ROLLBACK_BET,
                abs(bet.amount_cents),
                f"{round_id}:RB_BET",
                round_id,
            )
        if win is not None:
            self.ledger.apply_transaction(
                operator_id,
                player_id,
                currency,
                TransactionType.ROLLBACK_WIN,
                -abs(win.amount_cents),
                f"{round_id}:RB_WIN",
                round_id,
            )

    def _round_transaction(
        self, tx_id: Optional[str], round_id: str, tx_type: TransactionType
    ) -> Optional[LedgerTransaction]:
        if tx_id is None:
            # Rounds that never committed have no ids yet; their rows are
            # still tagged with the round id.
            return self.ledger.find_round_transaction(round_id, tx_type)
        txn = self.ledger.get_transaction(tx_id)
        if txn is None:
            logger.error("Integrity fault: round roundId=%s references missing txId=%s", round_id, tx_id)
            raise IntegrityFault(f"{tx_type.value} transaction {tx_id} missing")
        return txn

    def _owned_round(self, operator_id: str, round_id: str, player_id: Optional[str]) -> Round:
        round_obj = self.rounds.get_round(round_id)
        if round_obj is None or round_obj.operator_id != operator_id:
            raise RoundNotFound(round_id)
        if player_id is not None and round_obj.player_id != player_id:
            raise RoundNotFound(round_id)
        return round_obj

    def _balance(self, operator_id: str, player_id: str, currency: str) -> int:
        balance = self.ledger.get_balance(operator_id, player_id, currency)
        if balance is None:
            raise IntegrityFault(f"account for player {player_id} vanished")
        return balance
