"""
Round lifecycle manager.

A round only ever moves forward:

    INITIATED --commit--> COMMITTED --complete--> COMPLETED
        |
        +--rollback--> ROLLED_BACK

A committed round is never rolled back through its status; reversing
committed money is done with compensating ledger transactions.
"""
import base64
import secrets
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from rgs.config import ROUND_TRANSITIONS, RoundStatus
from rgs.database import Database
from rgs.exceptions import InvalidStateTransition, RoundNotFound
from rgs.logging_config import get_logger
from rgs.models import Round

logger = get_logger(__name__)


def new_seed() -> str:
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


class RoundManager:
    def __init__(self, database: Database):
        self.session_factory = database.session_factory

    def init_round(self, operator_id: str, player_id: str, game_id: str, currency: str, wager_cents: int) -> Round:
        round_obj = Round(
            round_id=f"rnd_{uuid.uuid4().hex}",
            operator_id=operator_id,
            player_id=player_id,
            game_id=game_id,
            currency=currency,
            wager_cents=wager_cents,
            seed=new_seed(),
            status=RoundStatus.INITIATED.value,
        )
        with self.session_factory.begin() as db:
            db.add(round_obj)
        logger.info(
            "Round initiated roundId=%s operator=%s player=%s game=%s wagerCents=%s",
            round_obj.round_id,
            operator_id,
            player_id,
            game_id,
            wager_cents,
        )
        return round_obj

    def get_round(self, round_id: str) -> Optional[Round]:
        with self.session_factory.begin() as db:
            return db.get(Round, round_id)

    def commit_round(
        self,
        round_id: str,
        outcome: dict[str, Any],
        bet_tx_id: Optional[str],
        win_tx_id: Optional[str],
    ) -> Round:
        """
        Persist the outcome and move INITIATED -> COMMITTED.

        A round that is already committed (or completed afterwards) is
        returned unchanged whatever the arguments are.
        """
        with self.session_factory.begin() as db:
            round_obj = self._locked(db, round_id)
            if round_obj.status in (RoundStatus.COMMITTED.value, RoundStatus.COMPLETED.value):
                logger.info("Round already committed roundId=%s status=%s", round_id, round_obj.status)
                return round_obj
            _transition(round_obj, RoundStatus.COMMITTED)
            round_obj.outcome = outcome
            round_obj.bet_tx_id = bet_tx_id
            round_obj.win_tx_id = win_tx_id
            round_obj.committed_at = _now()
        logger.info("Round committed roundId=%s betTxId=%s winTxId=%s", round_id, bet_tx_id, win_tx_id)
        return round_obj

    def rollback_round(self, round_id: str) -> Round:
        """
        Move INITIATED -> ROLLED_BACK. Repeating it on a rolled back round is
        a no-op; the returned round still carries whatever tx ids it had.
        """
        with self.session_factory.begin() as db:
            round_obj = self._locked(db, round_id)
            if round_obj.status == RoundStatus.ROLLED_BACK.value:
                logger.info("Round already rolled back roundId=%s", round_id)
                return round_obj
            _transition(round_obj, RoundStatus.ROLLED_BACK)
            round_obj.rolled_back_at = _now()
        logger.info("Round rolled back roundId=%s", round_id)
        return round_obj

    def complete_round(self, round_id: str, duration_ms: Optional[int]) -> Round:
        """Record that the client finished presenting a committed round."""
        with self.session_factory.begin() as db:
            round_obj = self._locked(db, round_id)
            if round_obj.status == RoundStatus.COMPLETED.value:
                return round_obj
            _transition(round_obj, RoundStatus.COMPLETED)
            round_obj.completed_at = _now()
            round_obj.duration_ms = duration_ms
        logger.info("Round completed roundId=%s durationMs=%s", round_id, duration_ms)
        return round_obj

    @staticmethod
    def _locked(db: Session, round_id: str) -> Round:
        round_obj = db.query(Round).filter(Round.round_id == round_id).with_for_update().one_or_none()
        if round_obj is None:
            raise RoundNotFound(round_id)
        return round_obj


def _transition(round_obj: Round, target: RoundStatus):
    current = RoundStatus(round_obj.status)
    if target not in ROUND_TRANSITIONS[current]:
        logger.warning(
            "Rejected round transition roundId=%s from=%s to=%s",
            round_obj.round_id,
            current.value,
            target.value,
        )
        raise InvalidStateTransition(round_obj.round_id, current.value, target.value)
    round_obj.status = target.value


def _now() -> datetime:
    return datetime.now(timezone.utc)
