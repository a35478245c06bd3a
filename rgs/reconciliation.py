import csv
from io import StringIO
from typing import List, Tuple

from sqlalchemy import func

from rgs.config import RoundStatus
from rgs.database import Database
from rgs.logging_config import get_logger
from rgs.models import LedgerTransaction, Round, WalletAccount

logger = get_logger(__name__)

HEADER = ["kind", "operatorId", "playerId", "currency", "reference", "expected", "actual"]


def find_mismatches(database: Database) -> List[tuple]:
    """
    Compare every stored balance with initial balance + sum(ledger amounts),
    and every committed round with the ledger rows it points at.
    """
    mismatches: List[tuple] = []
    with database.read_session_factory() as db:
        sums = dict(
            ((op, player, cur), total)
            for op, player, cur, total in db.query(
                LedgerTransaction.operator_id,
                LedgerTransaction.player_id,
                LedgerTransaction.currency,
                func.sum(LedgerTransaction.amount_cents),
            ).group_by(
                LedgerTransaction.operator_id,
                LedgerTransaction.player_id,
                LedgerTransaction.currency,
            )
        )
        for account in db.query(WalletAccount).order_by(WalletAccount.id):
            key = (account.operator_id, account.player_id, account.currency)
            expected = account.initial_balance_cents + int(sums.get(key) or 0)
            if expected != account.balance_cents:
                mismatches.append(("BALANCE", *key, "", expected, account.balance_cents))

        settled = (RoundStatus.COMMITTED.value, RoundStatus.COMPLETED.value)
        for round_obj in db.query(Round).filter(Round.status.in_(settled)).order_by(Round.created_at):
            key = (round_obj.operator_id, round_obj.player_id, round_obj.currency)
            bet = db.get(LedgerTransaction, round_obj.bet_tx_id) if round_obj.bet_tx_id else None
            if bet is None or bet.amount_cents != -round_obj.wager_cents:
                actual = bet.amount_cents if bet is not None else "missing"
                mismatches.append(("ROUND_BET", *key, round_obj.round_id, -round_obj.wager_cents, actual))
            prize = (round_obj.outcome or {}).get("finalPrizeCents", 0)
            win = db.get(LedgerTransaction, round_obj.win_tx_id) if round_obj.win_tx_id else None
            win_cents = win.amount_cents if win is not None else 0
            if prize != win_cents:
                mismatches.append(("ROUND_WIN", *key, round_obj.round_id, prize, win_cents))
    return mismatches


def generate_reconciliation_csv(database: Database) -> Tuple[str, int]:
    mismatches = find_mismatches(database)
    logger.info("Reconciliation complete with %s mismatches", len(mismatches))
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(HEADER)
    for row in mismatches:
        writer.writerow(row)
    return output.getvalue(), len(mismatches)
