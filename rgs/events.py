from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from rgs.config import EventType
from rgs.database import Database
from rgs.logging_config import get_logger
from rgs.models import RoundEvent

logger = get_logger(__name__)


class EventLog:
    """
    Audit trail of round lifecycle transitions.

    Writes are best-effort: the money has already moved when an event is
    recorded, so a failed write is logged and reported through the return
    value instead of failing the request.
    """

    def __init__(self, database: Database):
        self.session_factory = database.session_factory
        self.read_session_factory = database.read_session_factory

    def record(
        self,
        operator_id: str,
        event_type: EventType,
        payload: Optional[dict[str, Any]] = None,
        player_id: Optional[str] = None,
        round_id: Optional[str] = None,
        game_id: Optional[str] = None,
    ) -> bool:
        try:
            with self.session_factory.begin() as db:
                db.add(RoundEvent(
                    operator_id=operator_id,
                    player_id=player_id,
                    round_id=round_id,
                    game_id=game_id,
                    event_type=EventType(event_type).value,
                    payload=payload or {},
                ))
        except SQLAlchemyError:
            logger.exception(
                "Failed to write event type=%s roundId=%s operator=%s",
                event_type,
                round_id,
                operator_id,
            )
            return False
        return True

    def list_events(
        self,
        round_id: Optional[str] = None,
        player_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[RoundEvent]:
        with self.read_session_factory() as db:
            query = db.query(RoundEvent)
            if round_id:
                query = query.filter(RoundEvent.round_id == round_id)
            if player_id:
                query = query.filter(RoundEvent.player_id == player_id)
            return query.order_by(RoundEvent.id).limit(limit).all()
