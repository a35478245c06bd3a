from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from rgs.api import router as wallet_router
from rgs.clients.outcome_client import HttpOutcomeResolver
from rgs.config import Settings
from rgs.database import Database, get_db
from rgs.events import EventLog
from rgs.exceptions import RGSError, RoundNotFound
from rgs.helpers import serialize_event, serialize_round, serialize_transaction
from rgs.ledger import WalletLedger
from rgs.logging_config import configure_logging, get_logger
from rgs.models import LedgerTransaction, Operator, Round
from rgs.outcomes import GameCatalog, OutcomeResolver, PrizeTableResolver
from rgs.play import PlayService
from rgs.reconciliation import generate_reconciliation_csv
from rgs.rounds import RoundManager
from rgs.schemas import GameConfigRequest
from rgs.security import RequestAuthenticator, require_bearer_token

logger = get_logger(__name__)


def seed_demo_operator(database: Database, settings: Settings) -> None:
    with database.session_factory.begin() as db:
        if db.get(Operator, settings.default_operator_id) is None:
            db.add(Operator(
                operator_id=settings.default_operator_id,
                name="Demo Operator",
                is_active=True,
                hmac_secret=settings.demo_operator_secret,
            ))
            logger.info("Seeded operator %s", settings.default_operator_id)


def build_resolver(settings: Settings) -> OutcomeResolver:
    if settings.outcome_resolver_url:
        logger.info("Resolving outcomes via %s", settings.outcome_resolver_url)
        return HttpOutcomeResolver(settings)
    return PrizeTableResolver()


def create_app(settings: Optional[Settings] = None, resolver: Optional[OutcomeResolver] = None) -> FastAPI:
    """
    Build the service. All collaborators are constructed here from the one
    settings object and hung off app.state for the request dependencies.
    """
    settings = settings or Settings()
    configure_logging(settings.log_level)
    database = Database(settings)
    resolver = resolver or build_resolver(settings)
    ledger = WalletLedger(database)
    events = EventLog(database)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.run_migrations()
        seed_demo_operator(database, settings)
        if not settings.auth_enabled:
            logger.warning(
                "HMAC request authentication is DISABLED (AUTH_ENABLED=false); "
                "any caller can move money. Never run this configuration in production."
            )
        yield
        database.dispose()

    app = FastAPI(title="RGS Wallet", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.ledger = ledger
    app.state.events = events
    app.state.catalog = GameCatalog(database)
    app.state.authenticator = RequestAuthenticator(settings, database)
    app.state.play_service = PlayService(
        settings, ledger, RoundManager(database), events, app.state.catalog, resolver
    )

    @app.exception_handler(RGSError)
    async def rgs_error_handler(request: Request, exc: RGSError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.code, "detail": exc.detail, "retryable": exc.retryable},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        detail = "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in errors)
        logger.warning("Rejected malformed request path=%s detail=%s", request.url.path, detail)
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "INVALID_REQUEST", "detail": detail, "retryable": False},
        )

    app.include_router(wallet_router)
    _mount_operational_routes(app)
    return app


def _mount_operational_routes(app: FastAPI):
    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/rounds/{round_id}")
    def inspect_round(round_id: str, _auth=Depends(require_bearer_token), db: Session = Depends(get_db)):
        round_obj = db.get(Round, round_id)
        if round_obj is None:
            raise RoundNotFound(round_id)
        transactions = (
            db.query(LedgerTransaction)
            .filter(LedgerTransaction.round_id == round_id)
            .order_by(LedgerTransaction.created_at)
            .all()
        )
        body = serialize_round(round_obj)
        body["transactions"] = [serialize_transaction(t) for t in transactions]
        return body

    @app.get("/events")
    def list_events(
        request: Request,
        roundId: Optional[str] = None,
        playerId: Optional[str] = None,
        limit: int = Query(100, ge=1, le=500),
        _auth=Depends(require_bearer_token),
    ):
        records = request.app.state.events.list_events(round_id=roundId, player_id=playerId, limit=limit)
        return [serialize_event(r) for r in records]

    @app.put("/games/{game_id}")
    def publish_game(game_id: str, body: GameConfigRequest, request: Request, _auth=Depends(require_bearer_token)):
        record = request.app.state.catalog.publish(game_id, body.config, body.displayName)
        return {"success": True, "gameId": record.game_id, "displayName": record.display_name}

    @app.get("/reconciliation_data")
    def download_reconciliation_csv(request: Request, _auth=Depends(require_bearer_token)):
        csv_text, mismatch_count = generate_reconciliation_csv(request.app.state.database)
        return Response(
            content=csv_text,
            media_type="text/csv",
            headers={
                "Content-Disposition": 'attachment; filename="reconciliation.csv"',
                "X-Mismatch-Count": str(mismatch_count),
            },
        )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
