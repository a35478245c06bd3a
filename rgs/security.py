import hashlib
import hmac
import time
from typing import Mapping, Optional

from fastapi import Header, Request
from sqlalchemy.exc import IntegrityError
from starlette.concurrency import run_in_threadpool

from rgs.config import Settings
from rgs.database import Database
from rgs.exceptions import Unauthorized
from rgs.logging_config import get_logger
from rgs.models import Operator, RequestNonce

logger = get_logger(__name__)

SIGNATURE_HEADERS = ("x-operator-id", "x-timestamp", "x-nonce", "x-signature")


def compute_signature(secret: str, timestamp: str, nonce: str, method: str, path: str, raw_body: bytes) -> str:
    message = f"{timestamp}.{nonce}.{method.upper()}.{path}.".encode() + raw_body
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def _timestamp_seconds(timestamp: str) -> float:
    value = int(timestamp)
    # Browser clients send Date.now() in milliseconds.
    if value > 1e12:
        value /= 1000
    return value


class RequestAuthenticator:
    def __init__(self, settings: Settings, database: Database):
        self.window_seconds = settings.timestamp_window_seconds
        self.session_factory = database.session_factory

    def authenticate(
        self,
        headers: Mapping[str, str],
        method: str,
        path: str,
        raw_body: bytes,
        now: Optional[float] = None,
    ) -> str:
        """
        Verify a signed request and burn its nonce. Returns the operator id.
        """
        missing = [h for h in SIGNATURE_HEADERS if not headers.get(h)]
        if missing:
            raise self._reject(f"missing headers: {', '.join(missing)}")
        operator_id = headers["x-operator-id"]
        timestamp = headers["x-timestamp"]
        nonce = headers["x-nonce"]
        signature = headers["x-signature"]

        now = time.time() if now is None else now
        try:
            skew = abs(now - _timestamp_seconds(timestamp))
        except ValueError:
            raise self._reject("invalid timestamp", operator_id) from None
        if skew > self.window_seconds:
            raise self._reject("timestamp skew", operator_id)

        with self.session_factory.begin() as db:
            operator = db.get(Operator, operator_id)
            secret = operator.hmac_secret if operator is not None and operator.is_active else None
        if secret is None:
            raise self._reject("unknown or inactive operator", operator_id)

        expected = compute_signature(secret, timestamp, nonce, method, path, raw_body)
        if not hmac.compare_digest(expected.encode(), signature.encode()):
            raise self._reject("invalid signature", operator_id)

        # Committed before the handler runs: of two concurrent copies of the
        # same request only one insert succeeds.
        try:
            with self.session_factory.begin() as db:
                db.add(RequestNonce(operator_id=operator_id, nonce=nonce))
        except IntegrityError:
            raise self._reject("replayed nonce", operator_id) from None
        return operator_id

    @staticmethod
    def _reject(reason: str, operator_id: Optional[str] = None) -> Unauthorized:
        logger.warning("Rejected signed request operator=%s reason=%s", operator_id, reason)
        return Unauthorized(reason)


async def require_signature(request: Request) -> Optional[str]:
    """
    FastAPI dependency for the wallet endpoints. Returns the authenticated
    operator id, or None when authentication is disabled.
    """
    if not request.app.state.settings.auth_enabled:
        return None
    authenticator: RequestAuthenticator = request.app.state.authenticator
    raw_body = await request.body()
    return await run_in_threadpool(
        authenticator.authenticate,
        request.headers,
        request.method,
        request.url.path,
        raw_body,
    )


def require_bearer_token(request: Request, authorization: str | None = Header(None, alias="Authorization")):
    """
    FastAPI dependency to enforce Authorization: Bearer <token> when configured.
    """
    token_required = request.app.state.settings.bearer_token
    if not token_required:
        return
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized("Unauthorized")
    token = authorization.split(" ", 1)[1].strip()
    if not hmac.compare_digest(token.encode(), token_required.encode()):
        raise Unauthorized("Unauthorized")
