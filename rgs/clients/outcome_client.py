import time
from typing import Any

import httpx

from rgs.config import Settings
from rgs.exceptions import OutcomeError
from rgs.logging_config import get_logger

logger = get_logger(__name__)


class HttpOutcomeResolver:
    """
    Resolves outcomes through the external game-math service.

    Resolution is a pure function of (config, seed), so 5xx responses are
    retried with exponential backoff; anything else is surfaced as an
    OutcomeError and the round stays INITIATED.
    """

    def __init__(self, settings: Settings, client: httpx.Client | None = None):
        self.url = str(settings.outcome_resolver_url)
        self.client = client or httpx.Client(timeout=settings.resolver_timeout_seconds)
        self.max_retries = settings.resolver_max_retries
        self.retry_backoff_seconds = settings.resolver_backoff_seconds

    def resolve(self, game_config: dict[str, Any], seed: str) -> dict[str, Any]:
        resp = self._request_with_retry({"gameConfig": game_config, "seed": seed})
        if resp.status_code != 200:
            raise OutcomeError(f"outcome resolver returned {resp.status_code}")
        try:
            return resp.json()
        except ValueError as exc:
            raise OutcomeError("outcome resolver returned invalid JSON") from exc

    def _request_with_retry(self, payload: dict) -> httpx.Response:
        retries = 0
        backoff = self.retry_backoff_seconds
        while True:
            try:
                response = self.client.post(self.url, json=payload)
            except httpx.RequestError as exc:
                raise OutcomeError(f"outcome resolver request error: {exc}") from exc
            if response.status_code < 500 or retries >= self.max_retries:
                return response
            logger.warning(
                "Outcome resolver error status=%s attempt=%s, retrying in %ss",
                response.status_code,
                retries + 1,
                backoff,
            )
            time.sleep(backoff)
            retries += 1
            backoff *= 2

    def close(self) -> None:
        self.client.close()
