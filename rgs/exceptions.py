"""
Error taxonomy for the wallet and round engine.

Every error carries the HTTP status and the stable machine-readable code the
API returns; the exception handler in rgs.main renders them.
"""
from typing import Optional


class RGSError(Exception):
    """Base class for all errors surfaced to callers."""

    status_code = 500
    code = "INTERNAL_ERROR"
    retryable = False

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.code
        super().__init__(self.detail)


# ============ client errors ============

class MissingFields(RGSError):
    status_code = 400
    code = "MISSING_FIELDS"

    def __init__(self, fields: list[str]):
        self.fields = fields
        super().__init__(f"{', '.join(fields)} required")


class InvalidRequest(RGSError):
    status_code = 400
    code = "INVALID_REQUEST"


class Unauthorized(RGSError):
    status_code = 401
    code = "UNAUTHORIZED"


class InsufficientFunds(RGSError):
    status_code = 402
    code = "INSUFFICIENT_FUNDS"

    def __init__(self, balance_cents: int, amount_cents: int):
        self.balance_cents = balance_cents
        self.amount_cents = amount_cents
        super().__init__(f"balance {balance_cents} cannot cover {amount_cents}")


class AccountNotFound(RGSError):
    status_code = 404
    code = "ACCOUNT_NOT_FOUND"


class RoundNotFound(RGSError):
    status_code = 404
    code = "ROUND_NOT_FOUND"

    def __init__(self, round_id: str):
        self.round_id = round_id
        super().__init__(f"Round {round_id} not found")


class InvalidStateTransition(RGSError):
    status_code = 409
    code = "INVALID_ROUND_STATE"

    def __init__(self, round_id: str, current: str, target: str):
        self.round_id = round_id
        self.current = current
        self.target = target
        super().__init__(f"Round {round_id} cannot move from {current} to {target}")


class IdempotencyConflict(RGSError):
    status_code = 409
    code = "IDEMPOTENCY_CONFLICT"


class RoundInProgress(RGSError):
    """The original request for this clientTxnId has not settled its round yet."""

    status_code = 409
    code = "ROUND_IN_PROGRESS"
    retryable = True

    def __init__(self, round_id: str):
        self.round_id = round_id
        super().__init__(f"Round {round_id} is still being played; retry or roll it back")


class UnsupportedCurrency(RGSError):
    status_code = 422
    code = "UNSUPPORTED_CURRENCY"


# ============ server faults ============

class IntegrityFault(RGSError):
    """Stored data contradicts itself; never papered over."""

    code = "INTEGRITY_FAULT"


class OutcomeError(RGSError):
    """The outcome resolver failed or returned an unusable result."""

    code = "OUTCOME_INVALID"


class ServiceFailure(RGSError):
    """Endpoint-level 500 carrying the endpoint's failure code."""

    def __init__(self, code: str, detail: Optional[str] = None, retryable: bool = False):
        self.code = code
        self.retryable = retryable
        super().__init__(detail or code)
