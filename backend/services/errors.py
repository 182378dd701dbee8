"""
Payout engine error taxonomy.

Every error carries an HTTP status and a stable machine code; main.py maps
them onto the {"status": "error", "code", "message"} response envelope.

  Retry later:      NotReady (and transient database conflicts)
  Never retried:    ConfigNotFound, InvalidInput, AlreadyUnlocked
  Requester-facing: InsufficientBalance, BelowMinimum, InvalidPayoutMethod,
                    DuplicatePendingRequest
"""


class PayoutEngineError(Exception):
    status_code = 400
    code = "payout_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(PayoutEngineError):
    status_code = 404
    code = "not_found"


class ConfigNotFound(PayoutEngineError):
    """No active tier rate / SKU config — computation cannot proceed."""
    status_code = 500
    code = "config_not_found"


class InvalidInput(PayoutEngineError):
    """Out-of-range score or lateness — upstream data is corrupt."""
    status_code = 422
    code = "invalid_input"


class NotReady(PayoutEngineError):
    """A precondition is not met yet; the caller should retry later."""
    status_code = 409
    code = "not_ready"


class AlreadyUnlocked(PayoutEngineError):
    status_code = 409
    code = "already_unlocked"


class InsufficientBalance(PayoutEngineError):
    status_code = 400
    code = "insufficient_balance"


class BelowMinimum(PayoutEngineError):
    status_code = 400
    code = "below_minimum"


class InvalidPayoutMethod(PayoutEngineError):
    status_code = 400
    code = "invalid_payout_method"


class DuplicatePendingRequest(PayoutEngineError):
    status_code = 409
    code = "duplicate_pending_request"


class InvalidTransition(PayoutEngineError):
    status_code = 409
    code = "invalid_transition"


class NotAuthorized(PayoutEngineError):
    status_code = 403
    code = "not_authorized"
