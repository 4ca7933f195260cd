from .errors import (
    ConcurrencyConflict,
    ConfigurationError,
    PersistenceError,
    ReliefError,
    TransferError,
    ValidationError,
)
from .models import (
    CLAIM_LIMIT_REACHED,
    INVALID_FIELD,
    MISSING_FIELD,
    SCORE_TOO_LOW,
    BatchResult,
    PayoutRequest,
    TransferOutcome,
    new_request_id,
    normalize_address,
    parse_amount,
)

__all__ = [
    "ConcurrencyConflict",
    "ConfigurationError",
    "PersistenceError",
    "ReliefError",
    "TransferError",
    "ValidationError",
    "CLAIM_LIMIT_REACHED",
    "INVALID_FIELD",
    "MISSING_FIELD",
    "SCORE_TOO_LOW",
    "BatchResult",
    "PayoutRequest",
    "TransferOutcome",
    "new_request_id",
    "normalize_address",
    "parse_amount",
]
