from .claim_ledger import ClaimLedger
from .dead_letter import DeadLetter, DeadLetterStore
from .file_lock import FileLock
from .json_store import JsonStore
from .queue_store import QueueStore

__all__ = ["ClaimLedger", "DeadLetter", "DeadLetterStore", "FileLock", "JsonStore", "QueueStore"]
