from .manager import DryRunTransferExecutor, TransferExecutor
from .nonce import LaneNonceManager
from .vault import VaultTransferExecutor, checksum_recipient, to_base_units

__all__ = [
    "DryRunTransferExecutor",
    "TransferExecutor",
    "LaneNonceManager",
    "VaultTransferExecutor",
    "checksum_recipient",
    "to_base_units",
]
