from .coordinator import SettlementCoordinator
from .lanes import LaneAllocator

__all__ = ["SettlementCoordinator", "LaneAllocator"]
