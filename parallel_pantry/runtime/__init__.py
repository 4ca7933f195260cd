from .scheduler import RoundScheduler, seconds_until_next_round
from .supervisor import LoopHealth, LoopSupervisor

__all__ = ["RoundScheduler", "seconds_until_next_round", "LoopHealth", "LoopSupervisor"]
