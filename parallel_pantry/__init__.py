"""Relief payout queue with parallel-lane batch settlement."""

__version__ = "0.1.0"
