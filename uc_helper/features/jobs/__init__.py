"""Jobs feature - Periodic background work."""

from .scheduler import SweepScheduler, SWEEP_JOB_ID

__all__ = ["SweepScheduler", "SWEEP_JOB_ID"]
