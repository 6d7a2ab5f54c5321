"""Scheduling policy and call-window arithmetic."""

from callrecovery.scheduling.policy import SchedulingPolicy
from callrecovery.scheduling.window import next_run_time, parse_hhmm

__all__ = ["SchedulingPolicy", "next_run_time", "parse_hhmm"]
