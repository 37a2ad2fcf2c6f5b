"""Proactive re-engagement of inactive users."""

from .scheduler import FALLBACK_MESSAGES, ProactiveScheduler, SchedulerConfig

__all__ = ["FALLBACK_MESSAGES", "ProactiveScheduler", "SchedulerConfig"]
