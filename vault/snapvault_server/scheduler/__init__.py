"""
Backup scheduler for SnapVault.

Fires backups on a five-field cron schedule and prunes old backups after
every run. Schedulers are explicitly constructed; tests may run several
independent instances side by side.
"""

from .helpers import (
    describe_schedule,
    every_day,
    every_hour,
    every_minute,
    every_month,
    every_week,
)
from .scheduler import BackupScheduler, SchedulerState, validate_schedule
from .state import apply_overrides, load_overrides, save_config, state_path

__all__ = [
    "BackupScheduler",
    "SchedulerState",
    "validate_schedule",
    # Schedule helpers
    "every_minute",
    "every_hour",
    "every_day",
    "every_week",
    "every_month",
    "describe_schedule",
    # Persisted overrides
    "state_path",
    "load_overrides",
    "apply_overrides",
    "save_config",
]
