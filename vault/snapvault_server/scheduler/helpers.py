"""Cron expressions for common backup schedules."""

from __future__ import annotations


def every_minute() -> str:
    return "* * * * *"


def every_hour() -> str:
    return "0 * * * *"


def every_day(hour: int = 2, minute: int = 0) -> str:
    return f"{minute} {hour} * * *"


def every_week(day_of_week: int = 0, hour: int = 2, minute: int = 0) -> str:
    """Weekly schedule; day_of_week follows crontab (0 = Sunday)."""
    return f"{minute} {hour} * * {day_of_week}"


def every_month(day_of_month: int = 1, hour: int = 2, minute: int = 0) -> str:
    return f"{minute} {hour} {day_of_month} * *"


_DESCRIPTIONS = {
    "* * * * *": "Every minute",
    "0 * * * *": "Every hour",
    "0 0 * * *": "Every day at midnight",
    "0 2 * * *": "Every day at 2:00 AM",
    "0 0 * * 0": "Every Sunday at midnight",
    "0 0 1 * *": "Every month on the 1st at midnight",
}


def describe_schedule(schedule: str) -> str:
    """Human-readable description, or the expression itself when unknown."""
    return _DESCRIPTIONS.get(" ".join(schedule.split()), schedule)
