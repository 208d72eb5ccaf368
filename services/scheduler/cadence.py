"""
Cadence evaluation.

Named frequencies map to fixed cron expressions; ``custom`` schedules bring
their own. Next-run times come from croniter, so they are deterministic for a
given expression and reference time.
"""

from datetime import datetime

from croniter import croniter

from core.errors import InvalidRequest

from .models import Frequency, ScheduleConfig

CRON_PRESETS: dict[Frequency, str] = {
    Frequency.HOURLY: "0 * * * *",  # Every hour at minute 0
    Frequency.DAILY: "0 9 * * *",  # Every day at 9 AM UTC
    Frequency.WEEKLY: "0 9 * * 1",  # Every Monday at 9 AM UTC
}


def resolve_cron(config: ScheduleConfig) -> str:
    """Cron expression for a schedule config."""
    if config.frequency == Frequency.CUSTOM:
        expression = (config.cron_expression or "").strip()
        if len(expression.split()) != 5 or not croniter.is_valid(expression):
            raise InvalidRequest(f"Invalid cron expression: {config.cron_expression!r}")
        return expression
    return CRON_PRESETS[config.frequency]


def next_run_after(expression: str, after: datetime) -> datetime:
    """First run strictly after ``after``."""
    return croniter(expression, after).get_next(datetime)
