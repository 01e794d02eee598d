# snapshot_service/services/scheduler.py
"""
Cron-driven triggers for snapshot creation, cleanup and statistics.

Each trigger runs on an APScheduler worker thread. A trigger never raises
into the scheduler: failures are logged and the next firing is the retry.
Jobs are registered with max_instances=1 and coalesce=True so a slow run is
never overlapped by its own next firing.
"""

import logging
from collections.abc import Callable
from typing import Any
from zoneinfo import ZoneInfo

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger

from snapshot_service.config import Settings
from snapshot_service.logging_config import log_operation
from snapshot_service.models import AggregateStats, RetentionTier
from snapshot_service.services.retention_manager import RetentionManager
from snapshot_service.services.snapshot_creator import SnapshotCreator, create_snapshots_for_all_databases

logger = logging.getLogger(__name__)

# Crontab day-of-week: 0 and 7 are Sunday
CRON_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")
_WEEKDAY_NUMBERS = {name: number for number, name in enumerate(CRON_WEEKDAYS)}


# -----------------------------------------------------------------------------
# Crontab parsing
# -----------------------------------------------------------------------------


def _weekday_number(token: str) -> int:
    token = token.strip().lower()
    if token in _WEEKDAY_NUMBERS:
        return _WEEKDAY_NUMBERS[token]
    number = int(token)
    if not 0 <= number <= 7:
        raise ValueError(f"Day of week '{token}' out of range 0-7")
    return number


def crontab_weekdays(field: str) -> str:
    """
    Translate a crontab day-of-week field into APScheduler weekday names.

    APScheduler numbers weekdays from Monday; crontab numbers them from Sunday
    and accepts 7 as Sunday too. Names avoid the ambiguity entirely.

    >>> crontab_weekdays("0")
    'sun'
    >>> crontab_weekdays("1-5")
    'mon,tue,wed,thu,fri'
    """
    if field == "*":
        return "*"

    days: set[int] = set()
    for part in field.split(","):
        span, _, step_text = part.partition("/")
        step = int(step_text) if step_text else 1
        if step < 1:
            raise ValueError(f"Invalid step in day of week '{field}'")

        if span == "*":
            first, last = 0, 6
        elif "-" in span:
            first_text, last_text = span.split("-", 1)
            first, last = _weekday_number(first_text), _weekday_number(last_text)
        else:
            first = _weekday_number(span)
            last = 7 if step_text else first

        if first > last:
            raise ValueError(f"Invalid day of week range '{span}'")
        days.update(day % 7 for day in range(first, last + 1, step))

    return ",".join(CRON_WEEKDAYS[day] for day in sorted(days))


def crontab_trigger(expression: str, timezone: ZoneInfo | str) -> BaseTrigger:
    """
    Build a trigger from a standard 5-field crontab expression.

    When both day-of-month and day-of-week are restricted, crontab fires if
    either matches; that case becomes an OrTrigger of two cron triggers.
    """
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"Cron expression '{expression}' must have exactly 5 fields")

    minute, hour, day, month, day_of_week = fields
    weekdays = crontab_weekdays(day_of_week)

    if day != "*" and weekdays != "*":
        return OrTrigger(
            [
                CronTrigger(minute=minute, hour=hour, day=day, month=month, timezone=timezone),
                CronTrigger(minute=minute, hour=hour, month=month, day_of_week=weekdays, timezone=timezone),
            ]
        )

    return CronTrigger(
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=weekdays,
        timezone=timezone,
    )


# -----------------------------------------------------------------------------
# Scheduler
# -----------------------------------------------------------------------------


class SnapshotScheduler:
    """
    Binds the configured cron schedules to creation, cleanup and stats actions.

    Usage:
        scheduler = SnapshotScheduler(settings, retention_manager, creator)
        scheduler.start()
        ...
        scheduler.shutdown()
    """

    def __init__(
        self,
        settings: Settings,
        retention_manager: RetentionManager,
        creator: SnapshotCreator | None = None,
        scheduler: BackgroundScheduler | None = None,
    ):
        self.settings = settings
        self.retention_manager = retention_manager
        self.creator = creator
        self.timezone = ZoneInfo(settings.TZ)
        self.scheduler = scheduler or BackgroundScheduler(timezone=self.timezone)
        self._registered: list[str] = []
        self._started = False

    @property
    def enabled(self) -> bool:
        return self.settings.SNAPSHOT_ENABLED

    @property
    def running(self) -> bool:
        return self._started

    @property
    def registered_triggers(self) -> list[str]:
        return list(self._registered)

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    def _create_action(self, tier: RetentionTier) -> Callable[[], int]:
        def action() -> int:
            return create_snapshots_for_all_databases(
                self.retention_manager.store,
                self.creator,
                tier,
                max_workers=self.settings.BATCH_SIZE,
            )

        return action

    def log_stats(self) -> AggregateStats:
        """Collect aggregate statistics and log them."""
        stats = self.retention_manager.get_all_snapshot_stats()
        failed_note = f", {len(stats.failed_databases)} databases failed" if stats.failed_databases else ""
        logger.info(
            f"Snapshot statistics: {stats.total_snapshots} snapshots in {stats.total_databases} databases "
            f"{stats.by_tier}{failed_note}",
            extra={
                "event": "snapshot_stats",
                "stats": stats.to_dict(),
                "items_processed": stats.total_databases,
                "items_failed": len(stats.failed_databases),
            },
        )
        return stats

    def build_actions(self) -> dict[str, Callable[[], Any]]:
        """Trigger name -> action for every trigger that should be registered."""
        actions: dict[str, Callable[[], Any]] = {}

        if self.creator is not None:
            for tier in RetentionTier.scheduled():
                actions[tier.value] = self._create_action(tier)
        else:
            logger.warning("No snapshot creator configured; creation triggers disabled")

        actions["cleanup"] = self.retention_manager.run_cleanup
        actions["stats"] = self.log_stats
        return actions

    def _run_trigger(self, name: str, action: Callable[[], Any]) -> Any:
        """Run one firing. Never raises."""
        try:
            with log_operation(f"trigger_{name}", level=logging.INFO):
                return action()
        except Exception:
            # Already logged with traceback by log_operation
            return None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> bool:
        """
        Register all triggers and start the scheduler.

        Returns False (and registers nothing) when snapshots are disabled.
        """
        if not self.enabled:
            logger.warning("Snapshot service is disabled (SNAPSHOT_ENABLED=false); no triggers registered")
            return False

        if self._started:
            return True

        schedules = self.settings.schedules
        for name, action in self.build_actions().items():
            expression = schedules[name]
            self.scheduler.add_job(
                self._run_trigger,
                trigger=crontab_trigger(expression, self.timezone),
                args=[name, action],
                id=name,
                name=name,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=self.settings.MISFIRE_GRACE_SECONDS,
                replace_existing=True,
            )
            self._registered.append(name)
            logger.info(f"Scheduled {name} trigger: {expression}", extra={"trigger": name})

        self.scheduler.start()
        self._started = True
        logger.info(
            f"Scheduler started with {len(self._registered)} triggers ({self.settings.TZ})",
            extra={"event": "scheduler_started"},
        )
        return True

    def shutdown(self, wait: bool = True) -> None:
        """Stop new firings; with wait=True block until in-flight actions finish."""
        if not self._started:
            return
        self.scheduler.shutdown(wait=wait)
        self._started = False
        logger.info("Scheduler stopped", extra={"event": "scheduler_stopped"})
