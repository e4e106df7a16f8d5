"""
Scheduler service using APScheduler.

Registers the notice callback under a cron trigger and runs it on a single
worker thread:
- One job per service (Idle -> Scheduled, exactly once)
- Overlapping runs are skipped and logged as overruns
- Job event logging
- Graceful shutdown on SIGINT/SIGTERM in foreground mode
"""

import logging
import signal
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional, Tuple

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.events import (
    EVENT_JOB_EXECUTED,
    EVENT_JOB_ERROR,
    EVENT_JOB_MISSED,
    EVENT_JOB_MAX_INSTANCES,
    EVENT_JOB_ADDED,
    EVENT_JOB_REMOVED
)
from apscheduler.job import Job

from notice_scheduler.config import CronSchedule, load, parse_cron
from notice_scheduler.errors import ContractViolation
from notice_scheduler.jobs import NoticeTask, Sink

logger = logging.getLogger(__name__)


class TaskState(Enum):
    """Lifecycle of the scheduled notice."""
    IDLE = "idle"
    SCHEDULED = "scheduled"


class SchedulerService:
    """
    Runs a single callback on a cron schedule.

    Uses APScheduler with one worker thread and ``max_instances=1``, so the
    callback never runs concurrently with itself.
    """

    DEFAULT_JOB_ID = "notice"

    def __init__(
        self,
        foreground: bool = False,
        timezone: Optional[Any] = None,
        misfire_grace_time: int = 30
    ):
        """
        Initialize scheduler service.

        Args:
            foreground: If True, use blocking scheduler (for foreground mode)
            timezone: Timezone for cron evaluation (default: local timezone)
            misfire_grace_time: Seconds a late run may still start
        """
        self.foreground = foreground
        self.timezone = timezone
        self._job: Optional[Job] = None
        self._schedule: Optional[CronSchedule] = None

        executors = {
            'default': ThreadPoolExecutor(1)
        }

        job_defaults = {
            'coalesce': True,  # Combine multiple missed runs into one
            'max_instances': 1,  # Skip a fire time while the previous run is active
            'misfire_grace_time': misfire_grace_time
        }

        scheduler_kwargs = {
            'executors': executors,
            'job_defaults': job_defaults
        }
        if timezone is not None:
            scheduler_kwargs['timezone'] = timezone

        if foreground:
            self.scheduler = BlockingScheduler(**scheduler_kwargs)
        else:
            self.scheduler = BackgroundScheduler(**scheduler_kwargs)

        self._setup_event_listeners()

    def _setup_event_listeners(self):
        """Setup APScheduler event listeners for logging."""

        def job_executed_listener(event):
            logger.debug(f"Job '{event.job_id}' executed successfully")

        def job_error_listener(event):
            logger.error(
                f"Job '{event.job_id}' raised exception: {event.exception!r}\n"
                f"{event.traceback or ''}"
            )

        def job_missed_listener(event):
            logger.warning(f"Job '{event.job_id}' missed scheduled run time")

        def job_max_instances_listener(event):
            run_times = ", ".join(str(t) for t in event.scheduled_run_times)
            logger.warning(
                f"Job '{event.job_id}' overrun: previous run still active, "
                f"skipped run at {run_times}"
            )

        def job_added_listener(event):
            logger.info(f"Job '{event.job_id}' added to scheduler")

        def job_removed_listener(event):
            logger.info(f"Job '{event.job_id}' removed from scheduler")

        self.scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)
        self.scheduler.add_listener(job_missed_listener, EVENT_JOB_MISSED)
        self.scheduler.add_listener(job_max_instances_listener, EVENT_JOB_MAX_INSTANCES)
        self.scheduler.add_listener(job_added_listener, EVENT_JOB_ADDED)
        self.scheduler.add_listener(job_removed_listener, EVENT_JOB_REMOVED)

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""

        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, shutting down...")
            self.stop(wait=False)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    @property
    def state(self) -> TaskState:
        return TaskState.SCHEDULED if self._job is not None else TaskState.IDLE

    @property
    def job(self) -> Optional[Job]:
        return self._job

    def register(
        self,
        cron_expression: str,
        callback: Callable[[], Any],
        job_id: str = DEFAULT_JOB_ID
    ) -> Job:
        """
        Register the callback under a cron expression.

        Args:
            cron_expression: Five- or six-field cron expression
            callback: Called with no arguments at each fire time
            job_id: Scheduler job ID

        Returns:
            The APScheduler job

        Raises:
            ConfigurationError: If the cron expression is invalid
            ContractViolation: If a job is already registered
        """
        if self._job is not None:
            raise ContractViolation(f"Job '{self._job.id}' is already scheduled")

        schedule = parse_cron(cron_expression, timezone=self.timezone)
        self._job = self.scheduler.add_job(
            callback,
            schedule.trigger,
            id=job_id,
            name=job_id,
            replace_existing=True
        )
        self._schedule = schedule

        logger.info(f"Registered job '{job_id}' with cron '{cron_expression}'")
        return self._job

    def next_fire_times(self, count: int = 5, now: Optional[datetime] = None) -> List[datetime]:
        """Upcoming fire times of the registered job."""
        if self._schedule is None:
            raise ContractViolation("No job registered")
        return self._schedule.next_fire_times(count, now)

    def start(self):
        """
        Start the scheduler.

        In foreground mode this blocks until the scheduler is stopped.
        """
        if self._job is None:
            raise ContractViolation("Register a job before starting the scheduler")

        if self.scheduler.running:
            logger.warning("Scheduler is already running")
            return

        logger.info("Starting scheduler...")
        if self.foreground:
            self._setup_signal_handlers()
            logger.info("Running in foreground mode. Press Ctrl+C to stop.")

        self.scheduler.start()

        if not self.foreground:
            job = self.scheduler.get_job(self._job.id)
            logger.info(f"Scheduler started, next run at {job.next_run_time if job else None}")

    def stop(self, wait: bool = True):
        """
        Stop the scheduler.

        Args:
            wait: If True, wait for running jobs to complete
        """
        if self.scheduler.running:
            logger.info("Stopping scheduler...")
            self.scheduler.shutdown(wait=wait)
            logger.info("Scheduler stopped")
        else:
            logger.warning("Scheduler is not running")

    def is_running(self) -> bool:
        return self.scheduler.running


def bootstrap(
    source: Mapping[str, Any],
    sink: Optional[Sink] = None,
    foreground: bool = False,
    timezone: Optional[Any] = None
) -> Tuple[NoticeTask, SchedulerService]:
    """
    Wire the notice job: load configuration, build the task, register it.

    Args:
        source: Key-value configuration
        sink: Output sink for the task (default: stdout)
        foreground: Use a blocking scheduler
        timezone: Timezone for cron evaluation

    Returns:
        Tuple of (task, service); the service is registered but not started

    Raises:
        ConfigurationError: If the configuration is invalid. No task is
            constructed in that case.
    """
    config = load(source)
    task = NoticeTask(config, sink=sink)

    service = SchedulerService(foreground=foreground, timezone=timezone)
    service.register(config.cron, task.on_trigger)
    return task, service
