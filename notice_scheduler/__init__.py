"""
Notice Scheduler

Prints a configured notice on a cron schedule using APScheduler,
counting how many times it has run.

Features:
- Validated configuration (name, message, cron) under ``xyc.config``
- Five- and six-field cron expressions with standard weekday numbering
- Non-overlapping execution on a single worker thread
- Job event logging
"""

from notice_scheduler.config import NoticeConfig, CronSchedule, load, parse_cron
from notice_scheduler.errors import ConfigurationError, ContractViolation, NoticeSchedulerError
from notice_scheduler.jobs import NoticeTask, format_notice
from notice_scheduler.service import SchedulerService, TaskState, bootstrap

__version__ = "0.1.0"
__all__ = [
    "NoticeConfig",
    "CronSchedule",
    "load",
    "parse_cron",
    "ConfigurationError",
    "ContractViolation",
    "NoticeSchedulerError",
    "NoticeTask",
    "format_notice",
    "SchedulerService",
    "TaskState",
    "bootstrap",
]
