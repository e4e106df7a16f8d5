"""
The recurring notice job.

NoticeTask owns the invocation counter and writes one notice line per
trigger. The scheduler calls ``on_trigger``; nothing else touches the
counter.
"""

import logging
import threading
import time
from typing import Callable, Optional

from notice_scheduler.config import NoticeConfig
from notice_scheduler.errors import ContractViolation

logger = logging.getLogger(__name__)

Sink = Callable[[str], None]
Clock = Callable[[], int]


def epoch_millis() -> int:
    """Current wall-clock time in milliseconds since the Unix epoch."""
    return time.time_ns() // 1_000_000


def print_line(line: str):
    print(line, flush=True)


def format_notice(config: NoticeConfig, count: int, timestamp_ms: int) -> str:
    """Render ``<name>说：<message>:定时任务执行了<count>次<epoch-ms>``."""
    return f"{config.name}说：{config.message}:定时任务执行了{count}次{timestamp_ms}"


class NoticeTask:
    """
    Prints a formatted notice each time it is triggered, counting invocations.

    Calls to ``on_trigger`` are serialised, so concurrent callers each get
    their own increment and their own line.
    """

    def __init__(
        self,
        config: NoticeConfig,
        sink: Optional[Sink] = None,
        clock: Optional[Clock] = None
    ):
        """
        Initialize the notice task.

        Args:
            config: Loaded notice configuration (required)
            sink: Receives each output line (default: print to stdout)
            clock: Returns epoch milliseconds (default: wall clock)

        Raises:
            ContractViolation: If config is None
        """
        if config is None:
            raise ContractViolation("NoticeTask requires a loaded NoticeConfig")

        self._config = config
        self._sink = sink or print_line
        self._clock = clock or epoch_millis
        self._count = 0
        self._lock = threading.Lock()

    @property
    def config(self) -> NoticeConfig:
        return self._config

    @property
    def count(self) -> int:
        """Number of triggers handled so far."""
        return self._count

    def on_trigger(self) -> str:
        """
        Handle one trigger: increment the counter and write one notice line.

        Returns:
            The line that was written

        Raises:
            ContractViolation: If the configuration is gone at trigger time
        """
        with self._lock:
            config = self._config
            if config is None:
                raise ContractViolation("Notice triggered without a configuration")

            self._count += 1
            count = self._count
            line = format_notice(config, count, self._clock())
            self._sink(line)

        logger.debug(f"Notice '{config.name}' handled trigger #{count}")
        return line

    def __repr__(self):
        return f"NoticeTask(name={self._config.name!r}, count={self._count})"
