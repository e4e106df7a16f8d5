"""
Notice configuration management.

Handles loading and validating the three values the notice job needs:
a display name, the message text and the cron expression that drives it.
All values live under the ``xyc.config`` namespace of a flat key-value
mapping. Helpers build such a mapping from the environment or a JSON file.
"""

import collections.abc
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Dict, List, Any, Mapping

from apscheduler.triggers.cron import CronTrigger

from notice_scheduler.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "xyc.config"
REQUIRED_KEYS = ("name", "message", "cron")

# APScheduler field order for a six-field expression
CRON_FIELDS = ("second", "minute", "hour", "day", "month", "day_of_week")

# Standard cron numbering: 0 (and 7) is Sunday
WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


@dataclass(frozen=True)
class NoticeConfig:
    """Read-only notice settings, loaded once at startup."""
    name: str
    message: str
    cron: str


@dataclass(frozen=True)
class CronSchedule:
    """
    A validated cron expression.

    Attributes:
        expression: The expression as given by the operator
        fields: Normalised APScheduler cron fields, keyed by field name
        trigger: CronTrigger built from ``fields``
    """
    expression: str
    fields: Dict[str, str]
    trigger: CronTrigger

    def next_fire_times(self, count: int = 5, now: Optional[datetime] = None) -> List[datetime]:
        """
        Compute upcoming fire times.

        Args:
            count: Number of fire times to compute
            now: Reference time (timezone-aware). Defaults to the current time
                 in the trigger's timezone.

        Returns:
            Up to ``count`` fire times in ascending order
        """
        if now is None:
            now = datetime.now(self.trigger.timezone)

        fire_times = []
        previous = None
        for _ in range(count):
            fire_time = self.trigger.get_next_fire_time(previous, now)
            if fire_time is None:
                break
            fire_times.append(fire_time)
            previous = fire_time
            now = fire_time + timedelta(microseconds=1)
        return fire_times


def parse_cron(expression: str, timezone: Optional[Any] = None) -> CronSchedule:
    """
    Parse a five- or six-field cron expression.

    Six fields are ``second minute hour day-of-month month day-of-week``.
    Five fields omit the seconds and fire at second 0.

    Args:
        expression: Cron expression (e.g. "0/5 * * * * *" or "0 2 * * MON-FRI")
        timezone: Timezone for the trigger (defaults to the local timezone)

    Returns:
        CronSchedule with a ready-to-register trigger

    Raises:
        ConfigurationError: If the expression is not valid cron syntax
    """
    if not isinstance(expression, str) or not expression.strip():
        raise ConfigurationError("Cron expression cannot be empty")

    parts = expression.split()
    if len(parts) == 5:
        parts = ["0"] + parts
    elif len(parts) != 6:
        raise ConfigurationError(
            f"Invalid cron expression '{expression}': expected 5 or 6 fields, got {len(parts)}"
        )

    fields = dict(zip(CRON_FIELDS, parts))
    if fields["day"] == "?":
        fields["day"] = "*"
    fields["month"] = fields["month"].lower()
    fields["day_of_week"] = _normalize_day_of_week(fields["day_of_week"], expression)

    try:
        trigger = CronTrigger(timezone=timezone, **fields)
    except ValueError as e:
        raise ConfigurationError(f"Invalid cron expression '{expression}': {e}") from e

    return CronSchedule(expression=expression, fields=fields, trigger=trigger)


def _normalize_day_of_week(field: str, expression: str) -> str:
    """
    Translate a standard cron day-of-week field into APScheduler weekday names.

    APScheduler numbers weekdays from Monday, standard cron from Sunday, so
    numeric fields are expanded to an explicit list of names.
    """
    if field in ("*", "?"):
        return "*"

    days = set()
    for part in field.split(","):
        days.update(_expand_weekday_part(part.lower(), expression))
    return ",".join(WEEKDAYS[day] for day in sorted(days))


def _expand_weekday_part(part: str, expression: str) -> List[int]:
    body, has_step, step_text = part.partition("/")
    step = 1
    if has_step:
        if not step_text.isdigit() or int(step_text) == 0:
            raise ConfigurationError(
                f"Invalid cron expression '{expression}': bad day-of-week step '{part}'"
            )
        step = int(step_text)

    if body in ("*", "?"):
        start, end = 0, 6
    elif "-" in body:
        first, last = body.split("-", 1)
        start = _weekday_number(first, expression)
        end = _weekday_number(last, expression)
        # FRI-SUN style ranges end on Sunday
        if end == 0 and start > 0:
            end = 7
        if start > end:
            raise ConfigurationError(
                f"Invalid cron expression '{expression}': day-of-week range '{body}' is reversed"
            )
    else:
        start = _weekday_number(body, expression)
        end = 6 if has_step else start

    return [day % 7 for day in range(start, end + 1, step)]


def _weekday_number(token: str, expression: str) -> int:
    if token.isdigit() and int(token) <= 7:
        return int(token)
    if token in WEEKDAYS:
        return WEEKDAYS.index(token)
    raise ConfigurationError(
        f"Invalid cron expression '{expression}': unknown day-of-week '{token}'"
    )


def flatten_mapping(source: Mapping[str, Any], parent: str = "") -> Dict[str, Any]:
    """Flatten nested mappings into dotted keys ({"a": {"b": 1}} -> {"a.b": 1})."""
    flat = {}
    for key, value in source.items():
        full_key = f"{parent}.{key}" if parent else str(key)
        if isinstance(value, collections.abc.Mapping):
            flat.update(flatten_mapping(value, full_key))
        else:
            flat[full_key] = value
    return flat


def load(source: Mapping[str, Any], prefix: str = DEFAULT_PREFIX) -> NoticeConfig:
    """
    Build a NoticeConfig from a key-value mapping.

    Reads ``<prefix>.name``, ``<prefix>.message`` and ``<prefix>.cron``.
    Nested mappings are accepted and flattened first.

    Args:
        source: Key-value configuration
        prefix: Namespace the three keys live under

    Returns:
        Populated NoticeConfig

    Raises:
        ConfigurationError: If a key is missing or empty, or the cron
            expression is malformed
    """
    flat = flatten_mapping(source)
    values = {}

    for field_name in REQUIRED_KEYS:
        key = f"{prefix}.{field_name}"
        if key not in flat or flat[key] is None:
            raise ConfigurationError(f"Missing required configuration key '{key}'", key=key)

        value = flat[key]
        if not isinstance(value, str):
            raise ConfigurationError(
                f"Configuration key '{key}' must be a string, got {type(value).__name__}",
                key=key
            )
        if not value.strip():
            raise ConfigurationError(f"Configuration key '{key}' cannot be empty", key=key)
        values[field_name] = value

    cron_key = f"{prefix}.cron"
    try:
        parse_cron(values["cron"])
    except ConfigurationError as e:
        raise ConfigurationError(f"{cron_key}: {e}", key=cron_key) from e

    config = NoticeConfig(**values)
    logger.debug(f"Loaded notice configuration: {config}")
    return config


def environ_source(
    environ: Optional[Mapping[str, str]] = None,
    prefix: str = DEFAULT_PREFIX
) -> Dict[str, str]:
    """
    Collect notice settings from environment variables.

    ``xyc.config.name`` is read from ``XYC_CONFIG_NAME`` and so on.

    Args:
        environ: Environment mapping (defaults to os.environ)
        prefix: Namespace of the keys

    Returns:
        Flat mapping with the dotted keys that were set
    """
    if environ is None:
        environ = os.environ

    values = {}
    for field_name in REQUIRED_KEYS:
        key = f"{prefix}.{field_name}"
        env_name = key.replace(".", "_").replace("-", "_").upper()
        if env_name in environ:
            values[key] = environ[env_name]
    return values


def file_source(path: str) -> Dict[str, Any]:
    """
    Load settings from a JSON file with nested or dotted keys.

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    config_path = Path(path).expanduser()
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to load config from {config_path}: {e}") from e

    if not isinstance(data, collections.abc.Mapping):
        raise ConfigurationError(f"Config file {config_path} must contain a JSON object")

    logger.info(f"Loaded configuration file {config_path}")
    return flatten_mapping(data)


def merge_sources(*sources: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Merge flat sources; later sources override earlier ones."""
    merged = {}
    for source in sources:
        if source:
            merged.update(flatten_mapping(source))
    return merged
