"""
Schedule translation.

A job schedule is either a standard 5-field cron expression or a duration
shorthand such as ``15m``, ``6h``, ``1d`` or ``1w``. Shorthand is normalized
into an equivalent cron expression first, so both forms are evaluated by the
same croniter engine.

Translation is pure: computing "what runs next" for reporting never touches
scheduler state.
"""
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterator, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from backup_scheduler.errors import InvalidScheduleError

_SHORTHAND = re.compile(r"^\s*(\d+)\s*([mhdw])\s*$")
_DURATION_TOKEN = re.compile(r"(\d+)([smhdw])")

_UNIT_MINUTES = {"m": 1, "h": 60, "d": 24 * 60, "w": 7 * 24 * 60}
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 7 * 86400}


def parse_duration(text: str) -> timedelta:
    """
    Parse durations such as ``90s``, ``30m``, ``1h30m``, ``2d`` or ``1w``.

    Raises:
        ValueError: If the text is empty or contains anything but
            ``<count><unit>`` tokens.
    """
    compact = text.strip().replace(" ", "") if isinstance(text, str) else ""
    if not compact:
        raise ValueError(f"Invalid duration: {text!r}")

    position = 0
    seconds = 0
    for match in _DURATION_TOKEN.finditer(compact):
        if match.start() != position:
            raise ValueError(f"Invalid duration: {text!r}")
        seconds += int(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()
    if position != len(compact):
        raise ValueError(f"Invalid duration: {text!r}")
    return timedelta(seconds=seconds)


def shorthand_to_cron(expression: str) -> str:
    """
    Normalize a ``<count><unit>`` shorthand into a cron expression.

    Sub-hourly periods become minute steps, whole hours become hour steps
    and whole days fire at midnight. One week fires on Sunday at midnight.
    """
    match = _SHORTHAND.match(expression)
    if not match:
        raise InvalidScheduleError(f"Invalid schedule shorthand: '{expression}'")

    count, unit = int(match.group(1)), match.group(2)
    if count <= 0:
        raise InvalidScheduleError(f"Schedule period must be positive: '{expression}'")

    minutes = count * _UNIT_MINUTES[unit]
    if minutes < 60:
        return f"*/{minutes} * * * *"
    if minutes % 60:
        raise InvalidScheduleError(f"Schedule period must be a whole number of hours: '{expression}'")

    hours = minutes // 60
    if hours == 1:
        return "0 * * * *"
    if hours < 24:
        return f"0 */{hours} * * *"
    if hours % 24:
        raise InvalidScheduleError(f"Schedule period must be a whole number of days: '{expression}'")

    days = hours // 24
    if days == 1:
        return "0 0 * * *"
    if days == 7:
        return "0 0 * * 0"
    if days <= 31:
        return f"0 0 */{days} * *"
    raise InvalidScheduleError(f"Schedule period is too long: '{expression}'")


def is_cron_expression(expression: str) -> bool:
    fields = expression.split()
    return len(fields) == 5 and croniter.is_valid(expression)


def load_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidScheduleError(f"Unknown timezone '{name}'") from e


@dataclass(frozen=True)
class Schedule:
    """
    Deterministic next-fire-time function for one job.

    Around daylight-saving transitions a skipped wall-clock instant does not
    fire that day and a repeated one fires once, as resolved by croniter.
    """
    expression: str
    cron: str
    tz: ZoneInfo = field(default_factory=lambda: ZoneInfo("UTC"))

    def next_fire(self, now: datetime) -> datetime:
        """
        Return the first fire time at or after ``now``, in the schedule's timezone.
        """
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        local = now.astimezone(self.tz)
        if local.second == 0 and local.microsecond == 0 and croniter.match(self.cron, local):
            return local
        return croniter(self.cron, local).get_next(datetime)

    __call__ = next_fire

    def iter_fire_times(self, start: datetime) -> Iterator[datetime]:
        current = self.next_fire(start)
        while True:
            yield current
            current = self.next_fire(current + timedelta(seconds=1))

    def upcoming(self, start: datetime, count: int = 3) -> List[datetime]:
        times = self.iter_fire_times(start)
        return [next(times) for _ in range(count)]

    def format_schedule(self) -> str:
        if self.expression.strip() == self.cron:
            return f"cron '{self.cron}' ({self.tz.key})"
        return f"every {self.expression.strip()} as cron '{self.cron}' ({self.tz.key})"


def translate(expression: str, tz: str = "UTC") -> Schedule:
    """
    Translate a schedule expression into a :class:`Schedule`.

    Args:
        expression (str): 5-field cron expression or duration shorthand.
        tz (str): IANA timezone the cron fields are interpreted in.

    Raises:
        InvalidScheduleError: If the expression matches neither grammar or
            the timezone is unknown.
    """
    if not isinstance(expression, str) or not expression.strip():
        raise InvalidScheduleError("Schedule expression is empty")

    zone = load_timezone(tz)
    text = expression.strip()
    if _SHORTHAND.match(text):
        cron = shorthand_to_cron(text)
    elif len(text.split()) == 6:
        raise InvalidScheduleError(f"Unsupported cron expression with seconds: '{text}'")
    elif is_cron_expression(text):
        cron = " ".join(text.split())
    else:
        raise InvalidScheduleError(f"Invalid schedule expression: '{text}'")
    return Schedule(expression=text, cron=cron, tz=zone)
