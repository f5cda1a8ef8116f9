"""Scheduling orchestration for timelapse generation passes."""

from __future__ import annotations

import logging
import re
import threading
from time import perf_counter
from typing import Any, Iterable, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from timelapse_stream.config import ConfigError
from timelapse_stream.encoder import EncoderError
from timelapse_stream.models import CaptureGroup, GenerationResult

CRON_FIELDS = ("second", "minute", "hour", "day", "month", "day_of_week")

# Cron counts weekdays from Sunday (0 and 7); APScheduler counts from Monday.
DAY_OF_WEEK_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")

DESCRIPTORS = {
    "@yearly": {"second": "0", "minute": "0", "hour": "0", "day": "1", "month": "1"},
    "@annually": {"second": "0", "minute": "0", "hour": "0", "day": "1", "month": "1"},
    "@monthly": {"second": "0", "minute": "0", "hour": "0", "day": "1"},
    "@weekly": {"second": "0", "minute": "0", "hour": "0", "day_of_week": "sun"},
    "@daily": {"second": "0", "minute": "0", "hour": "0"},
    "@midnight": {"second": "0", "minute": "0", "hour": "0"},
    "@hourly": {"second": "0", "minute": "0"},
}

DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def _parse_duration(value: str) -> float:
    """Parse durations such as ``90s``, ``1h30m`` or ``500ms`` into seconds."""
    text = value.strip()
    parts = DURATION_PART.findall(text)
    if not text or "".join(number + unit for number, unit in parts) != text:
        raise ConfigError(f"Invalid duration: {value!r}")
    return sum(float(number) * DURATION_UNITS[unit] for number, unit in parts)


def _weekday_number(token: str) -> int:
    text = token.strip().lower()
    if text.isdigit():
        number = int(text)
    else:
        number = DAY_OF_WEEK_NAMES.index(text) if text in DAY_OF_WEEK_NAMES else -1
    if not 0 <= number < len(DAY_OF_WEEK_NAMES):
        raise ConfigError(f"Invalid day of week: {token!r}")
    return number


def _translate_day_of_week(field: str) -> str:
    """Expand a cron weekday field into an explicit list of day names.

    Ranges and steps are evaluated in cron numbering, so ``*/2`` means
    Sunday, Tuesday, Thursday and Saturday and ``0-6`` means every day.
    """
    if field in {"*", "?"}:
        return "*"

    days = set()
    for part in field.split(","):
        base, slash, step_text = part.partition("/")
        step = 1
        if slash:
            if not step_text.isdigit() or int(step_text) == 0:
                raise ConfigError(f"Invalid day of week step: {part!r}")
            step = int(step_text)

        if base in {"*", "?"}:
            first, last = 0, 6
        elif "-" in base:
            start, _, end = base.partition("-")
            first, last = _weekday_number(start), _weekday_number(end)
        else:
            first = _weekday_number(base)
            last = max(first, 6) if slash else first
        if first > last:
            raise ConfigError(f"Invalid day of week range: {part!r}")
        days.update(number % 7 for number in range(first, last + 1, step))

    return ",".join(DAY_OF_WEEK_NAMES[number] for number in sorted(days))


def parse_cron_spec(spec: str) -> BaseTrigger:
    """Build an APScheduler trigger from a six-field, seconds-first cron spec.

    Descriptors (``@hourly``, ``@daily``, ``@every 5m`` and friends) are accepted too.
    """
    text = spec.strip()
    if text.startswith("@every "):
        seconds = _parse_duration(text[len("@every "):])
        if seconds <= 0:
            raise ConfigError(f"Interval must be positive: {spec!r}")
        return IntervalTrigger(seconds=seconds)

    if text.startswith("@"):
        fields = DESCRIPTORS.get(text.lower())
        if fields is None:
            raise ConfigError(f"Unknown cron descriptor: {spec!r}")
        return CronTrigger(**fields)

    values = text.split()
    if len(values) != len(CRON_FIELDS):
        raise ConfigError(
            f"Cron spec must have {len(CRON_FIELDS)} fields "
            f"({' '.join(CRON_FIELDS)}), got {len(values)}: {spec!r}"
        )

    fields = dict(zip(CRON_FIELDS, values))
    fields["day"] = "*" if fields["day"] == "?" else fields["day"]
    fields["day_of_week"] = _translate_day_of_week(fields["day_of_week"])
    try:
        return CronTrigger(**fields)
    except ValueError as exc:
        raise ConfigError(f"Invalid cron spec {spec!r}: {exc}") from exc


def _format_duration(seconds: float) -> str:
    """Return a compact human-readable duration string."""
    total_seconds = int(round(seconds))
    if total_seconds <= 0:
        return "<1s"
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds_remaining = divmod(remainder, 60)
    if hours:
        return f"{hours}h{minutes:02d}m{seconds_remaining:02d}s"
    if minutes:
        return f"{minutes}m{seconds_remaining:02d}s"
    return f"{seconds_remaining}s"


class GenerationScheduler:
    """Run generation passes on startup and on a cron schedule, one at a time.

    Every pass, whichever trigger started it, holds ``lock`` for its whole
    duration. A trigger arriving mid-pass waits for the lock and then runs.
    """

    def __init__(
        self,
        groups: Iterable[CaptureGroup],
        pipeline: Any,
        cron_spec: str,
        *,
        lock: Optional[Any] = None,
        logger: Optional[logging.Logger] = None,
        scheduler: Optional[Any] = None,
    ) -> None:
        self.groups = tuple(groups)
        self.pipeline = pipeline
        self.cron_spec = cron_spec
        self.trigger = parse_cron_spec(cron_spec)
        self.lock = lock if lock is not None else threading.Lock()
        self.logger = logger or logging.getLogger(__name__)
        self.scheduler = scheduler if scheduler is not None else BackgroundScheduler()
        self.startup_thread: Optional[threading.Thread] = None

    def run_pass(self, reason: str = "manual") -> List[GenerationResult]:
        """Generate videos for every capture group in configuration order."""
        results: List[GenerationResult] = []
        with self.lock:
            started = perf_counter()
            self.logger.info(
                "Generation pass (%s) started for %s capture groups",
                reason,
                len(self.groups),
            )
            for group in self.groups:
                try:
                    results.extend(self.pipeline.generate(group))
                except EncoderError as exc:
                    self.logger.error(
                        "Generation pass (%s) aborted at '%s': %s",
                        reason,
                        group.name,
                        exc,
                    )
                    break
                except Exception:
                    self.logger.exception("Unexpected error generating videos for '%s'", group.name)

            published = sum(1 for result in results if result.published)
            self.logger.info(
                "Generation pass (%s) finished in %s: %s/%s videos published",
                reason,
                _format_duration(perf_counter() - started),
                published,
                len(results),
            )
        return results

    def start(self, *, run_on_startup: bool = True) -> None:
        """Fire the startup pass in the background and begin the cron schedule."""
        if run_on_startup:
            self.startup_thread = threading.Thread(
                target=self.run_pass,
                kwargs={"reason": "startup"},
                name="startup-generation",
                daemon=True,
            )
            self.startup_thread.start()

        job = self.scheduler.add_job(
            self.run_pass,
            trigger=self.trigger,
            kwargs={"reason": "cron"},
            id="generate_videos",
            name="Generate Videos",
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self.logger.info(
            "Generation scheduled with '%s', next run at %s",
            self.cron_spec,
            getattr(job, "next_run_time", None),
        )

    def shutdown(self, wait: bool = False) -> None:
        if getattr(self.scheduler, "running", False):
            self.scheduler.shutdown(wait=wait)
            self.logger.info("Generation scheduler stopped")


__all__ = ["GenerationScheduler", "parse_cron_spec"]
