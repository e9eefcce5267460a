"""Periodic sync with exponential backoff.

``WatchLoop`` runs one full sync cycle at a time; a cycle completes before
the next wait starts, so cycles never overlap.  Between cycles it waits
either the configured interval or, after repeated failures or a rate-limit
signal, a backoff delay from an explicit ``BackoffPolicy``.  A rate-limit
backoff is never shorter than the server's ``Retry-After`` hint.

The wait is injectable (``sleep``) and defaults to ``Event.wait`` on the
loop's stop event, so ``stop()`` interrupts a pending wait immediately.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from ..errors import (
    RateLimitError,
    SyncError,
    ValidationError,
    is_rate_limit_message,
)
from .models import SyncReport

logger = logging.getLogger(__name__)

CONSECUTIVE_ERROR_THRESHOLD = 3

_INTERVAL_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smh]?)\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600}


def parse_interval(value: str | int | float) -> float:
    """Parse ``"60s"``, ``"5m"``, ``"1h"`` (or bare seconds) into seconds.

    Raises:
        ValidationError: If the value is malformed or not positive.
    """
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        match = _INTERVAL_RE.match(value)
        if match is None:
            raise ValidationError(
                f"Invalid interval '{value}': use a number with an optional "
                "s/m/h suffix, e.g. 60s, 5m, 1h"
            )
        seconds = float(match.group(1)) * _UNIT_SECONDS[
            match.group(2).lower()
        ]
    if seconds <= 0:
        raise ValidationError(f"Invalid interval '{value}': must be positive")
    return seconds


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff: ``min(base * 2**attempt, max_delay)`` seconds."""

    base: float = 5.0
    max_delay: float = 300.0

    def delay(self, attempt: int) -> float:
        return min(self.base * (2 ** max(attempt, 0)), self.max_delay)


@dataclass
class WatchStats:
    """Counters accumulated over a watch session."""

    cycles: int = 0
    failed_cycles: int = 0
    consecutive_errors: int = 0
    backoff_attempt: int = 0
    total_synced: int = 0
    total_conflicts: int = 0
    total_failed: int = 0
    total_skipped: int = 0
    delays: list[float] = field(default_factory=list)
    started_at: float | None = None
    stopped_at: float | None = None

    @property
    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.stopped_at if self.stopped_at is not None else self.started_at
        return max(end - self.started_at, 0.0)

    def record(self, report: SyncReport | None) -> bool:
        """Add one cycle; return ``True`` if the cycle had a failure.

        ``None`` stands for a cycle that raised before producing a report.
        """
        self.cycles += 1
        failed = report is None or not report.success
        if report is not None:
            self.total_synced += len(report.synced)
            self.total_conflicts += len(report.conflicts)
            self.total_failed += len(report.failed)
            self.total_skipped += len(report.skipped)
        if failed:
            self.failed_cycles += 1
            self.consecutive_errors += 1
        else:
            self.consecutive_errors = 0
        return failed


class WatchLoop:
    """Run *run_cycle* repeatedly until stopped.

    Args:
        run_cycle: Runs one full sync and returns its report.
        interval: Seconds between cycles when nothing is wrong.
        stop_on_error: Stop after the first cycle with any failure.
        error_backoff: Policy used after repeated failing cycles.
        rate_limit_backoff: Policy used after a rate-limit signal.
        sleep: Wait function; defaults to waiting on the stop event.
        clock: Monotonic clock used for the session duration.
        max_cycles: Stop after this many cycles (``None`` = unbounded).
    """

    def __init__(
        self,
        run_cycle: Callable[[], SyncReport],
        interval: float,
        *,
        stop_on_error: bool = False,
        error_backoff: BackoffPolicy | None = None,
        rate_limit_backoff: BackoffPolicy | None = None,
        sleep: Callable[[float], object] | None = None,
        clock: Callable[[], float] = time.monotonic,
        max_cycles: int | None = None,
    ) -> None:
        if interval <= 0:
            raise ValidationError(
                f"Invalid interval {interval}: must be positive"
            )
        self.run_cycle = run_cycle
        self.interval = interval
        self.stop_on_error = stop_on_error
        self.error_backoff = error_backoff or BackoffPolicy(5.0, 300.0)
        self.rate_limit_backoff = rate_limit_backoff or BackoffPolicy(
            30.0, 300.0
        )
        self._stop_event = threading.Event()
        self._sleep = sleep or self._stop_event.wait
        self._clock = clock
        self.max_cycles = max_cycles
        self.stats = WatchStats()

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set()

    def stop(self) -> None:
        """Request a graceful stop; checked between cycles."""
        self._stop_event.set()

    def next_delay(
        self,
        cycle_failed: bool,
        rate_limited: bool,
        retry_after: float | None = None,
    ) -> float:
        """Pick the wait before the next cycle and advance the backoff.

        A server-suggested *retry_after* is a lower bound on the
        rate-limit delay.
        """
        stats = self.stats
        if rate_limited:
            delay = self.rate_limit_backoff.delay(stats.backoff_attempt)
            if retry_after is not None:
                delay = max(delay, retry_after)
            stats.backoff_attempt += 1
            logger.warning(
                "Rate limit detected, backing off %.0fs (attempt %d)",
                delay,
                stats.backoff_attempt,
            )
        elif (
            cycle_failed
            and stats.consecutive_errors >= CONSECUTIVE_ERROR_THRESHOLD
        ):
            delay = self.error_backoff.delay(stats.backoff_attempt)
            stats.backoff_attempt += 1
            logger.warning(
                "%d consecutive failing cycles, backing off %.0fs",
                stats.consecutive_errors,
                delay,
            )
        else:
            if not cycle_failed:
                stats.backoff_attempt = 0
            delay = self.interval
        stats.delays.append(delay)
        return delay

    def run(self) -> WatchStats:
        """Loop until stopped, interrupted, or (optionally) a failure.

        Raises:
            ValidationError: A configuration error inside a cycle is fatal.
        """
        stats = self.stats
        stats.started_at = self._clock()
        logger.info("Watching every %.0fs", self.interval)
        try:
            while self.running:
                report, rate_limited, retry_after = self._run_one()
                failed = stats.record(report)
                if report is not None:
                    rate_limited = rate_limited or report.rate_limited
                    retry_after = report.retry_after
                    logger.info(
                        "Cycle %d: %d synced, %d conflicts, %d failed, "
                        "%d skipped",
                        stats.cycles,
                        len(report.synced),
                        len(report.conflicts),
                        len(report.failed),
                        len(report.skipped),
                    )

                if failed and self.stop_on_error:
                    logger.error(
                        "Stopping after failing cycle %d", stats.cycles
                    )
                    break
                if self.max_cycles is not None and (
                    stats.cycles >= self.max_cycles
                ):
                    break

                delay = self.next_delay(failed, rate_limited, retry_after)
                if not self.running:
                    break
                self._sleep(delay)
        except KeyboardInterrupt:
            logger.info("Watch interrupted")
        finally:
            self._stop_event.set()
            stats.stopped_at = self._clock()
        logger.info(
            "Watch stopped after %d cycle(s): %d synced, %d conflicts, "
            "%d failed",
            stats.cycles,
            stats.total_synced,
            stats.total_conflicts,
            stats.total_failed,
        )
        return stats

    def _run_one(self) -> tuple[SyncReport | None, bool, float | None]:
        """Run a cycle; return ``(report, rate_limited, retry_after)``."""
        try:
            return self.run_cycle(), False, None
        except ValidationError:
            raise
        except SyncError as exc:
            logger.error("Cycle %d failed: %s", self.stats.cycles + 1, exc)
            if isinstance(exc, RateLimitError):
                return None, True, exc.retry_after
            return None, is_rate_limit_message(str(exc)), None
