"""
RewardScheduler -- in-process cron trigger for the reward distributor.

Contract:
    Polls the clock on a fixed interval and calls ``RewardDistributor.run``
    whenever the next cron match has passed.  The scheduler keeps only the
    next fire time; idempotency lives entirely in the distributor.

Architecture: rewards_batch/services.  Uses rewards_batch.domain.schedule
    for pure cron evaluation.

Invariants enforced:
    - All timestamps from the injected Clock.
    - Graceful shutdown: the stop event is shared with the running
      distribution, which stops between enrollments and records CANCELLED.
    - A tick never raises; failures are logged and the next fire time is
      still advanced.
"""

from __future__ import annotations

import threading
from datetime import datetime, tzinfo

from rewards_kernel.domain.clock import Clock, SystemClock
from rewards_kernel.logging_config import get_logger

from rewards_batch.domain.calendar import resolve_time_zone
from rewards_batch.domain.schedule import next_fire_time, parse_cron
from rewards_batch.domain.types import DistributionRunResult
from rewards_batch.services.distributor import RewardDistributor

logger = get_logger("batch.scheduler")

DEFAULT_CRON = "0 0 * * 1-5"


class RewardScheduler:
    """Polling scheduler for the reward distribution job.

    Contract:
        - ``tick()`` fires the distributor if the next cron time has passed.
        - ``run_now()`` is the manual trigger; same entry point.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler; replicas racing the same minute are
          resolved by the distributor's claim.
        - Missed fire times (process down) are not replayed one by one; the
          next tick fires once and moves on.
    """

    def __init__(
        self,
        distributor: RewardDistributor,
        cron_expression: str = DEFAULT_CRON,
        time_zone: str | tzinfo = "Asia/Kolkata",
        clock: Clock | None = None,
        tick_interval_seconds: float = 30.0,
        run_on_start: bool = False,
    ):
        self._distributor = distributor
        self._spec = parse_cron(cron_expression)
        self._tz = resolve_time_zone(time_zone) if isinstance(time_zone, str) else time_zone
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._run_on_start = run_on_start
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._next_fire_at = next_fire_time(self._spec, self._clock.now(), self._tz)
        self._last_result: DistributionRunResult | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def next_fire_at(self) -> datetime:
        return self._next_fire_at

    @property
    def last_result(self) -> DistributionRunResult | None:
        return self._last_result

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def tick(self) -> DistributionRunResult | None:
        """Fire if due (public for testing).

        Returns the run result when the distributor was invoked, else None.
        """
        now = self._clock.now()
        if now < self._next_fire_at:
            return None

        fired_for = self._next_fire_at
        self._next_fire_at = next_fire_time(self._spec, now, self._tz)
        logger.info(
            "schedule_fired",
            extra={
                "cron": self._spec.expression,
                "scheduled_for": fired_for.isoformat(),
                "next_fire_at": self._next_fire_at.isoformat(),
            },
        )
        return self.run_now()

    def run_now(self) -> DistributionRunResult | None:
        """Invoke the distributor immediately."""
        try:
            result = self._distributor.run(stop_event=self._stop_event)
        except Exception:
            logger.exception("scheduled_run_raised")
            return None
        self._last_result = result
        logger.info(
            "scheduled_run_finished",
            extra={
                "outcome": result.outcome.value,
                "execution_date": result.execution_date.isoformat(),
            },
        )
        return result

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="reward-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "scheduler_started",
            extra={
                "cron": self._spec.expression,
                "tick_interval": self._tick_interval,
                "next_fire_at": self._next_fire_at.isoformat(),
            },
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the loop (and any in-flight run) to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def wait(self) -> None:
        """Block until ``stop()`` is called from another thread or a signal handler."""
        while self.is_running:
            self._thread.join(timeout=1.0)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        if self._run_on_start and not self._stop_event.is_set():
            self.run_now()
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)
