"""
RewardsOrchestrator -- DI container for the reward distribution job.

Contract:
    Builds the engine and session factory from configuration, registers
    the ledger immutability listeners, and creates wired
    RewardDistributor / RewardScheduler instances.  Single place where all
    job dependencies are composed.

Architecture: rewards_batch (top-level).  The only module that reads
    rewards_config objects; everything below receives plain arguments.

Invariants enforced:
    - Clock injection: the distributor and scheduler share one Clock.
    - The kernel never imports from rewards_batch (orchestrator lives here).
"""

from __future__ import annotations

from typing import Callable

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from rewards_kernel.db.engine import (
    create_engine_from_url,
    create_session_factory,
    create_tables,
)
from rewards_kernel.db.immutability import register_immutability_listeners
from rewards_kernel.domain.clock import Clock, SystemClock
from rewards_kernel.logging_config import get_logger

from rewards_batch.services.distributor import RewardDistributor
from rewards_batch.services.scheduler import RewardScheduler
from rewards_config.schema import RewardsConfig

logger = get_logger("batch.orchestrator")


class RewardsOrchestrator:
    """DI container for the reward distribution job.

    Contract:
        - ``from_config()`` creates an engine-backed orchestrator.
        - ``create_distributor()`` for manual runs.
        - ``create_scheduler()`` for the long-running trigger.

    Non-goals:
        - Does NOT start the scheduler automatically -- caller decides.
    """

    def __init__(
        self,
        config: RewardsConfig,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        engine: Engine | None = None,
    ) -> None:
        self._config = config
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._engine = engine
        register_immutability_listeners()

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: RewardsConfig,
        clock: Clock | None = None,
    ) -> RewardsOrchestrator:
        """Create the engine and session factory described by ``config``."""
        db = config.database
        engine = create_engine_from_url(
            db.url,
            echo=db.echo,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
            pool_recycle=db.pool_recycle,
        )
        return cls(
            config=config,
            session_factory=create_session_factory(engine),
            clock=clock,
            engine=engine,
        )

    # -------------------------------------------------------------------------
    # Components
    # -------------------------------------------------------------------------

    def create_distributor(self) -> RewardDistributor:
        dist = self._config.distribution
        return RewardDistributor(
            session_factory=self._session_factory,
            clock=self._clock,
            actor_id=dist.actor_id,
            job_name=dist.job_name,
            wallet_type=dist.wallet_type,
            time_zone=dist.time_zone,
            business_days=dist.business_days,
            max_run_seconds=dist.max_run_seconds,
        )

    def create_scheduler(self, run_on_start: bool | None = None) -> RewardScheduler:
        """
        Args:
            run_on_start: Overrides ``scheduler.run_on_start`` when not None.
        """
        sched = self._config.scheduler
        return RewardScheduler(
            distributor=self.create_distributor(),
            cron_expression=sched.cron_expression,
            time_zone=self._config.distribution.time_zone,
            clock=self._clock,
            tick_interval_seconds=sched.tick_interval_seconds,
            run_on_start=sched.run_on_start if run_on_start is None else run_on_start,
        )

    def init_db(self) -> None:
        """Create kernel and job tables."""
        if self._engine is None:
            raise RuntimeError("init_db requires an engine-backed orchestrator")
        import rewards_batch.models  # noqa: F401

        create_tables(self._engine)

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def config(self) -> RewardsConfig:
        return self._config

    @property
    def session_factory(self) -> Callable[[], Session]:
        return self._session_factory

    @property
    def clock(self) -> Clock:
        return self._clock
