"""
Background jobs

- Confirmation reaper: REAPER_INTERVAL_SECONDS 마다
- Wallet poller: CHAIN_POLL_ENABLED 이고 live 피드일 때 CHAIN_POLL_INTERVAL_SECONDS 마다
- Yield accrual: 매일 00:00 UTC
"""

import logging
from contextlib import contextmanager

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from fundingapi.containers import Container

logger = logging.getLogger(__name__)


class SettlementScheduler:
    def __init__(self, container: Container):
        self.container = container
        self.settings = container.config.config()
        self.scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,  # 밀린 실행은 한 번으로
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
            timezone="UTC",
        )

    @contextmanager
    def _session(self):
        db = self.container.infra.session_factory()()
        try:
            yield db
        finally:
            db.close()

    async def run_reaper(self):
        with self._session() as db:
            settlement_service = self.container.services.settlement_service(db=db)
            reaper = self.container.services.confirmation_reaper(
                db=db, settlement_service=settlement_service
            )
            return await reaper.run_once()

    async def run_wallet_poller(self):
        poller = self.container.infra.wallet_poller()
        with self._session() as db:
            settlement_service = self.container.services.settlement_service(db=db)
            return await poller.poll_once(settlement_service.process_event)

    async def run_yield_accrual(self):
        with self._session() as db:
            return self.container.services.yield_accrual_service(db=db).accrue_all()

    def setup_jobs(self) -> None:
        self.scheduler.add_job(
            self.run_reaper,
            trigger=IntervalTrigger(seconds=self.settings.REAPER_INTERVAL_SECONDS),
            id="confirmation_reaper",
            name="Confirmation reaper",
            replace_existing=True,
        )
        logger.info(
            f"Confirmation reaper scheduled every {self.settings.REAPER_INTERVAL_SECONDS}s "
            f"({self.settings.CONFIRMATION_FEED} feed)"
        )

        if self.settings.CHAIN_POLL_ENABLED and self.settings.CONFIRMATION_FEED == "live":
            self.scheduler.add_job(
                self.run_wallet_poller,
                trigger=IntervalTrigger(seconds=self.settings.CHAIN_POLL_INTERVAL_SECONDS),
                id="wallet_poller",
                name="Wallet transaction poller",
                replace_existing=True,
            )
            logger.info(
                f"Wallet poller scheduled every {self.settings.CHAIN_POLL_INTERVAL_SECONDS}s"
            )

        if self.settings.YIELD_ACCRUAL_ENABLED:
            self.scheduler.add_job(
                self.run_yield_accrual,
                trigger=CronTrigger(hour=0, minute=0, timezone="UTC"),
                id="daily_yield_accrual",
                name="Daily yield accrual",
                replace_existing=True,
            )
            logger.info("Daily yield accrual scheduled at 00:00 UTC")

    def start(self) -> None:
        self.setup_jobs()
        self.scheduler.start()
        logger.info("Settlement scheduler started")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Settlement scheduler stopped")
