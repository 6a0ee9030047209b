"""EscrowScheduler: explicit owner of the background jobs.

Created and started by the FastAPI lifespan, stopped on shutdown. Jobs run
on APScheduler interval triggers (coalesced, one instance at a time) and can
also be triggered by hand through ``run_job`` (admin endpoint, tests).

Every run gets a fresh session from ``session_factory`` and the instant
returned by ``clock``; a failing run is logged and never stops the scheduler.
"""
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import settings
from src.em_common.database import async_session_factory
from src.em_common.datetime_utils import utc_now
from src.em_common.errors import JobNotFoundError
from src.em_dispute.application.service import DisputeService
from src.em_listing.domain.repository import ListingRepositoryProtocol
from src.em_listing.infrastructure.persistence import ListingRepository
from src.em_notification.domain.sink import NotificationSink
from src.em_notification.infrastructure.sink import DatabaseNotificationSink
from src.em_scheduler import jobs
from src.em_transaction.application.credentials import CredentialDisclosureManager
from src.em_transaction.domain.repository import TransactionRepositoryProtocol
from src.em_transaction.infrastructure.payment_gateway import (
    DisbursementGateway,
    MockDisbursementGateway,
)
from src.em_transaction.infrastructure.persistence import TransactionRepository

logger = logging.getLogger(__name__)

JobFunc = Callable[[AsyncSession, datetime], Awaitable[int]]


@dataclass(frozen=True)
class JobSpec:
    name: str
    func: JobFunc
    interval_minutes: int


@dataclass
class JobResult:
    name: str
    affected: int
    started_at: datetime
    duration_ms: float


class EscrowScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
        disbursement_gateway: DisbursementGateway | None = None,
        sink: NotificationSink | None = None,
        clock: Callable[[], datetime] = utc_now,
        listing_repo: ListingRepositoryProtocol | None = None,
        txn_repo: TransactionRepositoryProtocol | None = None,
        dispute_service: DisputeService | None = None,
        credential_manager: CredentialDisclosureManager | None = None,
        disbursement_eligibility: jobs.DisbursementEligibility = jobs.default_disbursement_eligibility,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._sink: NotificationSink = sink or DatabaseNotificationSink(session_factory)
        self._gateway: DisbursementGateway = disbursement_gateway or MockDisbursementGateway()
        self._listing_repo: ListingRepositoryProtocol = listing_repo or ListingRepository()
        self._txn_repo: TransactionRepositoryProtocol = txn_repo or TransactionRepository()
        self._dispute_service = dispute_service or DisputeService(
            txn_repo=self._txn_repo, sink=self._sink
        )
        self._credential_manager = credential_manager or CredentialDisclosureManager(
            txn_repo=self._txn_repo, listing_repo=self._listing_repo
        )
        self._eligibility = disbursement_eligibility
        self._scheduler: AsyncIOScheduler | None = None

        self._jobs: dict[str, JobSpec] = {
            spec.name: spec
            for spec in (
                JobSpec("auto_expire", self._auto_expire, settings.AUTO_EXPIRE_INTERVAL_MINUTES),
                JobSpec("auto_complete", self._auto_complete, settings.AUTO_COMPLETE_INTERVAL_MINUTES),
                JobSpec("disbursement", self._disbursement, settings.DISBURSEMENT_INTERVAL_MINUTES),
                JobSpec(
                    "auto_resolve_disputes",
                    self._auto_resolve_disputes,
                    settings.AUTO_RESOLVE_INTERVAL_MINUTES,
                ),
                JobSpec(
                    "credential_cleanup",
                    self._credential_cleanup,
                    settings.CREDENTIAL_CLEANUP_INTERVAL_MINUTES,
                ),
            )
        }

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Register interval jobs and start. Must be called with a running event loop."""
        if self.running:
            return
        scheduler = AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 120},
            timezone="UTC",
        )
        for spec in self._jobs.values():
            scheduler.add_job(
                self._run_scheduled,
                trigger=IntervalTrigger(minutes=spec.interval_minutes),
                args=[spec.name],
                id=spec.name,
                name=spec.name,
                replace_existing=True,
            )
            logger.info("Scheduled job %s every %d minutes", spec.name, spec.interval_minutes)
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Escrow scheduler started with %d jobs", len(self._jobs))

    def shutdown(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Escrow scheduler stopped")
        self._scheduler = None

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run_job(self, name: str) -> JobResult:
        """Run one job now, in its own session. Errors propagate to the caller."""
        spec = self._jobs.get(name)
        if spec is None:
            raise JobNotFoundError(name)
        now = self._clock()
        start = time.perf_counter()
        async with self._session_factory() as db:
            affected = await spec.func(db, now)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info("Job %s finished: %d rows affected (%.0fms)", name, affected, duration_ms)
        return JobResult(name=name, affected=affected, started_at=now, duration_ms=duration_ms)

    async def _run_scheduled(self, name: str) -> None:
        try:
            await self.run_job(name)
        except Exception:
            logger.exception("Scheduled job %s failed", name)

    # ------------------------------------------------------------------
    # Job bindings
    # ------------------------------------------------------------------

    async def _auto_expire(self, db: AsyncSession, now: datetime) -> int:
        return await jobs.auto_expire(db, now, self._listing_repo, self._txn_repo)

    async def _auto_complete(self, db: AsyncSession, now: datetime) -> int:
        return await jobs.auto_complete(db, now, self._txn_repo)

    async def _disbursement(self, db: AsyncSession, now: datetime) -> int:
        return await jobs.disburse_completed(
            db, now, self._txn_repo, self._gateway, self._sink, self._eligibility
        )

    async def _auto_resolve_disputes(self, db: AsyncSession, now: datetime) -> int:
        return await jobs.auto_resolve_disputes(db, now, self._dispute_service)

    async def _credential_cleanup(self, db: AsyncSession, now: datetime) -> int:
        return await jobs.credential_cleanup(db, now, self._credential_manager)
