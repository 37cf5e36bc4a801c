"""
Scan Orchestrator

Owns the scan lifecycle:

    pending -> in_progress -> completed | failed

start_scan() claims the Scan under a fresh attempt id, hands it to the
dispatcher and returns at once. run_scan() is the background body: it runs
the analysis pipeline, stores the findings (insert for a fresh scan,
reconcile for a rescan) and leaves the Scan in a terminal state. Every write
it makes is conditional on the Scan still being in_progress under its
attempt id, so a redelivered or superseded job cannot touch a Scan it no
longer owns.
"""
import asyncio
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker
from uuid_extension import uuid7

from app.features.scan.models.scan import Scan, ScanStatus
from app.features.scan.schemas.scan import (
    ComplianceOptions,
    RescanRequest,
    ScanRequest,
)
from app.features.scan.services.analysis.pipeline import AnalysisPipeline, default_pipeline
from app.features.scan.services.reconciliation import reconcile
from app.features.scan.services.repository import ScanRepository
from app.features.scan.workers.dispatcher import ScanDispatcher, ScanJob
from app.platform.config import settings
from app.platform.db.base import utcnow
from app.platform.db.session import SessionLocal
from app.platform.exceptions import ConflictError, NotFoundError, ScanAttemptLostError, ValidationError
from app.platform.logger import get_logger

logger = get_logger(__name__)


class ScanOrchestrator:
    def __init__(
        self,
        repo: ScanRepository,
        dispatcher: Optional[ScanDispatcher] = None,
        pipeline: Optional[AnalysisPipeline] = None,
        deadline_seconds: Optional[float] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        self.repo = repo
        self.dispatcher = dispatcher
        self.pipeline = pipeline or default_pipeline()
        self.deadline_seconds = deadline_seconds or settings.SCAN_DEADLINE_SECONDS
        # Used to record a failure when the orchestrator's own session is unusable
        self.session_factory = session_factory or SessionLocal

    async def start_scan(self, request: ScanRequest) -> Scan:
        """
        Claim a scan and dispatch its analysis.

        Raises:
            NotFoundError: unknown scan (rescan) or project (new scan)
            ValidationError: the rescanned scan belongs to another project
            ConflictError: the scan is already being analyzed
        """
        if self.dispatcher is None:
            raise RuntimeError("ScanOrchestrator.start_scan needs a dispatcher")

        is_rescan = isinstance(request, RescanRequest)
        if is_rescan:
            scan = await self.repo.get_scan(request.scan_id)
            if scan is None:
                raise NotFoundError(f"Scan {request.scan_id} not found")
            if request.project_id is not None and scan.project_id != request.project_id:
                raise ValidationError(f"Scan {request.scan_id} does not belong to project {request.project_id}")
        else:
            project = await self.repo.get_project(request.project_id)
            if project is None:
                raise NotFoundError(f"Project {request.project_id} not found")
            scan = await self.repo.create_scan(project.id, request.url)

        scan_id = scan.id
        attempt_id = str(uuid7())
        if not await self.repo.claim_scan(scan_id, request.url, attempt_id=attempt_id):
            await self.repo.rollback()
            logger.warning(f"Scan {scan_id} is already in progress, refusing to start another attempt")
            raise ConflictError(f"Scan {scan_id} is already in progress")
        await self.repo.commit()
        logger.info(
            f"Scan {scan_id} claimed for {request.url} as attempt {attempt_id} "
            f"({'rescan' if is_rescan else 'new scan'})"
        )

        job = ScanJob(
            scan_id=scan_id,
            url=request.url,
            options=request.options.to_payload(),
            is_rescan=is_rescan,
            attempt_id=attempt_id,
        )
        try:
            handle = self.dispatcher.dispatch(job)
        except Exception as e:
            logger.error(f"Failed to dispatch scan {scan_id}: {e}", exc_info=True)
            await self.repo.update_owned_scan(
                scan_id,
                attempt_id,
                status=ScanStatus.failed,
                completed_at=utcnow(),
                error_message=f"Failed to dispatch scan: {e}",
            )
            await self.repo.commit()
            raise

        await self.repo.update_scan(scan_id, task_id=handle.task_id)
        await self.repo.commit()
        return await self.repo.get_scan(scan_id)

    async def run_scan(
        self,
        scan_id: str,
        url: str,
        options: ComplianceOptions,
        is_rescan: bool,
        attempt_id: Optional[str] = None,
    ) -> Optional[ScanStatus]:
        """
        Analyze and persist.

        Returns the terminal status written to the Scan, or None when the
        attempt no longer owns the Scan and nothing was written.
        """
        logger.info(f"Running {'rescan' if is_rescan else 'scan'} {scan_id} for {url}")
        try:
            await asyncio.wait_for(
                self._analyze_and_store(scan_id, url, options, is_rescan, attempt_id),
                timeout=self.deadline_seconds,
            )
        except ScanAttemptLostError:
            await self.repo.rollback()
            logger.warning(f"Scan {scan_id} is no longer owned by attempt {attempt_id}, discarding its results")
            return None
        except asyncio.TimeoutError:
            logger.error(f"Scan {scan_id} exceeded deadline of {self.deadline_seconds} seconds")
            return await self._mark_failed(
                scan_id, attempt_id, f"Scan exceeded deadline of {self.deadline_seconds} seconds"
            )
        except Exception as e:
            logger.error(f"Scan {scan_id} failed: {e}", exc_info=True)
            return await self._mark_failed(scan_id, attempt_id, str(e) or type(e).__name__)

        return ScanStatus.completed

    async def _analyze_and_store(
        self,
        scan_id: str,
        url: str,
        options: ComplianceOptions,
        is_rescan: bool,
        attempt_id: Optional[str],
    ) -> None:
        outcome = await self.pipeline.run(url, options)
        findings = outcome.result.results

        # Row lock on the Scan until the results below are committed
        if not await self.repo.update_owned_scan(scan_id, attempt_id):
            raise ScanAttemptLostError(scan_id)

        if is_rescan:
            await reconcile(self.repo, scan_id, findings)
        else:
            await self._store_fresh(scan_id, findings)

        summary = outcome.result.summary
        completed = await self.repo.update_owned_scan(
            scan_id,
            attempt_id,
            status=ScanStatus.completed,
            completed_at=utcnow(),
            total_issues=summary.total,
            critical_issues=summary.critical,
            serious_issues=summary.serious,
            moderate_issues=summary.moderate,
            minor_issues=summary.minor,
            analysis_method=outcome.method,
            error_message=None,
        )
        if not completed:
            raise ScanAttemptLostError(scan_id)
        await self.repo.commit()
        logger.info(
            f"Scan {scan_id} completed via {outcome.method}: {summary.total} issues "
            f"({summary.critical} critical, {summary.serious} serious, "
            f"{summary.moderate} moderate, {summary.minor} minor)"
        )

    async def _store_fresh(self, scan_id: str, findings) -> None:
        existing = await self.repo.count_results_for_scan(scan_id)
        if existing:
            logger.warning(f"Fresh scan {scan_id} already holds {existing} results, reconciling instead")
            await reconcile(self.repo, scan_id, findings)
            return
        inserted = await self.repo.bulk_insert_results(scan_id, findings)
        logger.info(f"Inserted {inserted} results for scan {scan_id}")

    async def _mark_failed(self, scan_id: str, attempt_id: Optional[str], message: str) -> Optional[ScanStatus]:
        values = dict(status=ScanStatus.failed, completed_at=utcnow(), error_message=message)
        try:
            await self.repo.rollback()
            recorded = await self.repo.update_owned_scan(scan_id, attempt_id, **values)
            await self.repo.commit()
        except Exception:
            logger.error(f"Could not record failure for scan {scan_id}, retrying on a new session", exc_info=True)
            recorded = await self._mark_failed_on_new_session(scan_id, attempt_id, values)

        if not recorded:
            logger.warning(f"Scan {scan_id} is no longer owned by attempt {attempt_id}, failure not recorded")
            return None
        return ScanStatus.failed

    async def _mark_failed_on_new_session(self, scan_id: str, attempt_id: Optional[str], values: dict) -> bool:
        try:
            async with self.session_factory() as db:
                repo = ScanRepository(db)
                recorded = await repo.update_owned_scan(scan_id, attempt_id, **values)
                await repo.commit()
                return recorded
        except Exception:
            logger.critical(f"Could not record failure for scan {scan_id}", exc_info=True)
            raise


async def execute_scan_job(
    job: ScanJob,
    session_factory: Optional[async_sessionmaker] = None,
    pipeline: Optional[AnalysisPipeline] = None,
) -> Optional[ScanStatus]:
    """Run one dispatched job on its own session."""
    session_factory = session_factory or SessionLocal
    async with session_factory() as db:
        orchestrator = ScanOrchestrator(ScanRepository(db), pipeline=pipeline, session_factory=session_factory)
        return await orchestrator.run_scan(
            job.scan_id,
            job.url,
            ComplianceOptions.from_payload(job.options),
            job.is_rescan,
            attempt_id=job.attempt_id,
        )
