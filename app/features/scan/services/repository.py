from typing import Any, Iterable, List, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager

from app.features.projects.models.project import Project
from app.features.scan.models.result import Result
from app.features.scan.models.scan import CLAIMABLE_STATUSES, Scan, ScanStatus
from app.features.scan.schemas.scan import FindingData, ResultPatch
from app.platform.db.base import utcnow


# Summary columns wiped whenever a scan is (re)claimed
_SUMMARY_RESET = {
    "completed_at": None,
    "error_message": None,
    "total_issues": None,
    "critical_issues": None,
    "serious_issues": None,
    "moderate_issues": None,
    "minor_issues": None,
    "analysis_method": None,
}


class ScanRepository:
    """
    Persistence for scans and their results.

    Write methods flush but never commit, so several of them can form one
    unit of work; callers decide when to commit() or rollback().

    Bulk writes go through Core statements; reads use populate_existing so
    rows already in the identity map are refreshed instead of served stale.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_project(self, project_id: str) -> Optional[Project]:
        result = await self.db.execute(select(Project).where(Project.id == project_id))
        return result.scalar_one_or_none()

    async def get_scan(self, scan_id: str) -> Optional[Scan]:
        result = await self.db.execute(
            select(Scan).where(Scan.id == scan_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create_scan(self, project_id: str, url: str) -> Scan:
        scan = Scan(project_id=project_id, url=url, status=ScanStatus.pending)
        self.db.add(scan)
        await self.db.flush()
        return scan

    async def claim_scan(self, scan_id: str, url: str, attempt_id: Optional[str] = None) -> bool:
        """
        Move a scan to in_progress only if no attempt currently owns it.

        Single conditional UPDATE, so two concurrent claims cannot both win.
        The winner's attempt_id is what later writes are checked against.
        """
        stmt = (
            update(Scan)
            .where(Scan.id == scan_id, Scan.status.in_(CLAIMABLE_STATUSES))
            .values(
                status=ScanStatus.in_progress,
                url=url,
                started_at=utcnow(),
                attempt_id=attempt_id,
                **_SUMMARY_RESET,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def update_owned_scan(self, scan_id: str, attempt_id: Optional[str], **values: Any) -> bool:
        """
        Update a scan only while it is in_progress under the given attempt.

        Without an attempt_id only the status is checked. Returns False when
        the attempt no longer owns the scan; nothing is written then.
        """
        values.setdefault("updated_at", utcnow())
        stmt = update(Scan).where(Scan.id == scan_id, Scan.status == ScanStatus.in_progress)
        if attempt_id is not None:
            stmt = stmt.where(Scan.attempt_id == attempt_id)
        result = await self.db.execute(stmt.values(**values).execution_options(synchronize_session=False))
        return result.rowcount == 1

    async def update_scan(self, scan_id: str, **values: Any) -> None:
        values.setdefault("updated_at", utcnow())
        await self.db.execute(
            update(Scan)
            .where(Scan.id == scan_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def list_results_for_scan(self, scan_id: str) -> List[Result]:
        result = await self.db.execute(
            select(Result).where(Result.scan_id == scan_id).order_by(Result.created_at, Result.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_results(
        self,
        scan_id: Optional[str] = None,
        project_id: Optional[str] = None,
        completed_only: bool = False,
    ) -> List[Result]:
        """Results with their Scan loaded, newest scan first."""
        stmt = (
            select(Result)
            .join(Result.scan)
            .options(contains_eager(Result.scan))
            .order_by(Scan.created_at.desc(), Result.created_at, Result.id)
            .execution_options(populate_existing=True)
        )
        if scan_id is not None:
            stmt = stmt.where(Result.scan_id == scan_id)
        if project_id is not None:
            stmt = stmt.where(Scan.project_id == project_id)
        if completed_only:
            stmt = stmt.where(Scan.status == ScanStatus.completed)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_results_for_scan(self, scan_id: str) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(Result).where(Result.scan_id == scan_id)
        )
        return result.scalar_one()

    async def bulk_insert_results(self, scan_id: str, findings: Sequence[FindingData]) -> int:
        if not findings:
            return 0
        now = utcnow()
        rows = [
            Result(
                scan_id=scan_id,
                url=finding.url,
                message=finding.message,
                element=finding.element,
                severity=finding.severity,
                impact=finding.impact,
                help=finding.help,
                tags=list(finding.tags),
                element_path=finding.element_path,
                details=finding.details or {},
                created_at=now,
                updated_at=now,
            )
            for finding in findings
        ]
        self.db.add_all(rows)
        await self.db.flush()
        return len(rows)

    async def bulk_delete_results(self, result_ids: Iterable[str]) -> int:
        ids = list(result_ids)
        if not ids:
            return 0
        result = await self.db.execute(
            delete(Result).where(Result.id.in_(ids)).execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def bulk_update_results(self, patches: Iterable[ResultPatch]) -> int:
        count = 0
        for patch in patches:
            await self.db.execute(
                update(Result)
                .where(Result.id == patch.id)
                .values(**patch.changes)
                .execution_options(synchronize_session=False)
            )
            count += 1
        return count

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

