import asyncio

import pytest
from sqlalchemy import select

from app.features.scan.models.result import Severity
from app.features.scan.models.scan import Scan, ScanStatus
from app.features.scan.schemas.scan import (
    AnalysisResult,
    ComplianceOptions,
    FindingData,
    NewScanRequest,
    RescanRequest,
    summarize,
)
from app.features.scan.services.analysis.base import StrategyFailure
from app.features.scan.services.analysis.pipeline import AnalysisOutcome
from app.features.scan.services.orchestrator import ScanOrchestrator, execute_scan_job
from app.features.scan.services.repository import ScanRepository
from app.features.scan.workers.dispatcher import ScanDispatcher, ScanJob
from app.platform.exceptions import AnalysisExhaustedError, ConflictError, NotFoundError, ValidationError

URL = "https://example.com"


class FakePipeline:
    def __init__(self, findings=(), method="simple", error=None, delay=0):
        self.findings = list(findings)
        self.method = method
        self.error = error
        self.delay = delay
        self.calls = []

    async def run(self, url, options):
        self.calls.append((url, options))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return AnalysisOutcome(
            method=self.method,
            result=AnalysisResult(results=self.findings, summary=summarize(self.findings)),
        )


class ExplodingDispatcher(ScanDispatcher):
    backend = "test"

    def dispatch(self, job):
        raise RuntimeError("broker unreachable")


def finding(message, severity=Severity.critical, element="<img>", **fields):
    return FindingData(url=URL, message=message, element=element, severity=severity, **fields)


# ============================================================================
# start_scan
# ============================================================================

async def test_new_scan_is_created_claimed_and_dispatched(db, factory, dispatcher):
    project = await factory.project(urls=(URL,))
    orchestrator = ScanOrchestrator(ScanRepository(db), dispatcher=dispatcher)

    scan = await orchestrator.start_scan(
        NewScanRequest(project_id=project.id, url=URL, options=ComplianceOptions(section508=True))
    )

    assert scan.status == ScanStatus.in_progress
    assert scan.project_id == project.id
    assert scan.started_at is not None
    assert scan.task_id == "test-task-1"
    assert scan.attempt_id is not None

    [job] = dispatcher.jobs
    assert job.scan_id == scan.id
    assert job.attempt_id == scan.attempt_id
    assert job.url == URL
    assert job.is_rescan is False
    assert job.options["section508"] is True


async def test_rescan_reuses_the_record_and_clears_the_summary(db, factory, dispatcher):
    project = await factory.project(urls=(URL,))
    previous = await factory.scan(
        project,
        url=URL,
        status=ScanStatus.completed,
        total_issues=4,
        critical_issues=4,
        analysis_method="simple",
    )
    orchestrator = ScanOrchestrator(ScanRepository(db), dispatcher=dispatcher)

    scan = await orchestrator.start_scan(RescanRequest(scan_id=previous.id, url=URL))

    assert scan.id == previous.id
    assert scan.status == ScanStatus.in_progress
    assert scan.total_issues is None
    assert scan.analysis_method is None
    assert dispatcher.jobs[0].is_rescan is True


async def test_rescan_of_failed_scan_is_allowed(db, factory, dispatcher):
    project = await factory.project(urls=(URL,))
    previous = await factory.scan(project, url=URL, status=ScanStatus.failed, error_message="Timeout")

    scan = await ScanOrchestrator(ScanRepository(db), dispatcher=dispatcher).start_scan(
        RescanRequest(scan_id=previous.id, url=URL)
    )

    assert scan.status == ScanStatus.in_progress
    assert scan.error_message is None


async def test_each_claim_gets_a_new_attempt_id(db, factory, dispatcher):
    project = await factory.project(urls=(URL,))
    previous = await factory.scan(project, url=URL, status=ScanStatus.completed, attempt_id="old-attempt")

    scan = await ScanOrchestrator(ScanRepository(db), dispatcher=dispatcher).start_scan(
        RescanRequest(scan_id=previous.id, url=URL)
    )

    assert scan.attempt_id not in (None, "old-attempt")
    assert dispatcher.jobs[0].attempt_id == scan.attempt_id


async def test_rescan_through_another_project_is_rejected(db, factory, dispatcher):
    owner = await factory.project(name="Owner", urls=(URL,))
    other = await factory.project(name="Other", urls=("https://other.com",))
    scan = await factory.scan(owner, url=URL, status=ScanStatus.completed)
    scan_id = scan.id

    with pytest.raises(ValidationError, match="does not belong to project"):
        await ScanOrchestrator(ScanRepository(db), dispatcher=dispatcher).start_scan(
            RescanRequest(scan_id=scan_id, project_id=other.id, url=URL)
        )

    assert dispatcher.jobs == []
    assert (await ScanRepository(db).get_scan(scan_id)).status == ScanStatus.completed


async def test_rescan_of_running_scan_is_a_conflict(db, factory, dispatcher):
    project = await factory.project(urls=(URL,))
    running = await factory.scan(project, url=URL, status=ScanStatus.in_progress)
    orchestrator = ScanOrchestrator(ScanRepository(db), dispatcher=dispatcher)

    with pytest.raises(ConflictError, match="already in progress"):
        await orchestrator.start_scan(RescanRequest(scan_id=running.id, url=URL))

    assert dispatcher.jobs == []


async def test_only_one_of_two_claims_wins(db, factory):
    project = await factory.project(urls=(URL,))
    scan = await factory.scan(project, url=URL, status=ScanStatus.completed)
    repo = ScanRepository(db)

    first = await repo.claim_scan(scan.id, URL)
    second = await repo.claim_scan(scan.id, URL)

    assert (first, second) == (True, False)


@pytest.mark.parametrize(
    "request_factory, message",
    [
        (lambda: RescanRequest(scan_id="missing", url=URL), "Scan missing not found"),
        (lambda: NewScanRequest(project_id="missing", url=URL), "Project missing not found"),
    ],
)
async def test_unknown_targets_are_not_found(db, dispatcher, request_factory, message):
    orchestrator = ScanOrchestrator(ScanRepository(db), dispatcher=dispatcher)

    with pytest.raises(NotFoundError, match=message):
        await orchestrator.start_scan(request_factory())


async def test_dispatch_failure_marks_the_scan_failed(db, factory):
    project = await factory.project(urls=(URL,))
    project_id = project.id
    repo = ScanRepository(db)

    with pytest.raises(RuntimeError, match="broker unreachable"):
        await ScanOrchestrator(repo, dispatcher=ExplodingDispatcher()).start_scan(
            NewScanRequest(project_id=project_id, url=URL)
        )

    result = await db.execute(
        select(Scan).where(Scan.project_id == project_id).execution_options(populate_existing=True)
    )
    [scan] = result.scalars().all()
    assert scan.status == ScanStatus.failed
    assert scan.error_message == "Failed to dispatch scan: broker unreachable"


async def test_start_scan_needs_a_dispatcher(db):
    with pytest.raises(RuntimeError):
        await ScanOrchestrator(ScanRepository(db)).start_scan(NewScanRequest(project_id="p", url=URL))


# ============================================================================
# run_scan
# ============================================================================

async def test_fresh_scan_stores_findings_and_summary(db, factory):
    project = await factory.project(urls=(URL,))
    scan = await factory.scan(project, url=URL, status=ScanStatus.in_progress)
    pipeline = FakePipeline(
        findings=[finding("Missing alt"), finding("Low contrast", severity=Severity.serious, element="<p>")],
        method="browser",
    )
    repo = ScanRepository(db)

    status = await ScanOrchestrator(repo, pipeline=pipeline).run_scan(scan.id, URL, ComplianceOptions(), False)

    assert status == ScanStatus.completed
    stored = await repo.get_scan(scan.id)
    assert stored.status == ScanStatus.completed
    assert stored.completed_at is not None
    assert stored.analysis_method == "browser"
    assert (stored.total_issues, stored.critical_issues, stored.serious_issues) == (2, 1, 1)
    assert (stored.moderate_issues, stored.minor_issues) == (0, 0)
    assert await repo.count_results_for_scan(scan.id) == 2


async def test_rescan_reconciles_instead_of_reinserting(db, factory):
    project = await factory.project(urls=(URL,))
    scan = await factory.scan(project, url=URL, status=ScanStatus.in_progress)
    kept = await factory.result(scan, message="Missing alt", element="<img>", url=URL)
    await factory.result(scan, message="Fixed since", element="<div>", url=URL)
    repo = ScanRepository(db)

    pipeline = FakePipeline(findings=[finding("Missing alt", tags=["wcag2a", "wcag111"])])
    await ScanOrchestrator(repo, pipeline=pipeline).run_scan(scan.id, URL, ComplianceOptions(), True)

    rows = await repo.list_results_for_scan(scan.id)
    assert [row.id for row in rows] == [kept.id]
    assert (await repo.get_scan(scan.id)).total_issues == 1


async def test_fresh_scan_that_already_has_results_is_reconciled(db, factory):
    project = await factory.project(urls=(URL,))
    scan = await factory.scan(project, url=URL, status=ScanStatus.in_progress)
    kept = await factory.result(scan, message="Missing alt", element="<img>", url=URL)
    repo = ScanRepository(db)

    pipeline = FakePipeline(findings=[finding("Missing alt", tags=["wcag2a", "wcag111"])])
    await ScanOrchestrator(repo, pipeline=pipeline).run_scan(scan.id, URL, ComplianceOptions(), False)

    rows = await repo.list_results_for_scan(scan.id)
    assert [row.id for row in rows] == [kept.id]


async def test_unchanged_rescan_keeps_duplicate_findings(db, factory):
    project = await factory.project(urls=(URL,))
    scan = await factory.scan(project, url=URL, status=ScanStatus.in_progress)
    scan_id = scan.id
    spacers = [
        finding("Missing alt", element='<img src="spacer.gif">', element_path="img:nth-of-type(1)"),
        finding("Missing alt", element='<img src="spacer.gif">', element_path="img:nth-of-type(2)"),
    ]
    repo = ScanRepository(db)

    await ScanOrchestrator(repo, pipeline=FakePipeline(findings=spacers)).run_scan(
        scan_id, URL, ComplianceOptions(), False
    )
    fresh_ids = sorted(row.id for row in await repo.list_results_for_scan(scan_id))
    assert len(fresh_ids) == 2

    assert await repo.claim_scan(scan_id, URL)
    await repo.commit()
    status = await ScanOrchestrator(repo, pipeline=FakePipeline(findings=spacers)).run_scan(
        scan_id, URL, ComplianceOptions(), True
    )

    assert status == ScanStatus.completed
    rows = await repo.list_results_for_scan(scan_id)
    assert sorted(row.id for row in rows) == fresh_ids
    assert (await repo.get_scan(scan_id)).total_issues == len(rows)


async def test_exhausted_pipeline_marks_the_scan_failed(db, factory):
    project = await factory.project(urls=(URL,))
    scan = await factory.scan(project, url=URL, status=ScanStatus.in_progress)
    scan_id = scan.id
    error = AnalysisExhaustedError([
        StrategyFailure("simple", "timeout"),
        StrategyFailure("browser", "chrome not found"),
    ])
    repo = ScanRepository(db)

    status = await ScanOrchestrator(repo, pipeline=FakePipeline(error=error)).run_scan(
        scan_id, URL, ComplianceOptions(), False
    )

    assert status == ScanStatus.failed
    stored = await repo.get_scan(scan_id)
    assert stored.status == ScanStatus.failed
    assert stored.error_message == "All analysis methods failed: simple: timeout; browser: chrome not found"
    assert stored.completed_at is not None


async def test_persistence_failure_leaves_no_partial_results(db, factory, monkeypatch):
    project = await factory.project(urls=(URL,))
    scan = await factory.scan(project, url=URL, status=ScanStatus.in_progress)
    repo = ScanRepository(db)

    async def failing_update(patches):
        raise RuntimeError("write failed")

    existing = await factory.result(scan, message="Missing alt", element="<img>", url=URL, help="old")
    scan_id, existing_id = scan.id, existing.id
    monkeypatch.setattr(repo, "bulk_update_results", failing_update)
    pipeline = FakePipeline(findings=[finding("Missing alt", help="new"), finding("New issue", element="<a>")])

    status = await ScanOrchestrator(repo, pipeline=pipeline).run_scan(scan_id, URL, ComplianceOptions(), True)

    assert status == ScanStatus.failed
    rows = await repo.list_results_for_scan(scan_id)
    assert [(row.id, row.help) for row in rows] == [(existing_id, "old")]
    assert (await repo.get_scan(scan_id)).error_message == "write failed"


async def test_scan_past_its_deadline_is_failed(db, factory):
    project = await factory.project(urls=(URL,))
    scan = await factory.scan(project, url=URL, status=ScanStatus.in_progress)
    scan_id = scan.id
    repo = ScanRepository(db)

    orchestrator = ScanOrchestrator(repo, pipeline=FakePipeline(delay=5), deadline_seconds=0.05)
    status = await orchestrator.run_scan(scan_id, URL, ComplianceOptions(), False)

    assert status == ScanStatus.failed
    stored = await repo.get_scan(scan_id)
    assert stored.error_message == "Scan exceeded deadline of 0.05 seconds"
    assert await repo.count_results_for_scan(scan_id) == 0


async def test_execute_scan_job_uses_its_own_session(db, factory, session_factory):
    project = await factory.project(urls=(URL,))
    scan = await factory.scan(project, url=URL, status=ScanStatus.in_progress)
    pipeline = FakePipeline(findings=[finding("Missing alt")])

    job = ScanJob(scan_id=scan.id, url=URL, options={"wcagLevel": "aaa"}, is_rescan=False)
    status = await execute_scan_job(job, session_factory=session_factory, pipeline=pipeline)

    assert status == ScanStatus.completed
    assert pipeline.calls[0][1].wcag_level.value == "aaa"
    assert (await ScanRepository(db).get_scan(scan.id)).status == ScanStatus.completed


# ============================================================================
# Attempt ownership
# ============================================================================

async def test_stale_job_leaves_a_completed_scan_untouched(db, factory):
    project = await factory.project(urls=(URL,))
    scan = await factory.scan(project, url=URL, status=ScanStatus.completed, total_issues=1, critical_issues=1)
    result = await factory.result(scan, message="Missing alt", element="<img>", url=URL)
    scan_id, result_id = scan.id, result.id
    repo = ScanRepository(db)

    status = await ScanOrchestrator(repo, pipeline=FakePipeline(findings=[])).run_scan(
        scan_id, URL, ComplianceOptions(), True
    )

    assert status is None
    rows = await repo.list_results_for_scan(scan_id)
    assert [row.id for row in rows] == [result_id]
    stored = await repo.get_scan(scan_id)
    assert stored.status == ScanStatus.completed
    assert stored.total_issues == 1


async def test_superseded_attempt_writes_nothing(db, factory):
    project = await factory.project(urls=(URL,))
    scan = await factory.scan(project, url=URL, status=ScanStatus.in_progress, attempt_id="attempt-2")
    result = await factory.result(scan, message="Missing alt", element="<img>", url=URL)
    scan_id, result_id = scan.id, result.id
    repo = ScanRepository(db)

    status = await ScanOrchestrator(repo, pipeline=FakePipeline(findings=[finding("New issue", element="<a>")])).run_scan(
        scan_id, URL, ComplianceOptions(), True, attempt_id="attempt-1"
    )

    assert status is None
    rows = await repo.list_results_for_scan(scan_id)
    assert [row.id for row in rows] == [result_id]
    stored = await repo.get_scan(scan_id)
    assert stored.status == ScanStatus.in_progress
    assert stored.completed_at is None


async def test_owning_attempt_completes_the_scan(db, factory):
    project = await factory.project(urls=(URL,))
    scan = await factory.scan(project, url=URL, status=ScanStatus.in_progress, attempt_id="attempt-2")
    repo = ScanRepository(db)

    status = await ScanOrchestrator(repo, pipeline=FakePipeline(findings=[finding("Missing alt")])).run_scan(
        scan.id, URL, ComplianceOptions(), False, attempt_id="attempt-2"
    )

    assert status == ScanStatus.completed
    assert await repo.count_results_for_scan(scan.id) == 1


async def test_failing_stale_job_does_not_fail_a_finished_scan(db, factory):
    project = await factory.project(urls=(URL,))
    scan = await factory.scan(project, url=URL, status=ScanStatus.completed)
    scan_id = scan.id
    repo = ScanRepository(db)

    status = await ScanOrchestrator(repo, pipeline=FakePipeline(error=RuntimeError("chrome crashed"))).run_scan(
        scan_id, URL, ComplianceOptions(), True
    )

    assert status is None
    stored = await repo.get_scan(scan_id)
    assert stored.status == ScanStatus.completed
    assert stored.error_message is None


async def test_failure_is_recorded_on_a_new_session_when_rollback_breaks(db, factory, session_factory, monkeypatch):
    project = await factory.project(urls=(URL,))
    scan = await factory.scan(project, url=URL, status=ScanStatus.in_progress)
    scan_id = scan.id
    repo = ScanRepository(db)

    async def broken_rollback():
        raise RuntimeError("connection was closed in the middle of operation")

    monkeypatch.setattr(repo, "rollback", broken_rollback)
    orchestrator = ScanOrchestrator(
        repo,
        pipeline=FakePipeline(error=RuntimeError("analysis crashed")),
        session_factory=session_factory,
    )

    status = await orchestrator.run_scan(scan_id, URL, ComplianceOptions(), False)

    assert status == ScanStatus.failed
    async with session_factory() as fresh:
        stored = await ScanRepository(fresh).get_scan(scan_id)
    assert stored.status == ScanStatus.failed
    assert stored.error_message == "analysis crashed"
    assert stored.completed_at is not None
