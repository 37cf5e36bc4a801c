"""
Scan Dispatcher

Hands a claimed scan to whatever runs it in the background and returns a
handle for it. Two backends:

- CeleryScanDispatcher: enqueues run_accessibility_scan on the
  scan.accessibility queue; the handle is the Celery task id.
- LocalScanDispatcher: schedules the scan as an asyncio task inside the API
  process; handles live in a registry until the task finishes.
"""
import asyncio
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional

from uuid_extension import uuid7

from app.platform.logger import get_logger

logger = get_logger(__name__)

SCAN_QUEUE = "scan.accessibility"


@dataclass
class ScanJob:
    """Everything the background body needs; JSON-serializable for Celery."""
    scan_id: str
    url: str
    options: Dict[str, Any] = field(default_factory=dict)
    is_rescan: bool = False
    # Token from the claim; the background body only writes while the Scan still carries it
    attempt_id: Optional[str] = None

    def to_kwargs(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ScanTaskHandle:
    task_id: str
    backend: str


class ScanDispatcher(ABC):
    backend: str = "unknown"

    @abstractmethod
    def dispatch(self, job: ScanJob) -> ScanTaskHandle:
        ...


class CeleryScanDispatcher(ScanDispatcher):
    backend = "celery"

    def dispatch(self, job: ScanJob) -> ScanTaskHandle:
        # Avoid circular import: tasks imports the orchestrator
        from app.features.scan.workers.tasks import run_accessibility_scan

        async_result = run_accessibility_scan.apply_async(kwargs=job.to_kwargs(), queue=SCAN_QUEUE)
        logger.info(f"Queued scan {job.scan_id} as Celery task {async_result.id}")
        return ScanTaskHandle(task_id=async_result.id, backend=self.backend)


class LocalScanDispatcher(ScanDispatcher):
    """
    Runs scans on the current event loop.

    Useful for development and single-process deployments. Tasks keep a
    strong reference in the registry so they are not garbage collected
    mid-run; the done-callback drops the handle and logs the outcome.
    """

    backend = "local"

    def __init__(self, runner: Callable[[ScanJob], Awaitable[Any]]):
        self.runner = runner
        self._tasks: Dict[str, asyncio.Task] = {}

    def dispatch(self, job: ScanJob) -> ScanTaskHandle:
        task_id = f"local-{uuid7()}"
        task = asyncio.get_running_loop().create_task(self.runner(job), name=task_id)
        self._tasks[task_id] = task
        task.add_done_callback(partial(self._on_done, task_id, job.scan_id))
        logger.info(f"Started local task {task_id} for scan {job.scan_id}")
        return ScanTaskHandle(task_id=task_id, backend=self.backend)

    def _on_done(self, task_id: str, scan_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(task_id, None)
        if task.cancelled():
            logger.warning(f"Local task {task_id} for scan {scan_id} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Local task {task_id} for scan {scan_id} crashed: {exc}", exc_info=exc)
        else:
            logger.info(f"Local task {task_id} for scan {scan_id} finished")

    def get(self, task_id: str) -> Optional[asyncio.Task]:
        return self._tasks.get(task_id)

    @property
    def active_task_ids(self) -> List[str]:
        return list(self._tasks)

    async def drain(self) -> None:
        """Wait for every running task; called on shutdown."""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
