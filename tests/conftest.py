"""
Test configuration and fixtures for the A11y Dashboard API.

DATABASE_URL points at a throwaway SQLite file before anything under app/
is imported, because settings are read at import time. Every test gets
freshly created tables on its own NullPool engine, so no connection outlives
the test's event loop.
"""

import os
import tempfile
from datetime import timedelta
from itertools import count
from typing import List

test_db_path = tempfile.mktemp(suffix=".db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{test_db_path}"
os.environ["SCAN_DISPATCHER"] = "local"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.features.projects.models.project import Project, Url
from app.features.scan.dependencies.scan import get_scan_dispatcher
from app.features.scan.models.result import Result, Severity
from app.features.scan.models.scan import Scan, ScanStatus
from app.features.scan.workers.dispatcher import ScanDispatcher, ScanJob, ScanTaskHandle
from app.platform.db.base import utcnow
from app.platform.db.models import Base
from app.platform.db.session import get_db


class RecordingDispatcher(ScanDispatcher):
    """Remembers dispatched jobs instead of running them."""

    backend = "test"

    def __init__(self):
        self.jobs: List[ScanJob] = []
        self._ids = count(1)

    def dispatch(self, job: ScanJob) -> ScanTaskHandle:
        self.jobs.append(job)
        return ScanTaskHandle(task_id=f"test-task-{next(self._ids)}", backend=self.backend)


@pytest.fixture
async def engine():
    engine = create_async_engine(os.environ["DATABASE_URL"], poolclass=NullPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
async def client(session_factory, dispatcher):
    """HTTP client against the app with the test database and a recording dispatcher."""
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_scan_dispatcher] = lambda: dispatcher

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


class Factory:
    """Inserts rows for a test; every helper commits."""

    def __init__(self, db):
        self.db = db

    async def project(self, name="Marketing site", urls=("https://example.com",), compliance_options=None) -> Project:
        project = Project(name=name, compliance_options=compliance_options, urls=[Url(url=u) for u in urls])
        self.db.add(project)
        await self.db.commit()
        return project

    async def scan(self, project, url="https://example.com", status=ScanStatus.completed, age_minutes=0, **columns) -> Scan:
        scan = Scan(
            project_id=project.id,
            url=url,
            status=status,
            created_at=utcnow() - timedelta(minutes=age_minutes),
            **columns,
        )
        self.db.add(scan)
        await self.db.commit()
        return scan

    async def result(
        self,
        scan,
        message="Images must have alternate text",
        severity=Severity.critical,
        element='<img src="logo.png">',
        url=None,
        age_minutes=0,
        **columns,
    ) -> Result:
        columns.setdefault("tags", ["wcag2a", "wcag111"])
        columns.setdefault("details", {})
        result = Result(
            scan_id=scan.id,
            url=url or scan.url,
            message=message,
            severity=severity,
            element=element,
            created_at=utcnow() - timedelta(minutes=age_minutes),
            **columns,
        )
        self.db.add(result)
        await self.db.commit()
        return result


@pytest.fixture
def factory(db):
    return Factory(db)
