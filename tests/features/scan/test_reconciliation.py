from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from app.features.scan.models.result import Result, Severity
from app.features.scan.models.scan import ScanStatus
from app.features.scan.schemas.scan import FindingData, ResultDiff, ResultPatch
from app.features.scan.services.reconciliation import apply_diff, compute_diff, reconcile
from app.features.scan.services.repository import ScanRepository

NOW = datetime(2026, 1, 1, 12, 0, 0)


def stored(id, message, severity=Severity.critical, element="<img>", url="https://a.com", **columns):
    columns.setdefault("tags", [])
    return Result(id=id, scan_id="scan-1", url=url, message=message, element=element, severity=severity, **columns)


def finding(message, severity=Severity.critical, element="<img>", url="https://a.com", **fields):
    return FindingData(url=url, message=message, element=element, severity=severity, **fields)


# ============================================================================
# compute_diff
# ============================================================================

def test_worked_example_adds_new_issue_and_patches_help_in_place():
    existing = [stored("r1", "Missing alt", help="old")]
    incoming = [
        finding("Missing alt", help="new"),
        finding("Low contrast", severity=Severity.moderate, element="<p>"),
    ]

    diff = compute_diff(existing, incoming, now=NOW)

    assert [f.message for f in diff.to_add] == ["Low contrast"]
    assert diff.to_remove == []
    assert diff.to_update == [ResultPatch(id="r1", changes={"help": "new", "updated_at": NOW})]


def test_identical_content_produces_no_adds_or_removes():
    existing = [
        stored("r1", "Missing alt"),
        stored("r2", "Low contrast", severity=Severity.moderate, element="<p>"),
    ]
    incoming = [
        finding("Low contrast", severity=Severity.moderate, element="<p>"),
        finding("Missing alt"),
    ]

    diff = compute_diff(existing, incoming, now=NOW)

    assert diff.to_add == []
    assert diff.to_remove == []
    assert diff.to_update == []
    assert diff.is_empty


def test_empty_incoming_removes_everything():
    existing = [stored("r1", "Missing alt"), stored("r2", "Low contrast", element="<p>")]

    diff = compute_diff(existing, [], now=NOW)

    assert diff.to_add == []
    assert sorted(diff.to_remove) == ["r1", "r2"]
    assert diff.to_update == []


def test_empty_existing_adds_everything():
    incoming = [finding("Missing alt"), finding("Low contrast", element="<p>")]

    diff = compute_diff([], incoming, now=NOW)

    assert [f.message for f in diff.to_add] == ["Missing alt", "Low contrast"]
    assert diff.to_remove == []
    assert diff.to_update == []


def test_missing_element_matches_empty_element():
    existing = [stored("r1", "Document has no title", element=None)]
    incoming = [finding("Document has no title", element="")]

    assert compute_diff(existing, incoming, now=NOW).is_empty


def test_severity_change_is_a_different_finding():
    existing = [stored("r1", "Missing alt", severity=Severity.critical)]
    incoming = [finding("Missing alt", severity=Severity.serious)]

    diff = compute_diff(existing, incoming, now=NOW)

    assert [f.severity for f in diff.to_add] == [Severity.serious]
    assert diff.to_remove == ["r1"]


def test_later_incoming_duplicate_wins():
    incoming = [finding("Missing alt", help="first"), finding("Missing alt", help="second")]

    diff = compute_diff([], incoming, now=NOW)

    assert len(diff.to_add) == 1
    assert diff.to_add[0].help == "second"


def test_duplicate_stored_rows_survive_identical_content():
    existing = [
        stored("r1", "Missing alt", element_path="img:nth-of-type(1)"),
        stored("r2", "Missing alt", element_path="img:nth-of-type(2)"),
    ]
    incoming = [
        finding("Missing alt", element_path="img:nth-of-type(1)"),
        finding("Missing alt", element_path="img:nth-of-type(2)"),
    ]

    assert compute_diff(existing, incoming, now=NOW).is_empty


def test_duplicate_stored_rows_are_removed_together():
    existing = [stored("r1", "Missing alt"), stored("r2", "Missing alt")]

    diff = compute_diff(existing, [], now=NOW)

    assert diff.to_remove == ["r1", "r2"]


def test_extra_stored_duplicates_compare_against_the_last_incoming():
    existing = [stored("r1", "Missing alt", help="old"), stored("r2", "Missing alt", help="old")]

    diff = compute_diff(existing, [finding("Missing alt", help="new")], now=NOW)

    assert diff.to_remove == []
    assert [patch.id for patch in diff.to_update] == ["r1", "r2"]


def test_none_details_equals_empty_details():
    existing = [stored("r1", "Missing alt", details={})]
    incoming = [finding("Missing alt", details=None)]

    assert compute_diff(existing, incoming, now=NOW).is_empty


def test_tag_order_counts_as_a_change():
    existing = [stored("r1", "Missing alt", tags=["wcag2a", "wcag111"])]
    incoming = [finding("Missing alt", tags=["wcag111", "wcag2a"])]

    diff = compute_diff(existing, incoming, now=NOW)

    assert diff.to_update == [
        ResultPatch(id="r1", changes={"tags": ["wcag111", "wcag2a"], "updated_at": NOW})
    ]


def test_every_mutable_column_is_compared():
    existing = [stored("r1", "Missing alt", impact="critical", element_path="img", details={"ruleId": "image-alt"})]
    incoming = [
        finding(
            "Missing alt",
            impact="serious",
            element_path="main > img",
            details={"ruleId": "image-alt", "helpUrl": "https://example.com/rule"},
        )
    ]

    changes = compute_diff(existing, incoming, now=NOW).to_update[0].changes

    assert set(changes) == {"impact", "element_path", "details", "updated_at"}


# ============================================================================
# apply_diff / reconcile
# ============================================================================

async def test_reconcile_preserves_id_and_created_at_of_matched_rows(db, factory):
    project = await factory.project(urls=("https://a.com",))
    scan = await factory.scan(project, url="https://a.com")
    original = await factory.result(scan, message="Missing alt", element="<img>", help="old", age_minutes=30)
    gone = await factory.result(scan, message="Fixed issue", element="<div>")
    original_id, original_created = original.id, original.created_at

    repo = ScanRepository(db)
    diff = await reconcile(repo, scan.id, [
        finding("Missing alt", help="new"),
        finding("Low contrast", severity=Severity.moderate, element="<p>"),
    ])

    assert diff.to_remove == [gone.id]
    rows = {row.message: row for row in await repo.list_results_for_scan(scan.id)}
    assert set(rows) == {"Missing alt", "Low contrast"}
    assert rows["Missing alt"].id == original_id
    assert rows["Missing alt"].created_at == original_created
    assert rows["Missing alt"].help == "new"
    assert rows["Low contrast"].details == {}


async def test_reconcile_twice_is_a_no_op_the_second_time(db, factory):
    project = await factory.project(urls=("https://a.com",))
    scan = await factory.scan(project, url="https://a.com")
    await factory.result(scan, message="Missing alt", element="<img>", help="old")

    incoming = [
        finding("Missing alt", help="new", tags=["wcag2a"]),
        finding("Low contrast", severity=Severity.moderate, element="<p>", details={"ruleId": "color-contrast"}),
    ]
    repo = ScanRepository(db)

    first = await reconcile(repo, scan.id, incoming)
    second = await reconcile(repo, scan.id, incoming)

    assert not first.is_empty
    assert second.is_empty
    assert await repo.count_results_for_scan(scan.id) == 2


async def test_failed_apply_rolls_back_and_reraises():
    repo = AsyncMock(spec=ScanRepository)
    repo.bulk_insert_results.side_effect = RuntimeError("disk full")
    diff = ResultDiff(to_add=[finding("Missing alt")], to_remove=["r9"])

    with pytest.raises(RuntimeError, match="disk full"):
        await apply_diff(repo, "scan-1", diff)

    repo.rollback.assert_awaited_once()
    repo.commit.assert_not_awaited()


async def test_partial_diff_is_never_visible(db, factory):
    project = await factory.project(urls=("https://a.com",))
    scan = await factory.scan(project, url="https://a.com", status=ScanStatus.in_progress)
    kept = await factory.result(scan, message="Will be removed", element="<div>")
    scan_id, kept_id = scan.id, kept.id

    repo = ScanRepository(db)
    diff = ResultDiff(
        to_add=[finding("New issue")],
        to_remove=[kept_id],
        # Unknown column makes the update step fail after delete and insert ran
        to_update=[ResultPatch(id=kept_id, changes={"no_such_column": 1})],
    )

    with pytest.raises(Exception):
        await apply_diff(repo, scan_id, diff)

    rows = await repo.list_results_for_scan(scan_id)
    assert [row.id for row in rows] == [kept_id]


async def test_empty_diff_does_not_touch_the_session():
    repo = AsyncMock(spec=ScanRepository)

    await apply_diff(repo, "scan-1", ResultDiff())

    repo.commit.assert_not_awaited()
    repo.bulk_delete_results.assert_not_awaited()
