"""
Rescan reconciliation.

A rescan produces a fresh list of findings for a URL whose previous findings
are already stored under the same Scan. Instead of wiping and re-inserting,
the two sets are matched by identity key (url, message, element, severity):

- new keys are inserted,
- vanished keys are deleted (the issue was fixed),
- matching keys keep their id and created_at and only get the mutable
  columns patched when those changed.

The three operation sets are applied as one unit of work.
"""
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from app.features.scan.models.result import Result
from app.features.scan.schemas.scan import FindingData, IdentityKey, ResultDiff, ResultPatch, identity_key
from app.features.scan.services.repository import ScanRepository
from app.platform.db.base import utcnow
from app.platform.logger import get_logger

logger = get_logger(__name__)

# Columns that may change on a finding without changing its identity
MUTABLE_FIELDS = ("help", "impact", "tags", "element_path", "details")


def _stored_key(result: Result) -> IdentityKey:
    return identity_key(result.url, result.message, result.element, result.severity)


def _normalize(field: str, value):
    # Stored details default to {}, stored tags to []
    if field == "details":
        return value or {}
    if field == "tags":
        return list(value or [])
    return value


def _changed_fields(existing: Result, incoming: FindingData) -> Dict[str, object]:
    changes = {}
    for field in MUTABLE_FIELDS:
        old = _normalize(field, getattr(existing, field))
        new = _normalize(field, getattr(incoming, field))
        # Tags compare as ordered lists: a reorder counts as a change
        if old != new:
            changes[field] = new
    return changes


def compute_diff(
    existing: Sequence[Result],
    incoming: Sequence[FindingData],
    now: Optional[datetime] = None,
) -> ResultDiff:
    """
    Pure diff between stored results and freshly analyzed findings.

    Stored rows sharing a key (identical snippets on one page) are handled as
    a group and never removed just for being duplicates. Each row is compared
    with the incoming duplicate at the same position, or with the last one.
    """
    now = now or utcnow()

    existing_by_key: Dict[IdentityKey, List[Result]] = {}
    for result in existing:
        existing_by_key.setdefault(_stored_key(result), []).append(result)

    incoming_by_key: Dict[IdentityKey, List[FindingData]] = {}
    for finding in incoming:
        incoming_by_key.setdefault(finding.identity_key(), []).append(finding)

    # Later duplicates in the incoming list win, position of the first is kept
    to_add = [group[-1] for key, group in incoming_by_key.items() if key not in existing_by_key]
    to_remove = [
        result.id
        for key, group in existing_by_key.items()
        if key not in incoming_by_key
        for result in group
    ]

    to_update = []
    for key, group in existing_by_key.items():
        findings = incoming_by_key.get(key)
        if not findings:
            continue
        for position, result in enumerate(group):
            finding = findings[position] if position < len(findings) else findings[-1]
            changes = _changed_fields(result, finding)
            if changes:
                changes["updated_at"] = now
                to_update.append(ResultPatch(id=result.id, changes=changes))

    return ResultDiff(to_add=to_add, to_remove=to_remove, to_update=to_update)


async def apply_diff(repo: ScanRepository, scan_id: str, diff: ResultDiff) -> None:
    """
    Apply a diff atomically: removals, additions and patches commit together
    or not at all.
    """
    if diff.is_empty:
        return
    try:
        removed = await repo.bulk_delete_results(diff.to_remove)
        added = await repo.bulk_insert_results(scan_id, diff.to_add)
        updated = await repo.bulk_update_results(diff.to_update)
        await repo.commit()
    except Exception:
        await repo.rollback()
        logger.error(f"Reconciliation rolled back for scan {scan_id}", exc_info=True)
        raise

    logger.info(f"Scan {scan_id} reconciled: +{added} -{removed} ~{updated}")


async def reconcile(repo: ScanRepository, scan_id: str, incoming: Sequence[FindingData]) -> ResultDiff:
    """Load the stored results of a scan, diff them against incoming and apply."""
    existing = await repo.list_results_for_scan(scan_id)
    logger.info(f"Reconciling scan {scan_id}: {len(existing)} stored, {len(incoming)} incoming")

    diff = compute_diff(existing, incoming)
    logger.info(
        f"Rescan diff for scan {scan_id}: add={len(diff.to_add)} "
        f"remove={len(diff.to_remove)} update={len(diff.to_update)}"
    )
    await apply_diff(repo, scan_id, diff)
    return diff
