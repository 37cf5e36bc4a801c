"""
Remediation time estimates shown on the dashboard and in exports.

Durations are rendered as "45m", "3h 20m" or "2d 4h", counting 8-hour
working days.
"""
import math
from typing import Iterable, Optional

from app.features.scan.models.result import Severity

MINUTES_PER_HOUR = 60
MINUTES_PER_DAY = 8 * MINUTES_PER_HOUR

# Project-level estimate, per issue
PROJECT_MINUTES_PER_ISSUE = {
    Severity.critical: 120,
    Severity.serious: 90,
    Severity.moderate: 45,
    Severity.minor: 15,
}

# Finding-level estimate, before adjustments
FINDING_BASE_MINUTES = {
    Severity.critical: 60,
    Severity.serious: 30,
    Severity.moderate: 15,
    Severity.minor: 5,
}
DEFAULT_FINDING_MINUTES = 30

# First matching group wins
MESSAGE_FACTORS = (
    (("color contrast", "contrast"), 0.2),
    (("alt", "alternative text"), 0.05),
    (("heading", "structure"), 1.0),
    (("keyboard", "focus"), 3.0),
    (("aria", "role"), 2.0),
)
STRICT_TAGS = ("wcag2aaa", "section508")
STRICT_FACTOR = 1.1


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_duration(minutes: float) -> str:
    if minutes < MINUTES_PER_HOUR:
        return f"{_round_half_up(minutes)}m"
    if minutes < MINUTES_PER_DAY:
        hours = int(minutes // MINUTES_PER_HOUR)
        remaining = _round_half_up(minutes % MINUTES_PER_HOUR)
        return f"{hours}h {remaining}m" if remaining > 0 else f"{hours}h"
    days = int(minutes // MINUTES_PER_DAY)
    hours = int((minutes % MINUTES_PER_DAY) // MINUTES_PER_HOUR)
    return f"{days}d {hours}h" if hours > 0 else f"{days}d"


def project_fix_minutes(critical: int = 0, serious: int = 0, moderate: int = 0, minor: int = 0) -> int:
    return (
        critical * PROJECT_MINUTES_PER_ISSUE[Severity.critical]
        + serious * PROJECT_MINUTES_PER_ISSUE[Severity.serious]
        + moderate * PROJECT_MINUTES_PER_ISSUE[Severity.moderate]
        + minor * PROJECT_MINUTES_PER_ISSUE[Severity.minor]
    )


def estimate_project_time(critical: int = 0, serious: int = 0, moderate: int = 0, minor: int = 0) -> str:
    return format_duration(project_fix_minutes(critical, serious, moderate, minor))


def finding_fix_minutes(severity, message: Optional[str], tags: Optional[Iterable[str]]) -> float:
    """Base time for the severity, scaled by the kind of issue and how strict its rule set is."""
    try:
        minutes = FINDING_BASE_MINUTES[Severity(str(getattr(severity, "value", severity)).lower())]
    except ValueError:
        minutes = DEFAULT_FINDING_MINUTES

    text = (message or "").lower()
    for keywords, factor in MESSAGE_FACTORS:
        if any(keyword in text for keyword in keywords):
            minutes *= factor
            break

    tags = list(tags or [])
    if any(tag in tags for tag in STRICT_TAGS):
        minutes *= STRICT_FACTOR
    return minutes
