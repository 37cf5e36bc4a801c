import pytest

from app.features.projects.services.fix_time import (
    estimate_project_time,
    finding_fix_minutes,
    format_duration,
    project_fix_minutes,
)
from app.features.scan.models.scan import ScanStatus

STATS = "/api/v1/dashboard/stats"


# ============================================================================
# Fix time estimates
# ============================================================================

@pytest.mark.parametrize(
    "minutes, expected",
    [
        (0, "0m"),
        (44.5, "45m"),
        (60, "1h"),
        (200, "3h 20m"),
        (479, "7h 59m"),
        (480, "1d"),
        (1200, "2d 4h"),
    ],
)
def test_format_duration(minutes, expected):
    assert format_duration(minutes) == expected


def test_project_estimate_weights_each_severity():
    assert project_fix_minutes(critical=1, serious=1, moderate=1, minor=1) == 270
    assert estimate_project_time(critical=2, serious=1) == "5h 30m"
    assert estimate_project_time() == "0m"


@pytest.mark.parametrize(
    "severity, message, tags, expected",
    [
        ("critical", "Images must have alternate text", [], 3.0),
        ("serious", "Elements must meet minimum color contrast ratio thresholds", ["section508"], 6.6),
        ("moderate", "Heading levels should only increase by one", [], 15.0),
        ("serious", "Element must be keyboard focusable", [], 90.0),
        ("minor", "id attribute value must be unique", ["wcag2aaa"], 5.5),
        ("unknown", "Something else", [], 30.0),
    ],
)
def test_finding_fix_minutes(severity, message, tags, expected):
    assert finding_fix_minutes(severity, message, tags) == pytest.approx(expected)


# ============================================================================
# GET /dashboard/stats
# ============================================================================

async def test_dashboard_uses_each_projects_latest_completed_scan(client, factory):
    shop = await factory.project(name="Shop", urls=("https://shop.com",))
    await factory.scan(shop, url="https://shop.com", age_minutes=90,
                       total_issues=10, critical_issues=10, serious_issues=0, moderate_issues=0, minor_issues=0)
    await factory.scan(shop, url="https://shop.com", age_minutes=30,
                       total_issues=3, critical_issues=2, serious_issues=1, moderate_issues=0, minor_issues=0)
    await factory.scan(shop, url="https://shop.com", status=ScanStatus.in_progress, age_minutes=0)
    await factory.project(name="Blog", urls=("https://blog.com",))

    response = await client.get(STATS)

    assert response.status_code == 200
    data = response.json()["data"]

    overview = data["overview"]
    assert overview["totalProjects"] == 2
    assert overview["totalScans"] == 1
    assert overview["totalIssues"] == 3
    assert overview["criticalIssues"] == 2
    assert overview["seriousIssues"] == 1
    assert overview["totalEstimatedTime"] == "5h 30m"
    assert overview["averageIssuesPerProject"] == 2
    assert overview["lastScanDate"] is not None

    shop_stats, blog_stats = data["projects"]
    assert shop_stats["name"] == "Shop"
    assert shop_stats["totalIssues"] == 3
    assert shop_stats["estimatedTime"] == "5h 30m"
    assert shop_stats["scanStatus"] == "completed"
    assert shop_stats["lastScan"] == overview["lastScanDate"]

    assert blog_stats["name"] == "Blog"
    assert blog_stats["totalIssues"] == 0
    assert blog_stats["estimatedTime"] == "0m"
    assert blog_stats["scanStatus"] == "no_scans"
    assert blog_stats["lastScan"] is None


async def test_dashboard_sorts_projects_by_issue_count(client, factory):
    for name, total in (("Few", 1), ("Many", 7), ("Some", 4)):
        project = await factory.project(name=name, urls=(f"https://{name.lower()}.com",))
        await factory.scan(project, url=f"https://{name.lower()}.com",
                           total_issues=total, minor_issues=total)

    data = (await client.get(STATS)).json()["data"]

    assert [p["name"] for p in data["projects"]] == ["Many", "Some", "Few"]
    assert data["overview"]["averageIssuesPerProject"] == 4


async def test_dashboard_without_projects(client):
    data = (await client.get(STATS)).json()["data"]

    assert data["projects"] == []
    assert data["overview"]["totalProjects"] == 0
    assert data["overview"]["averageIssuesPerProject"] == 0
    assert data["overview"]["lastScanDate"] is None
