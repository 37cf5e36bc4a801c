from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

from app.features.scan.schemas.scan import AnalysisResult, ComplianceOptions
from app.platform.config import settings
from app.platform.exceptions import AnalysisError


@dataclass(frozen=True)
class StrategyFailure:
    """Why one strategy could not analyze a URL."""
    strategy: str
    reason: str


class AccessibilityAnalyzer(ABC):
    """
    One way of producing accessibility findings for a URL.

    Subclasses implement _analyze(); analyze() guarantees that any failure
    reaches the caller as AnalysisError so the pipeline can fall back.
    """

    name: str = "unknown"

    async def analyze(self, url: str, options: ComplianceOptions) -> AnalysisResult:
        try:
            return await self._analyze(url, options)
        except AnalysisError:
            raise
        except Exception as e:
            raise AnalysisError(f"{type(e).__name__}: {e}") from e

    @abstractmethod
    async def _analyze(self, url: str, options: ComplianceOptions) -> AnalysisResult:
        ...


def build_http_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=settings.HTTP_TIMEOUT_SECONDS,
        follow_redirects=True,
        headers={"User-Agent": settings.USER_AGENT},
        transport=transport,
    )


async def fetch_html(client: httpx.AsyncClient, url: str) -> str:
    """GET a page and return its markup, raising AnalysisError for anything that isn't HTML."""
    try:
        response = await client.get(url)
    except httpx.TimeoutException as e:
        raise AnalysisError(f"Timeout fetching {url}: {e}") from e
    except httpx.HTTPError as e:
        raise AnalysisError(f"Could not fetch {url}: {e}") from e

    if response.status_code >= 400:
        raise AnalysisError(f"{url} responded with HTTP {response.status_code}")

    content_type = response.headers.get("content-type", "")
    if content_type and "html" not in content_type.lower():
        raise AnalysisError(f"{url} is not an HTML page (content-type {content_type})")

    return response.text
