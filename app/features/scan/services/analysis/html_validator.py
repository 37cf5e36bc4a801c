from typing import Any, Dict, List, Optional

import httpx

from app.features.scan.models.result import Severity
from app.features.scan.schemas.scan import AnalysisResult, ComplianceOptions, FindingData, summarize
from app.features.scan.services.analysis.base import AccessibilityAnalyzer, build_http_client, fetch_html
from app.platform.config import settings
from app.platform.exceptions import AnalysisError
from app.platform.logger import get_logger

logger = get_logger(__name__)

# Markup errors fall under WCAG 2.0 SC 4.1.1 (Parsing)
VALIDATION_TAGS = ["wcag2a", "wcag411", "html-validation"]
VALIDATION_HELP = "Markup must conform to the HTML specification"


class HtmlValidatorChecker(AccessibilityAnalyzer):
    """
    Last-resort strategy: submits the raw markup to a Nu HTML Checker
    instance. Only needs two HTTP calls, so it works where no browser is
    available and the page defeats the static checker.
    """

    name = "html-validator"

    def __init__(self, validator_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.validator_url = validator_url or settings.HTML_VALIDATOR_URL
        self.transport = transport

    async def _analyze(self, url: str, options: ComplianceOptions) -> AnalysisResult:
        async with build_http_client(self.transport) as client:
            html = await fetch_html(client, url)
            try:
                response = await client.post(
                    self.validator_url,
                    content=html.encode("utf-8"),
                    headers={"Content-Type": "text/html; charset=utf-8"},
                )
            except httpx.HTTPError as e:
                raise AnalysisError(f"HTML validator unreachable: {e}") from e

        if response.status_code >= 400:
            raise AnalysisError(f"HTML validator responded with HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as e:
            raise AnalysisError("HTML validator returned invalid JSON") from e

        findings = self.normalize_messages(url, payload.get("messages", []))
        logger.info(f"HTML validator found {len(findings)} issues on {url}")
        return AnalysisResult(results=findings, summary=summarize(findings))

    @staticmethod
    def normalize_messages(url: str, messages: List[Dict[str, Any]]) -> List[FindingData]:
        findings = []
        for message in messages:
            kind = message.get("type")
            if kind == "non-document-error":
                raise AnalysisError(f"HTML validator could not check {url}: {message.get('message')}")
            if kind == "error":
                severity = Severity.serious
            elif kind == "info" and message.get("subType") == "warning":
                severity = Severity.minor
            else:
                continue

            line = message.get("lastLine")
            path = None
            if line is not None:
                path = f"line {line}, column {message.get('firstColumn', message.get('lastColumn'))}"

            findings.append(
                FindingData(
                    url=url,
                    message=message.get("message", "").strip(),
                    element=(message.get("extract") or None),
                    severity=severity,
                    impact=severity.value,
                    help=VALIDATION_HELP,
                    tags=list(VALIDATION_TAGS),
                    element_path=path,
                    details={
                        "type": kind,
                        "subType": message.get("subType"),
                        "lastLine": line,
                        "firstColumn": message.get("firstColumn"),
                        "lastColumn": message.get("lastColumn"),
                    },
                )
            )
        return findings
