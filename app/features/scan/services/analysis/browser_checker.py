import asyncio
import os
from typing import Any, Dict, List, Optional

from selenium import webdriver
from selenium.common.exceptions import JavascriptException, TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service

from app.features.scan.models.result import Severity
from app.features.scan.schemas.scan import AnalysisResult, ComplianceOptions, FindingData, summarize
from app.features.scan.services.analysis.base import AccessibilityAnalyzer
from app.platform.config import settings
from app.platform.exceptions import AnalysisError
from app.platform.logger import get_logger

logger = get_logger(__name__)

# Resolves through the async-script callback with either the axe results or {error}
AXE_RUN_SCRIPT = """
const tags = arguments[0];
const done = arguments[arguments.length - 1];
if (!window.axe) { done({error: 'axe not injected'}); return; }
window.axe.run(document, {runOnly: {type: 'tag', values: tags}, resultTypes: ['violations']})
  .then(results => done({violations: results.violations}))
  .catch(err => done({error: String(err)}));
"""


class BrowserAxeChecker(AccessibilityAnalyzer):
    """
    Full browser run: headless Chrome renders the page and axe-core audits
    the live DOM. Slow, but sees scripted content and computed styles.
    """

    name = "browser"

    def __init__(self, axe_script_path: Optional[str] = None, page_load_timeout: Optional[int] = None):
        self.axe_script_path = axe_script_path or settings.AXE_SCRIPT_PATH
        self.page_load_timeout = page_load_timeout or settings.BROWSER_PAGE_LOAD_TIMEOUT

    async def _analyze(self, url: str, options: ComplianceOptions) -> AnalysisResult:
        axe_source = self._load_axe_source()
        # Selenium is blocking, keep it off the event loop
        raw = await asyncio.to_thread(self._run_axe, url, axe_source, options.rule_tags())
        findings = self.normalize_violations(url, raw.get("violations", []))
        logger.info(f"Browser checker found {len(findings)} issues on {url}")
        return AnalysisResult(results=findings, summary=summarize(findings))

    def _load_axe_source(self) -> str:
        if not self.axe_script_path:
            raise AnalysisError("axe-core script not configured (AXE_SCRIPT_PATH)")
        if not os.path.exists(self.axe_script_path):
            raise AnalysisError(f"axe-core script not found at {self.axe_script_path}")
        with open(self.axe_script_path, "r", encoding="utf-8") as f:
            return f.read()

    @staticmethod
    def build_driver() -> webdriver.Chrome:
        chrome_options = Options()
        chrome_options.add_argument('--headless=new')
        chrome_options.add_argument('--no-sandbox')
        chrome_options.add_argument('--disable-dev-shm-usage')
        chrome_options.add_argument(f'--user-agent={settings.USER_AGENT}')

        if settings.CHROMEDRIVER_PATH:
            driver_service = Service(executable_path=settings.CHROMEDRIVER_PATH)
            return webdriver.Chrome(service=driver_service, options=chrome_options)
        return webdriver.Chrome(options=chrome_options)

    def _run_axe(self, url: str, axe_source: str, tags: List[str]) -> Dict[str, Any]:
        driver = None
        try:
            driver = self.build_driver()
            driver.set_page_load_timeout(self.page_load_timeout)
            driver.set_script_timeout(self.page_load_timeout)
            driver.get(url)
            driver.execute_script(axe_source)
            raw = driver.execute_async_script(AXE_RUN_SCRIPT, tags)
        except TimeoutException as e:
            raise AnalysisError(f"Timeout loading {url} in browser: {e.msg}") from e
        except JavascriptException as e:
            raise AnalysisError(f"axe-core failed on {url}: {e.msg}") from e
        except WebDriverException as e:
            raise AnalysisError(f"WebDriver error: {e.msg}") from e
        finally:
            if driver:
                try:
                    driver.quit()
                except WebDriverException:
                    logger.warning("Failed to quit Chrome driver", exc_info=True)

        if not isinstance(raw, dict):
            raise AnalysisError("axe-core returned no results")
        if raw.get("error"):
            raise AnalysisError(f"axe-core failed on {url}: {raw['error']}")
        return raw

    @staticmethod
    def normalize_violations(url: str, violations: List[Dict[str, Any]]) -> List[FindingData]:
        """One finding per violating node, in axe's reporting order."""
        findings = []
        for violation in violations:
            for node in violation.get("nodes", []):
                impact = node.get("impact") or violation.get("impact") or Severity.moderate.value
                try:
                    severity = Severity(impact)
                except ValueError:
                    severity = Severity.moderate
                findings.append(
                    FindingData(
                        url=url,
                        message=violation.get("description") or violation.get("help") or violation.get("id", ""),
                        element=node.get("html"),
                        severity=severity,
                        impact=impact,
                        help=violation.get("help"),
                        tags=list(violation.get("tags", [])),
                        element_path=_target_path(node.get("target")),
                        details={
                            "ruleId": violation.get("id"),
                            "helpUrl": violation.get("helpUrl"),
                            "failureSummary": node.get("failureSummary"),
                        },
                    )
                )
        return findings


def _target_path(target) -> Optional[str]:
    # Targets inside iframes/shadow roots are nested selector lists
    if not target:
        return None
    parts = []
    for item in target:
        if isinstance(item, list):
            parts.append(" >>> ".join(str(selector) for selector in item))
        else:
            parts.append(str(item))
    return " ".join(parts)
