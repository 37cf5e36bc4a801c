from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from app.features.scan.schemas.scan import AnalysisResult, ComplianceOptions
from app.features.scan.services.analysis.base import AccessibilityAnalyzer, StrategyFailure
from app.features.scan.services.analysis.browser_checker import BrowserAxeChecker
from app.features.scan.services.analysis.html_validator import HtmlValidatorChecker
from app.features.scan.services.analysis.simple_checker import SimpleChecker
from app.platform.exceptions import AnalysisError, AnalysisExhaustedError
from app.platform.logger import get_logger

logger = get_logger(__name__)


@dataclass
class AnalysisOutcome:
    method: str
    result: AnalysisResult
    failures: List[StrategyFailure] = field(default_factory=list)


class AnalysisPipeline:
    """
    Tries strategies in preference order; the first one that succeeds wins.

    Failed attempts are collected so the final error names every strategy
    and its reason.
    """

    def __init__(self, strategies: Sequence[AccessibilityAnalyzer]):
        if not strategies:
            raise ValueError("AnalysisPipeline needs at least one strategy")
        self.strategies = list(strategies)

    async def run(self, url: str, options: ComplianceOptions) -> AnalysisOutcome:
        failures: List[StrategyFailure] = []

        for strategy in self.strategies:
            logger.info(f"Attempting {strategy.name} analysis for {url}")
            try:
                result = await strategy.analyze(url, options)
            except AnalysisError as e:
                logger.warning(f"{strategy.name} analysis failed for {url}: {e}")
                failures.append(StrategyFailure(strategy=strategy.name, reason=str(e)))
                continue

            logger.info(f"{strategy.name} analysis succeeded for {url}, found {len(result.results)} issues")
            return AnalysisOutcome(method=strategy.name, result=result, failures=failures)

        logger.error(f"All analysis methods failed for {url}")
        raise AnalysisExhaustedError(failures)


def default_pipeline(strategies: Optional[Sequence[AccessibilityAnalyzer]] = None) -> AnalysisPipeline:
    """simple → browser → html-validator."""
    return AnalysisPipeline(strategies or [SimpleChecker(), BrowserAxeChecker(), HtmlValidatorChecker()])
