"""
Accessibility analysis strategies, in preference order:

1. static HTML checks (simple_checker.SimpleChecker)
2. headless Chrome + axe-core (browser_checker.BrowserAxeChecker)
3. Nu HTML Checker markup validation (html_validator.HtmlValidatorChecker)

pipeline.AnalysisPipeline tries them in sequence.
"""
from app.features.scan.services.analysis.base import AccessibilityAnalyzer, StrategyFailure
from app.features.scan.services.analysis.pipeline import AnalysisOutcome, AnalysisPipeline, default_pipeline

__all__ = ["AccessibilityAnalyzer", "StrategyFailure", "AnalysisOutcome", "AnalysisPipeline", "default_pipeline"]
