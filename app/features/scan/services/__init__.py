"""
Scan Services

Organized by responsibility:

1. analysis/ - Strategies that turn a URL into findings
   - simple_checker.py: httpx + BeautifulSoup rule checks
   - browser_checker.py: headless Chrome + axe-core
   - html_validator.py: Nu HTML Checker
   - pipeline.py: tries the strategies in order, first success wins

2. orchestrator.py - Scan lifecycle: claim, dispatch, analyze, persist, finish

3. reconciliation.py - Rescan diff (add / remove / update) applied in one transaction

4. repository.py - All SQL for scans and results; flushes, never commits

5. results.py - Filtering, sorting, deduplication and paging of stored results
"""
