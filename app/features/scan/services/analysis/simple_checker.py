from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

import httpx
from bs4 import BeautifulSoup, Tag

from app.features.scan.models.result import Severity
from app.features.scan.schemas.scan import AnalysisResult, ComplianceOptions, FindingData, summarize
from app.features.scan.services.analysis.base import AccessibilityAnalyzer, build_http_client, fetch_html
from app.platform.logger import get_logger

logger = get_logger(__name__)

HELP_URL = "https://dequeuniversity.com/rules/axe/4.10/{rule_id}"
SNIPPET_MAX_LENGTH = 250

UNLABELLED_INPUT_TYPES = {"hidden", "submit", "button", "reset", "image"}


@dataclass
class Rule:
    id: str
    message: str
    help: str
    severity: Severity
    tags: List[str]
    check: Callable[[BeautifulSoup], Iterable[Tag]] = field(repr=False)

    def applies(self, enabled_tags: List[str]) -> bool:
        return any(tag in enabled_tags for tag in self.tags)


def _text(tag: Tag) -> str:
    return " ".join(tag.get_text(" ", strip=True).split())


def _has_accessible_name(tag: Tag) -> bool:
    return bool(
        _text(tag)
        or (tag.get("aria-label") or "").strip()
        or (tag.get("aria-labelledby") or "").strip()
        or (tag.get("title") or "").strip()
    )


def css_path(tag: Tag) -> str:
    """Selector from the document root down to tag, stopping early at an id."""
    parts = []
    node = tag
    while isinstance(node, Tag) and node.name not in ("[document]", "html"):
        if node.get("id"):
            parts.append(f"#{node['id']}")
            break
        siblings = node.parent.find_all(node.name, recursive=False) if node.parent else []
        if len(siblings) > 1:
            # Tag equality is structural, identical siblings need an identity match
            position = next(i for i, sibling in enumerate(siblings) if sibling is node) + 1
            parts.append(f"{node.name}:nth-of-type({position})")
        else:
            parts.append(node.name)
        node = node.parent
    return " > ".join(reversed(parts)) or tag.name


def snippet(tag: Tag) -> str:
    markup = str(tag)
    if len(markup) > SNIPPET_MAX_LENGTH:
        markup = markup[:SNIPPET_MAX_LENGTH] + "..."
    return markup


# ─────────────────────────────────────────────────────────────
# Rule checks
# ─────────────────────────────────────────────────────────────

def _images_missing_alt(soup: BeautifulSoup) -> Iterable[Tag]:
    for img in soup.find_all("img"):
        if img.get("alt") is None and img.get("role") not in ("presentation", "none"):
            yield img


def _inputs_missing_label(soup: BeautifulSoup) -> Iterable[Tag]:
    labelled_ids = {label.get("for") for label in soup.find_all("label") if label.get("for")}
    for control in soup.find_all(["input", "select", "textarea"]):
        if (control.get("type") or "").lower() in UNLABELLED_INPUT_TYPES:
            continue
        if (control.get("aria-label") or "").strip() or (control.get("aria-labelledby") or "").strip():
            continue
        if (control.get("title") or "").strip():
            continue
        if control.get("id") and control.get("id") in labelled_ids:
            continue
        if control.find_parent("label") is not None:
            continue
        yield control


def _buttons_missing_name(soup: BeautifulSoup) -> Iterable[Tag]:
    for button in soup.find_all("button"):
        if _has_accessible_name(button):
            continue
        if any((img.get("alt") or "").strip() for img in button.find_all("img")):
            continue
        yield button
    for button in soup.find_all("input", attrs={"type": ["button", "submit", "reset"]}):
        if (button.get("value") or "").strip() or _has_accessible_name(button):
            continue
        # submit/reset fall back to a browser-provided label
        if (button.get("type") or "").lower() in ("submit", "reset") and button.get("value") is None:
            continue
        yield button


def _links_missing_name(soup: BeautifulSoup) -> Iterable[Tag]:
    for link in soup.find_all("a", href=True):
        if _has_accessible_name(link):
            continue
        if any((img.get("alt") or "").strip() for img in link.find_all("img")):
            continue
        yield link


def _empty_headings(soup: BeautifulSoup) -> Iterable[Tag]:
    for heading in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"]):
        if not _has_accessible_name(heading):
            yield heading


def _html_missing_lang(soup: BeautifulSoup) -> Iterable[Tag]:
    html = soup.find("html")
    if html is not None and not (html.get("lang") or "").strip():
        yield html


def _missing_document_title(soup: BeautifulSoup) -> Iterable[Tag]:
    title = soup.find("title")
    if title is None or not _text(title):
        yield soup.find("head") or soup.find("html") or soup


def _skipped_heading_levels(soup: BeautifulSoup) -> Iterable[Tag]:
    previous = None
    for heading in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"]):
        level = int(heading.name[1])
        if previous is not None and level > previous + 1:
            yield heading
        previous = level


def _missing_h1(soup: BeautifulSoup) -> Iterable[Tag]:
    if soup.find("h1") is None and soup.find(attrs={"role": "heading", "aria-level": "1"}) is None:
        yield soup.find("body") or soup.find("html") or soup


def _duplicate_ids(soup: BeautifulSoup) -> Iterable[Tag]:
    seen = set()
    for tag in soup.find_all(id=True):
        if tag["id"] in seen:
            yield tag
        seen.add(tag["id"])


def _viewport_blocks_zoom(soup: BeautifulSoup) -> Iterable[Tag]:
    for meta in soup.find_all("meta", attrs={"name": "viewport"}):
        content = (meta.get("content") or "").replace(" ", "").lower()
        settings_map = dict(
            item.split("=", 1) for item in content.split(",") if "=" in item
        )
        if settings_map.get("user-scalable") in ("no", "0"):
            yield meta
            continue
        try:
            if float(settings_map.get("maximum-scale", "10")) < 2:
                yield meta
        except ValueError:
            continue


RULES = [
    Rule("image-alt", "Ensures <img> elements have alternate text or a role of none or presentation",
         "Images must have alternate text", Severity.critical,
         ["wcag2a", "wcag111", "section508"], _images_missing_alt),
    Rule("label", "Ensures every form element has a label",
         "Form elements must have labels", Severity.critical,
         ["wcag2a", "wcag412", "section508"], _inputs_missing_label),
    Rule("button-name", "Ensures buttons have discernible text",
         "Buttons must have discernible text", Severity.critical,
         ["wcag2a", "wcag412", "section508"], _buttons_missing_name),
    Rule("link-name", "Ensures links have discernible text",
         "Links must have discernible text", Severity.serious,
         ["wcag2a", "wcag244", "wcag412", "section508"], _links_missing_name),
    Rule("html-has-lang", "Ensures every HTML document has a lang attribute",
         "<html> element must have a lang attribute", Severity.serious,
         ["wcag2a", "wcag311"], _html_missing_lang),
    Rule("document-title", "Ensures each HTML document contains a non-empty <title> element",
         "Documents must have <title> element to aid in navigation", Severity.serious,
         ["wcag2a", "wcag242"], _missing_document_title),
    Rule("meta-viewport", "Ensures <meta name=\"viewport\"> does not disable text scaling and zooming",
         "Zooming and scaling must not be disabled", Severity.critical,
         ["wcag2aa", "wcag144"], _viewport_blocks_zoom),
    Rule("duplicate-id", "Ensures every id attribute value is unique",
         "id attribute value must be unique", Severity.minor,
         ["wcag2a", "wcag411"], _duplicate_ids),
    Rule("empty-heading", "Ensures headings have discernible text",
         "Headings should not be empty", Severity.minor,
         ["best-practice"], _empty_headings),
    Rule("heading-order", "Ensures the order of headings is semantically correct",
         "Heading levels should only increase by one", Severity.moderate,
         ["best-practice"], _skipped_heading_levels),
    Rule("page-has-heading-one", "Ensures that the page, or at least one of its frames contains a level-one heading",
         "Page should contain a level-one heading", Severity.moderate,
         ["best-practice"], _missing_h1),
]


class SimpleChecker(AccessibilityAnalyzer):
    """
    Lightweight static checker: one HTTP GET and a BeautifulSoup pass.

    Fast and dependency-light, but blind to anything rendered by JavaScript
    and to computed styles such as colour contrast.
    """

    name = "simple"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, rules: Optional[List[Rule]] = None):
        self.transport = transport
        self.rules = rules if rules is not None else RULES

    async def _analyze(self, url: str, options: ComplianceOptions) -> AnalysisResult:
        async with build_http_client(self.transport) as client:
            html = await fetch_html(client, url)

        findings = self.check_html(url, html, options)
        return AnalysisResult(results=findings, summary=summarize(findings))

    def check_html(self, url: str, html: str, options: ComplianceOptions) -> List[FindingData]:
        soup = BeautifulSoup(html, "html.parser")
        enabled_tags = options.rule_tags()
        findings = []

        for rule in self.rules:
            if not rule.applies(enabled_tags):
                continue
            for tag in rule.check(soup):
                findings.append(
                    FindingData(
                        url=url,
                        message=rule.message,
                        element=snippet(tag) if isinstance(tag, Tag) else None,
                        severity=rule.severity,
                        impact=rule.severity.value,
                        help=rule.help,
                        tags=list(rule.tags),
                        element_path=css_path(tag) if isinstance(tag, Tag) else None,
                        details={"ruleId": rule.id, "helpUrl": HELP_URL.format(rule_id=rule.id)},
                    )
                )

        logger.info(f"Simple checker found {len(findings)} issues on {url}")
        return findings
