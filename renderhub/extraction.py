"""
Rule-driven content extraction from rendered HTML.

The browser hands over the final DOM as HTML; everything here works on
that snapshot with BeautifulSoup and turns the chosen content into Markdown.
"""

import logging
import re
import time
from typing import Any

from bs4 import BeautifulSoup, Tag
from markdownify import ATX, markdownify

from renderhub.models import ExtractionRules, MarkdownOptions, MetadataRule, MetadataRules

logger = logging.getLogger(__name__)

MIN_CONTENT_CHARS = 100
LAZY_IMAGE_ATTRS = ("data-src", "data-original")
STRIP_TAGS = ["script", "style", "noscript", "iframe"]
_DATE_RE = re.compile(r"(\d{4}[年\-/]\d{1,2}[月\-/]\d{1,2}日?)")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def remove_selectors(soup: BeautifulSoup, selectors: list[str]) -> None:
    for selector in selectors:
        for el in soup.select(selector):
            el.decompose()


def _apply_rule(soup: BeautifulSoup, rule: MetadataRule) -> str | None:
    value = None
    if rule.type == "meta":
        if rule.property:
            el = soup.find("meta", attrs={"property": rule.property})
        else:
            el = soup.find("meta", attrs={"name": rule.name})
        value = el.get("content") if el else None
    elif rule.type == "selector" and rule.selector:
        el = soup.select_one(rule.selector)
        if el is not None:
            value = el.get(rule.attribute) if rule.attribute else el.get_text()
    if isinstance(value, list):
        value = " ".join(value)
    if not value or not value.strip():
        return None
    value = value.strip()
    if rule.transform == "date":
        match = _DATE_RE.search(value)
        if match:
            value = match.group(1)
    return value


def extract_field(soup: BeautifulSoup, rules: list[MetadataRule] | None) -> str | None:
    """Return the first non-empty value produced by ``rules`` in priority order."""
    if not rules:
        return None
    for rule in sorted(rules, key=lambda r: r.priority):
        value = _apply_rule(soup, rule)
        if value:
            return value
    return None


def extract_metadata(soup: BeautifulSoup, rules: MetadataRules | None) -> dict[str, Any]:
    title = soup.title.get_text().strip() if soup.title else ""
    if rules is None:
        return {"title": title}
    return {
        "title": extract_field(soup, rules.title) or title,
        "author": extract_field(soup, rules.author),
        "publisher": extract_field(soup, rules.publisher),
        "publishDate": extract_field(soup, rules.publish_date),
        "thumbnail": extract_field(soup, rules.thumbnail),
        "description": extract_field(soup, rules.description),
    }


def select_content(soup: BeautifulSoup, selectors: list[str]) -> Tag:
    for selector in selectors:
        el = soup.select_one(selector)
        if el is not None and len(el.get_text().strip()) > MIN_CONTENT_CHARS:
            return el
    return soup.body or soup


def promote_lazy_images(root: Tag) -> None:
    for img in root.find_all("img"):
        lazy = next((img.get(attr) for attr in LAZY_IMAGE_ATTRS if img.get(attr)), None)
        if lazy:
            img["src"] = lazy


def _apply_image_attribute(root: Tag, attribute: str) -> None:
    for img in root.find_all("img"):
        src = img.get(attribute) or img.get("src") or ""
        if not src or src.startswith("data:"):
            img.decompose()
        else:
            img["src"] = src


def html_to_markdown(html: str, options: MarkdownOptions | None = None) -> str:
    options = options or MarkdownOptions()
    soup = BeautifulSoup(html, "html.parser")
    remove_selectors(soup, STRIP_TAGS)
    if options.image_attribute != "src":
        _apply_image_attribute(soup, options.image_attribute)
    markdown = markdownify(str(soup), heading_style=ATX, bullets="-")
    return _BLANK_LINES_RE.sub("\n\n", markdown).strip()


def extract_page(html: str, rules: ExtractionRules | None = None,
                 metadata_rules: MetadataRules | None = None,
                 markdown_options: MarkdownOptions | None = None) -> dict[str, Any]:
    rules = rules or ExtractionRules()
    stats: dict[str, float] = {}

    mark = time.monotonic()
    soup = BeautifulSoup(html, "html.parser")
    remove_selectors(soup, rules.remove_selectors)
    metadata = extract_metadata(soup, metadata_rules)
    content = select_content(soup, rules.content_selectors)
    promote_lazy_images(content)
    content_html = content.decode_contents()
    stats["extract"] = round((time.monotonic() - mark) * 1000)

    mark = time.monotonic()
    markdown = html_to_markdown(content_html, markdown_options)
    stats["convert"] = round((time.monotonic() - mark) * 1000)

    logger.debug("Extracted %d chars of HTML into %d chars of Markdown", len(content_html), len(markdown))
    return {
        "markdown": markdown,
        "metadata": metadata,
        "html_length": len(content_html),
        "markdown_length": len(markdown),
        "steps": stats,
    }
