"""Markdown / HTML conversion helpers.

GitLab stores Markdown, Spira stores HTML.
"""

import re

import markdown
from bs4 import BeautifulSoup
from markdownify import markdownify

_WHITESPACE_RE = re.compile(r"\s+")


def markdown_to_html(text: str) -> str:
    """Render GitLab Markdown to HTML (inline HTML passes through)."""
    if not text:
        return ""
    return markdown.markdown(text, extensions=["fenced_code", "tables", "nl2br"])


def html_to_markdown(html: str) -> str:
    """Convert Spira rich text to Markdown."""
    if not html:
        return ""
    return markdownify(html, heading_style="ATX").strip()


def html_to_plain_text(html: str) -> str:
    """Strip tags and collapse whitespace."""
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text(" ")
    return _WHITESPACE_RE.sub(" ", text).strip()
