"""Comment de-duplication and loop prevention.

Every comment we copy across is prefixed with a "Posted By: <author>" line.
That prefix is both the attribution shown to users and the marker that stops
the comment from being copied back to where it came from.
"""

import logging
from typing import Any, Iterable

from spira_gitlab_sync.services.formatting import html_to_markdown, html_to_plain_text, markdown_to_html

logger = logging.getLogger(__name__)

POSTED_BY = "Posted By: "


class CommentDeduplicator:
    """Decides whether a comment body still needs to be copied to the other system"""

    marker = POSTED_BY

    @staticmethod
    def normalize(body: str) -> str:
        """Render to plain text for comparison (Markdown and HTML both accepted)."""
        if not body:
            return ""
        return html_to_plain_text(markdown_to_html(body))

    @staticmethod
    def is_system(note: Any) -> bool:
        """GitLab system notes (state changes, milestone changes...) are never synced."""
        return bool(getattr(note, "system", False))

    def has_marker(self, body: str) -> bool:
        return bool(body) and self.marker in body

    def should_sync(self, candidate: str, existing: Iterable[str]) -> bool:
        """True when `candidate` is neither a synced copy nor already present in `existing`."""
        if self.has_marker(candidate):
            return False

        normalized = self.normalize(candidate)
        if not normalized:
            # Nothing left to compare; an empty comment is not worth posting.
            return False

        for body in existing:
            # Substring (not equality) so the attribution prefix on the copy still matches.
            if normalized in self.normalize(body):
                return False
        return True

    def attribute_html(self, body_html: str, author: str) -> str:
        """Body posted to Spira."""
        return f"<b>{self.marker}{author}</b> <br/> {body_html}"

    def attribute_markdown(self, body_html: str, author: str) -> str:
        """Body posted to GitLab, converted from Spira HTML."""
        return f"**{self.marker}{author}**\n\n{html_to_markdown(body_html)}"
