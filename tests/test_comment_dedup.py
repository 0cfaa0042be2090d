import unittest
from types import SimpleNamespace

from spira_gitlab_sync.services.comment_dedup import POSTED_BY, CommentDeduplicator


class CommentDeduplicatorTests(unittest.TestCase):
    def setUp(self):
        self.dedup = CommentDeduplicator()

    def test_comment_with_marker_is_never_synced(self):
        self.assertFalse(self.dedup.should_sync("**Posted By: alice**\n\nhello", []))
        self.assertFalse(self.dedup.should_sync("<b>Posted By: bob</b> <br/> hi", ["unrelated"]))

    def test_new_comment_is_synced(self):
        self.assertTrue(self.dedup.should_sync("Fixed the bug", ["<p>Something else</p>"]))

    def test_comment_already_present_with_attribution_is_not_synced(self):
        existing = ["<b>Posted By: alice</b> <br/> <p>Fixed   the\nbug</p>"]
        self.assertFalse(self.dedup.should_sync("Fixed the bug", existing))

    def test_markdown_candidate_matches_html_copy(self):
        existing = ["<p>Use <strong>bold</strong> text</p>"]
        self.assertFalse(self.dedup.should_sync("Use **bold** text", existing))

    def test_blank_comment_is_not_synced(self):
        self.assertFalse(self.dedup.should_sync("  <p> </p> ", []))

    def test_short_body_contained_in_longer_comment_counts_as_duplicate(self):
        # Known limitation of containment matching.
        self.assertFalse(self.dedup.should_sync("ok", ["<p>looks ok to me</p>"]))

    def test_normalize_collapses_whitespace_and_strips_markup(self):
        self.assertEqual(self.dedup.normalize("<p>a\n\n  b</p><br/>c"), "a b c")

    def test_is_system(self):
        self.assertTrue(self.dedup.is_system(SimpleNamespace(system=True)))
        self.assertFalse(self.dedup.is_system(SimpleNamespace(system=False)))
        self.assertFalse(self.dedup.is_system(SimpleNamespace()))

    def test_attribution_formats(self):
        html = self.dedup.attribute_html("<p>hi</p>", "bob")
        self.assertEqual(html, "<b>Posted By: bob</b> <br/> <p>hi</p>")

        md = self.dedup.attribute_markdown("<p>Fixed the <b>bug</b></p>", "alice")
        self.assertTrue(md.startswith("**Posted By: alice**\n\n"))
        self.assertIn("Fixed the **bug**", md)

        self.assertIn(POSTED_BY, html)
        self.assertIn(POSTED_BY, md)


if __name__ == "__main__":
    unittest.main()
