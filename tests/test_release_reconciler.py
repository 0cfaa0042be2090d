import logging
import unittest
from datetime import datetime, timedelta
from unittest.mock import Mock

from spira_gitlab_sync.domain import DataMapping, Milestone, Release, utcnow
from spira_gitlab_sync.services.context import SyncContext
from spira_gitlab_sync.services.release_reconciler import (
    RELEASE_STATUS_COMPLETED,
    RELEASE_STATUS_IN_PROGRESS,
    RELEASE_TYPE_ITERATION,
    ReleaseReconciler,
)
from spira_gitlab_sync.services.spira_client import SpiraApiError

logging.disable(logging.CRITICAL)


def _ctx(**kwargs):
    return SyncContext(
        data_sync_id=1,
        project_id=1,
        gitlab_project="group/proj",
        filter_date=datetime(2025, 1, 1),
        translator=None,
        **kwargs,
    )


def _milestone(iid=1, title="v1.2", **kwargs):
    return Milestone(iid=iid, id=100 + iid, title=title, **kwargs)


class MilestoneForReleaseTests(unittest.TestCase):
    def setUp(self):
        self.spira = Mock()
        self.gitlab = Mock()
        self.reconciler = ReleaseReconciler(self.spira, self.gitlab, version_max_length=10)

    def test_no_release(self):
        self.assertIsNone(self.reconciler.milestone_for_release(_ctx(), None))
        self.spira.get_release.assert_not_called()

    def test_mapped_milestone_is_reused(self):
        milestone = _milestone(iid=3)
        ctx = _ctx(milestones=[milestone], release_mappings=[DataMapping(1, 7, "3")])

        self.assertIs(self.reconciler.milestone_for_release(ctx, 7), milestone)
        self.gitlab.create_milestone.assert_not_called()
        self.assertEqual(ctx.new_release_mappings, [])

    def test_unmapped_release_creates_milestone_and_mapping(self):
        self.spira.get_release.return_value = Release(
            release_id=7, name="v1.2", description="drop", start_date=datetime(2025, 2, 1), end_date=datetime(2025, 3, 1)
        )
        created = _milestone(iid=4)
        self.gitlab.create_milestone.return_value = created
        ctx = _ctx()

        self.assertIs(self.reconciler.milestone_for_release(ctx, 7), created)
        self.gitlab.create_milestone.assert_called_once_with(
            "group/proj",
            {"title": "v1.2", "description": "drop", "start_date": "2025-02-01", "due_date": "2025-03-01"},
        )
        self.assertEqual(ctx.milestones, [created])
        self.assertEqual(ctx.new_release_mappings, [DataMapping(1, 7, "4")])

        # Second lookup in the same pass uses the cache.
        self.assertIs(self.reconciler.milestone_for_release(ctx, 7), created)
        self.gitlab.create_milestone.assert_called_once()

    def test_deleted_milestone_queues_mapping_removal(self):
        stale = DataMapping(1, 7, "42")
        self.spira.get_release.return_value = Release(release_id=7, name="v1.2")
        self.gitlab.create_milestone.return_value = _milestone(iid=5)
        ctx = _ctx(release_mappings=[stale])

        milestone = self.reconciler.milestone_for_release(ctx, 7)

        self.assertEqual(milestone.iid, 5)
        self.assertEqual(ctx.removed_release_mappings, [stale])
        self.assertEqual(ctx.new_release_mappings, [DataMapping(1, 7, "5")])
        self.assertEqual(ctx.live_release_mappings(), [DataMapping(1, 7, "5")])

    def test_unmapped_milestone_with_same_title_is_linked(self):
        existing = _milestone(iid=2, title="v1.2")
        self.spira.get_release.return_value = Release(release_id=7, name="v1.2")
        ctx = _ctx(milestones=[existing])

        self.assertIs(self.reconciler.milestone_for_release(ctx, 7), existing)
        self.gitlab.create_milestone.assert_not_called()
        self.assertEqual(ctx.new_release_mappings, [DataMapping(1, 7, "2")])

    def test_failed_creation_means_no_milestone(self):
        self.spira.get_release.return_value = Release(release_id=7, name="v1.2")
        self.gitlab.create_milestone.return_value = None
        ctx = _ctx()

        self.assertIsNone(self.reconciler.milestone_for_release(ctx, 7))
        self.assertEqual(ctx.new_release_mappings, [])

    def test_unreadable_release_means_no_milestone(self):
        self.spira.get_release.side_effect = SpiraApiError("gone", status_code=404)
        self.assertIsNone(self.reconciler.milestone_for_release(_ctx(), 7))
        self.gitlab.create_milestone.assert_not_called()


class ReleaseForMilestoneTests(unittest.TestCase):
    def setUp(self):
        self.spira = Mock()
        self.spira.create_release.side_effect = lambda project_id, release: Release(
            **{**release.__dict__, "release_id": 55}
        )
        self.reconciler = ReleaseReconciler(self.spira, Mock(), version_max_length=10)

    def test_no_milestone(self):
        self.assertIsNone(self.reconciler.release_for_milestone(_ctx(), None))

    def test_existing_and_new_mappings_are_searched(self):
        ctx = _ctx(release_mappings=[DataMapping(1, 7, "3")])
        ctx.new_release_mappings.append(DataMapping(1, 8, "4"))

        self.assertEqual(self.reconciler.release_for_milestone(ctx, _milestone(iid=3)), 7)
        self.assertEqual(self.reconciler.release_for_milestone(ctx, _milestone(iid=4)), 8)
        self.spira.create_release.assert_not_called()

    def test_creates_release_from_milestone(self):
        ctx = _ctx()
        milestone = _milestone(
            iid=9,
            title="Release 2025.10.1",
            description="autumn",
            state="active",
            start_date=datetime(2025, 10, 1),
            due_date=datetime(2025, 10, 31),
        )

        self.assertEqual(self.reconciler.release_for_milestone(ctx, milestone), 55)

        release = self.spira.create_release.call_args[0][1]
        self.assertEqual(release.name, "Release 2025.10.1")
        self.assertEqual(release.version_number, "Release 20")
        self.assertEqual(release.start_date, datetime(2025, 10, 1))
        self.assertEqual(release.end_date, datetime(2025, 10, 31))
        self.assertEqual(release.status_id, RELEASE_STATUS_IN_PROGRESS)
        self.assertEqual(release.type_id, RELEASE_TYPE_ITERATION)
        self.assertEqual(ctx.new_release_mappings, [DataMapping(1, 55, "9")])

    def test_missing_dates_default_to_now_and_a_month_later(self):
        milestone = _milestone(iid=9, state="closed", due_date=datetime(1776, 1, 1))

        self.reconciler.release_for_milestone(_ctx(), milestone)

        release = self.spira.create_release.call_args[0][1]
        self.assertEqual(release.status_id, RELEASE_STATUS_COMPLETED)
        now = utcnow()
        self.assertLess(abs(release.start_date - now), timedelta(minutes=5))
        self.assertLess(abs(release.end_date - (now + timedelta(days=30))), timedelta(minutes=5))

    def test_creation_date_used_when_no_start_date(self):
        milestone = _milestone(iid=9, created_at=datetime(2025, 4, 1))

        self.reconciler.release_for_milestone(_ctx(), milestone)

        self.assertEqual(self.spira.create_release.call_args[0][1].start_date, datetime(2025, 4, 1))

    def test_rejected_release_leaves_no_mapping(self):
        self.spira.create_release.side_effect = SpiraApiError("boom", status_code=500)
        ctx = _ctx()

        self.assertIsNone(self.reconciler.release_for_milestone(ctx, _milestone()))
        self.assertEqual(ctx.new_release_mappings, [])


if __name__ == "__main__":
    unittest.main()
