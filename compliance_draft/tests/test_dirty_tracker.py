"""
Tests: Dirty tracker counters.

Run with:
    pytest compliance_draft/tests/test_dirty_tracker.py -v
"""

from compliance_draft.core.dirty_tracker import DirtyTracker


class TestDirtyTracker:
    def test_starts_clean(self):
        tracker = DirtyTracker()
        assert tracker.is_clean()
        assert tracker.change_counter == 0

    def test_mark_dirty_increments(self):
        tracker = DirtyTracker()
        assert tracker.mark_dirty() == 1
        assert tracker.mark_dirty() == 2
        assert not tracker.is_clean()

    def test_mark_saved_commits_when_unchanged(self):
        tracker = DirtyTracker()
        tracker.mark_dirty()
        at = tracker.change_counter
        assert tracker.mark_saved(at) is True
        assert tracker.is_clean()
        assert tracker.last_saved_counter == 1

    def test_mark_saved_ignored_after_new_edit(self):
        tracker = DirtyTracker()
        tracker.mark_dirty()
        at = tracker.change_counter
        tracker.mark_dirty()  # edit while the save is in flight
        assert tracker.mark_saved(at) is False
        assert not tracker.is_clean()
        assert tracker.last_saved_counter == 0

    def test_reset_zeroes_both(self):
        tracker = DirtyTracker()
        tracker.mark_dirty()
        tracker.mark_saved(1)
        tracker.mark_dirty()
        tracker.reset()
        assert tracker.change_counter == 0
        assert tracker.last_saved_counter == 0
        assert tracker.is_clean()
