"""
Dirty Tracker — change counter vs. last-saved counter.
"""

from __future__ import annotations


class DirtyTracker:
    """
    The draft is clean iff both counters are equal.

    ``mark_saved`` takes the counter value captured when a save started and
    only commits it if nothing was edited since, so edits made while a save
    is in flight are never reported as saved.
    """

    def __init__(self) -> None:
        self.change_counter = 0
        self.last_saved_counter = 0

    def mark_dirty(self) -> int:
        self.change_counter += 1
        return self.change_counter

    def is_clean(self) -> bool:
        return self.change_counter == self.last_saved_counter

    def mark_saved(self, at_counter: int) -> bool:
        """Return True when the save was committed as the new baseline."""
        if self.change_counter != at_counter:
            return False
        self.last_saved_counter = at_counter
        return True

    def reset(self) -> None:
        self.change_counter = 0
        self.last_saved_counter = 0
