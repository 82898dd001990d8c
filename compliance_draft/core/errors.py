"""Exceptions raised by draft mutations."""

from __future__ import annotations


class DraftError(Exception):
    """Base class for refused draft mutations."""


class EditNotAllowedError(DraftError):
    """The current user may not edit this builder."""


class DraftLimitError(DraftError):
    """A trial-mode limit on sections or questions was reached."""


class UnknownEntityError(DraftError):
    """A mutation referenced a section or question that is not in the draft."""

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} {entity_id!r} not found in draft")
        self.kind = kind
        self.entity_id = entity_id
