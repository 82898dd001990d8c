"""Persistence — in-memory builder backend used in mock mode."""

from compliance_draft.persistence.memory_backend import ApiCall, InMemoryBuilderApi

__all__ = ["ApiCall", "InMemoryBuilderApi"]
