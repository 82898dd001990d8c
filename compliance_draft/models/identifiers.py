"""
Temporary identifiers for entities that do not exist on the backend yet.

The backend never issues ids with these prefixes, so the prefix alone tells
a temporary id from a permanent one.
"""

from __future__ import annotations

import uuid

SECTION_PREFIX = "sec_"
QUESTION_PREFIX = "q_"


def new_section_id() -> str:
    return f"{SECTION_PREFIX}{uuid.uuid4()}"


def new_question_id() -> str:
    return f"{QUESTION_PREFIX}{uuid.uuid4()}"


def is_temp_id(entity_id: str) -> bool:
    return entity_id.startswith(SECTION_PREFIX) or entity_id.startswith(QUESTION_PREFIX)
