"""Enum contracts shared by the snapshot schema and the reconciliation runtime."""

from __future__ import annotations

import enum
import logging

logger = logging.getLogger(__name__)


class TestSetName(str, enum.Enum):
    """Logical named test set with exactly one current snapshot."""

    __test__ = False

    TOTAL = "total"
    PASSING = "passing"


def parse_test_set_name(value: str) -> TestSetName:
    """Resolve a set name from its string value."""
    try:
        return TestSetName(value.strip().lower())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in TestSetName)
        raise ValueError(f"Unknown test set name {value!r}; expected one of: {allowed}") from exc
