"""
VOIDLEDGER Sequence Allocation

Counter-scoped child ids. An organization's ``submission_count`` and an
inbox's ``message_count`` are the next child id; issuing an id returns the
current value and the parent's new counter, which the caller persists in
the same unit of work as the child record.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Tuple, TypeVar

from voidledger.hardening import InvariantChecker

P = TypeVar("P")


class SequenceAllocator:
    """Issues dense ids 0, 1, 2, ... from a parent counter."""

    @staticmethod
    def next(counter: int) -> Tuple[int, int]:
        """Return ``(issued_id, new_counter)``. Overflow past u64 is rejected."""
        InvariantChecker.check_u64("counter", counter)
        new_counter = counter + 1
        InvariantChecker.check_u64("counter", new_counter)
        InvariantChecker.check_monotonic_increase("counter", counter, new_counter)
        return counter, new_counter

    @classmethod
    def allocate(cls, parent: P, counter_field: str) -> Tuple[int, P]:
        """Issue an id from ``parent.<counter_field>`` and return the advanced parent."""
        issued, new_counter = cls.next(getattr(parent, counter_field))
        return issued, replace(parent, **{counter_field: new_counter})
