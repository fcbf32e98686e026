"""Sequence allocation tests."""

import pytest

from voidledger.hardening import InvariantViolation, U64_MAX
from voidledger.addressing import Address
from voidledger.records import Organization, OrgStatus
from voidledger.sequence import SequenceAllocator


def _org(submission_count):
    return Organization(
        slug="acme",
        name="Acme",
        description="",
        encryption_key=b"\x04" * 65,
        admin=Address(b"\xaa" * 32),
        submission_count=submission_count,
        created_at=0,
        status=OrgStatus.ACTIVE,
        bump=255,
    )


class TestSequenceAllocator:

    def test_next_issues_current_value(self):
        assert SequenceAllocator.next(0) == (0, 1)
        assert SequenceAllocator.next(41) == (41, 42)

    def test_overflow_rejected(self):
        with pytest.raises(InvariantViolation):
            SequenceAllocator.next(U64_MAX)

    def test_negative_counter_rejected(self):
        with pytest.raises(InvariantViolation):
            SequenceAllocator.next(-1)

    def test_allocate_advances_parent_copy(self):
        org = _org(submission_count=5)
        issued, advanced = SequenceAllocator.allocate(org, "submission_count")
        assert issued == 5
        assert advanced.submission_count == 6
        assert org.submission_count == 5
        assert advanced.slug == org.slug

    def test_dense_ids(self):
        org = _org(submission_count=0)
        ids = []
        for _ in range(5):
            issued, org = SequenceAllocator.allocate(org, "submission_count")
            ids.append(issued)
        assert ids == [0, 1, 2, 3, 4]
