"""
Address derivation tests.

Covers the program-derived-address search, seed limits, per-family seed
prefixes and base58 handling of Address.
"""

import hashlib

import pytest

from voidledger.addressing import (
    DEFAULT_PROGRAM_ID,
    MAX_SEEDS,
    PDA_MARKER,
    Address,
    AddressSpace,
    RecordFamily,
    b58decode,
    b58encode,
    create_program_address,
    find_program_address,
    is_on_curve,
    u64_le,
)
from voidledger.hardening import ErrorCode, ValidationError


PROGRAM = Address.from_base58(DEFAULT_PROGRAM_ID)


class TestBase58:
    """Base58 encoding used for every printed address."""

    def test_program_id_round_trips(self):
        assert len(b58decode(DEFAULT_PROGRAM_ID)) == 32
        assert b58encode(b58decode(DEFAULT_PROGRAM_ID)) == DEFAULT_PROGRAM_ID

    def test_leading_zero_bytes_become_ones(self):
        assert b58encode(b"\x00\x00\x01") == "112"
        assert b58decode("112") == b"\x00\x00\x01"

    def test_invalid_character_rejected(self):
        with pytest.raises(ValueError):
            b58decode("0OIl")

    def test_address_parse_accepts_all_forms(self):
        raw = bytes(range(32))
        addr = Address(raw)
        assert Address.parse(addr) is addr
        assert Address.parse(raw) == addr
        assert Address.parse(addr.to_base58()) == addr
        assert str(addr) == addr.to_base58()
        assert bytes(addr) == raw

    def test_address_wrong_length_is_validation_error(self):
        with pytest.raises(ValidationError) as exc:
            Address(b"\x01" * 31)
        assert exc.value.code is ErrorCode.INVALID_LENGTH

    def test_bad_base58_is_validation_error(self):
        with pytest.raises(ValidationError):
            Address.from_base58("not-base58!")


class TestProgramAddress:
    """sha256(seeds || bump || program || marker), first off-curve bump from 255."""

    def test_matches_manual_hash(self):
        seeds = [b"proof", b"\x11" * 32]
        addr, bump = find_program_address(seeds, PROGRAM)
        expected = hashlib.sha256(
            b"".join(seeds) + bytes([bump]) + PROGRAM.raw + PDA_MARKER
        ).digest()
        assert addr.raw == expected

    def test_result_is_off_curve(self):
        for i in range(20):
            addr, _ = find_program_address([b"org", f"slug-{i}".encode()], PROGRAM)
            assert not is_on_curve(addr.raw)

    def test_bump_is_highest_viable(self):
        seeds = [b"inbox", b"\x22" * 32]
        addr, bump = find_program_address(seeds, PROGRAM)
        for higher in range(255, bump, -1):
            with pytest.raises(ValueError):
                create_program_address(seeds, higher, PROGRAM)
        assert create_program_address(seeds, bump, PROGRAM) == addr

    def test_public_keys_are_on_curve(self):
        from voidledger.access import Keypair

        for n in range(1, 6):
            assert is_on_curve(Keypair.from_seed(bytes([n]) * 32).address.raw)

    def test_too_many_seeds(self):
        with pytest.raises(ValueError):
            find_program_address([b"x"] * (MAX_SEEDS + 1), PROGRAM)

    def test_seed_too_long(self):
        with pytest.raises(ValueError):
            find_program_address([b"x" * 33], PROGRAM)

    def test_u64_le(self):
        assert u64_le(1) == b"\x01" + b"\x00" * 7
        with pytest.raises(ValueError):
            u64_le(-1)
        with pytest.raises(ValueError):
            u64_le(2 ** 64)


class TestAddressSpace:
    """Per-family derivation."""

    def test_deterministic(self):
        a = AddressSpace()
        b = AddressSpace(DEFAULT_PROGRAM_ID)
        assert a.organization("acme") == b.organization("acme")
        assert a.proof(b"\x01" * 32) == b.proof(b"\x01" * 32)

    def test_program_id_namespaces_addresses(self):
        other = AddressSpace(Address(b"\x05" * 32))
        assert other.organization("acme")[0] != AddressSpace().organization("acme")[0]

    def test_families_never_collide(self):
        space = AddressSpace()
        seed = b"\x33" * 32
        owner = Address(seed)
        addresses = {
            space.proof(seed)[0],
            space.inbox(owner)[0],
            space.derive(RecordFamily.ORGANIZATION, seed)[0],
            space.submission(owner, 0)[0],
            space.direct_message(owner, 0)[0],
        }
        assert len(addresses) == 5

    def test_child_addresses_depend_on_counter(self):
        space = AddressSpace()
        org, _ = space.organization("acme")
        ids = {space.submission(org, i)[0] for i in range(10)}
        assert len(ids) == 10

    def test_child_addresses_depend_on_parent(self):
        space = AddressSpace()
        org_a, _ = space.organization("a")
        org_b, _ = space.organization("b")
        assert space.submission(org_a, 0)[0] != space.submission(org_b, 0)[0]

    def test_slug_longer_than_seed_limit_cannot_be_derived(self):
        with pytest.raises(ValueError):
            AddressSpace().organization("s" * 33)

    def test_family_prefixes(self):
        assert [f.prefix for f in RecordFamily] == [b"proof", b"org", b"submission", b"inbox", b"dm"]
