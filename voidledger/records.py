"""
VOIDLEDGER Record Families

The five record families, their one-way state flags, and their fixed byte
layouts.

Layout
──────

    Every record is stored as a blob of a fixed, family-specific size that is
    reserved in full at creation time:

        [8-byte discriminator][fields ...][zero padding up to the reserved size]

    The discriminator is sha256("account:<Family>")[:8]. Integers are
    little-endian; strings are a u32 length followed by UTF-8 bytes, and the
    reserved size always accounts for the maximum string length.

        Proof           81 bytes
        Organization   487 bytes
        Submission     157 bytes
        Inbox          122 bytes
        DirectMessage  159 bytes

State flags
───────────

    Organization.active and DirectMessage.burned are irrevocable events, so
    they are modeled as explicit states with a transition table. Reverse
    transitions are rejected with InvariantViolation rather than written.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, Set, Type, TypeVar, Union

from voidledger.addressing import Address, RecordFamily
from voidledger.hardening import (
    InvariantChecker,
    InvariantViolation,
    Validators,
)


# =============================================================================
# ONE-WAY STATES
# =============================================================================

class OrgStatus(Enum):
    """Whether an organization accepts submissions."""
    ACTIVE = "active"
    INACTIVE = "inactive"


# Deactivating an inactive organization is harmless and allowed.
ORG_TRANSITIONS: Dict[OrgStatus, Set[OrgStatus]] = {
    OrgStatus.ACTIVE: {OrgStatus.INACTIVE},
    OrgStatus.INACTIVE: {OrgStatus.INACTIVE},
}


class BurnState(Enum):
    """Whether a direct message has been burned."""
    UNBURNED = "unburned"
    BURNED = "burned"


BURN_TRANSITIONS: Dict[BurnState, Set[BurnState]] = {
    BurnState.UNBURNED: {BurnState.BURNED},
    BurnState.BURNED: set(),
}


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class Proof:
    """Proof that content with ``hash`` existed at ``timestamp``."""
    FAMILY: ClassVar[RecordFamily] = RecordFamily.PROOF

    hash: bytes
    owner: Address
    timestamp: int
    bump: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.hash.hex(),
            "owner": str(self.owner),
            "timestamp": self.timestamp,
            "bump": self.bump,
        }


@dataclass(frozen=True)
class Organization:
    """Drop box holding the admin's public encryption key."""
    FAMILY: ClassVar[RecordFamily] = RecordFamily.ORGANIZATION

    slug: str
    name: str
    description: str
    encryption_key: bytes
    admin: Address
    submission_count: int
    created_at: int
    status: OrgStatus
    bump: int

    @property
    def active(self) -> bool:
        return self.status is OrgStatus.ACTIVE

    def deactivated(self) -> "Organization":
        InvariantChecker.check_state_transition(self.status, OrgStatus.INACTIVE, ORG_TRANSITIONS)
        return replace(self, status=OrgStatus.INACTIVE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "encryption_key": self.encryption_key.hex(),
            "admin": str(self.admin),
            "submission_count": self.submission_count,
            "created_at": self.created_at,
            "active": self.active,
            "bump": self.bump,
        }


@dataclass(frozen=True)
class Submission:
    """Pointer to an encrypted tip stored off-ledger."""
    FAMILY: ClassVar[RecordFamily] = RecordFamily.SUBMISSION

    id: int
    organization: Address
    arweave_hash: str
    submitter: Address
    timestamp: int
    bump: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "organization": str(self.organization),
            "arweave_hash": self.arweave_hash,
            "submitter": str(self.submitter),
            "timestamp": self.timestamp,
            "bump": self.bump,
        }


@dataclass(frozen=True)
class Inbox:
    """Per-owner inbox for direct messages."""
    FAMILY: ClassVar[RecordFamily] = RecordFamily.INBOX

    owner: Address
    encryption_key: bytes
    message_count: int
    created_at: int
    bump: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": str(self.owner),
            "encryption_key": self.encryption_key.hex(),
            "message_count": self.message_count,
            "created_at": self.created_at,
            "bump": self.bump,
        }


@dataclass(frozen=True)
class DirectMessage:
    """Pointer to an encrypted direct message stored off-ledger."""
    FAMILY: ClassVar[RecordFamily] = RecordFamily.DIRECT_MESSAGE

    id: int
    sender: Address
    recipient: Address
    arweave_hash: str
    burn_after_reading: bool
    state: BurnState
    timestamp: int
    bump: int

    @property
    def burned(self) -> bool:
        return self.state is BurnState.BURNED

    def burn(self) -> "DirectMessage":
        InvariantChecker.check_state_transition(self.state, BurnState.BURNED, BURN_TRANSITIONS)
        return replace(self, state=BurnState.BURNED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sender": str(self.sender),
            "recipient": str(self.recipient),
            "arweave_hash": self.arweave_hash,
            "burn_after_reading": self.burn_after_reading,
            "burned": self.burned,
            "timestamp": self.timestamp,
            "bump": self.bump,
        }


Record = Union[Proof, Organization, Submission, Inbox, DirectMessage]
R = TypeVar("R", Proof, Organization, Submission, Inbox, DirectMessage)


# =============================================================================
# BYTE CODEC
# =============================================================================

class LayoutError(InvariantViolation):
    """Blob does not match the expected record layout."""
    pass


class _Writer:
    def __init__(self, discriminator: bytes):
        self._buf = bytearray(discriminator)

    def fixed(self, value: bytes, length: int) -> "_Writer":
        if len(value) != length:
            raise LayoutError(f"Expected {length} bytes, got {len(value)}")
        self._buf += value
        return self

    def address(self, value: Address) -> "_Writer":
        return self.fixed(value.raw, 32)

    def u8(self, value: int) -> "_Writer":
        self._buf += value.to_bytes(1, "little")
        return self

    def flag(self, value: bool) -> "_Writer":
        return self.u8(1 if value else 0)

    def u64(self, value: int) -> "_Writer":
        InvariantChecker.check_u64("u64 field", value)
        self._buf += value.to_bytes(8, "little")
        return self

    def i64(self, value: int) -> "_Writer":
        self._buf += value.to_bytes(8, "little", signed=True)
        return self

    def string(self, value: str, max_len: int) -> "_Writer":
        data = value.encode("utf-8")
        if len(data) > max_len:
            raise LayoutError(f"String of {len(data)} bytes exceeds reserved {max_len}")
        self._buf += len(data).to_bytes(4, "little") + data
        return self

    def finish(self, size: int) -> bytes:
        if len(self._buf) > size:
            raise LayoutError(f"Encoded record of {len(self._buf)} bytes exceeds reserved {size}")
        return bytes(self._buf) + b"\x00" * (size - len(self._buf))


class _Reader:
    def __init__(self, blob: bytes, offset: int = 8):
        self._blob = blob
        self._pos = offset

    def fixed(self, length: int) -> bytes:
        end = self._pos + length
        if end > len(self._blob):
            raise LayoutError("Blob truncated")
        value = self._blob[self._pos:end]
        self._pos = end
        return value

    def address(self) -> Address:
        return Address(self.fixed(32))

    def u8(self) -> int:
        return self.fixed(1)[0]

    def flag(self) -> bool:
        value = self.u8()
        if value not in (0, 1):
            raise LayoutError(f"Invalid bool byte: {value}")
        return value == 1

    def u64(self) -> int:
        return int.from_bytes(self.fixed(8), "little")

    def i64(self) -> int:
        return int.from_bytes(self.fixed(8), "little", signed=True)

    def string(self, max_len: int) -> str:
        length = int.from_bytes(self.fixed(4), "little")
        if length > max_len:
            raise LayoutError(f"String length {length} exceeds reserved {max_len}")
        return self.fixed(length).decode("utf-8")


def discriminator(family_name: str) -> bytes:
    return hashlib.sha256(f"account:{family_name}".encode("utf-8")).digest()[:8]


@dataclass(frozen=True)
class Layout:
    """Fixed layout of one record family."""
    record_type: Type[Any]
    size: int
    encode_fields: Callable[[_Writer, Any], None]
    decode_fields: Callable[[_Reader], Any]

    @property
    def discriminator(self) -> bytes:
        return discriminator(self.record_type.__name__)

    def encode(self, record: Any) -> bytes:
        writer = _Writer(self.discriminator)
        self.encode_fields(writer, record)
        return writer.finish(self.size)

    def decode(self, blob: bytes) -> Any:
        if len(blob) != self.size:
            raise LayoutError(
                f"{self.record_type.__name__} blob must be {self.size} bytes, got {len(blob)}"
            )
        if blob[:8] != self.discriminator:
            raise LayoutError(f"Blob is not a {self.record_type.__name__} record")
        return self.decode_fields(_Reader(blob))

    def matches(self, blob: bytes) -> bool:
        return len(blob) == self.size and blob[:8] == self.discriminator


def _encode_proof(w: _Writer, r: Proof) -> None:
    w.fixed(r.hash, Validators.HASH_LEN).address(r.owner).i64(r.timestamp).u8(r.bump)


def _decode_proof(rd: _Reader) -> Proof:
    return Proof(hash=rd.fixed(Validators.HASH_LEN), owner=rd.address(), timestamp=rd.i64(), bump=rd.u8())


def _encode_organization(w: _Writer, r: Organization) -> None:
    (w.string(r.slug, Validators.MAX_SLUG_LEN)
     .string(r.name, Validators.MAX_NAME_LEN)
     .string(r.description, Validators.MAX_DESC_LEN)
     .fixed(r.encryption_key, Validators.ENCRYPTION_KEY_LEN)
     .address(r.admin)
     .u64(r.submission_count)
     .i64(r.created_at)
     .flag(r.active)
     .u8(r.bump))


def _decode_organization(rd: _Reader) -> Organization:
    return Organization(
        slug=rd.string(Validators.MAX_SLUG_LEN),
        name=rd.string(Validators.MAX_NAME_LEN),
        description=rd.string(Validators.MAX_DESC_LEN),
        encryption_key=rd.fixed(Validators.ENCRYPTION_KEY_LEN),
        admin=rd.address(),
        submission_count=rd.u64(),
        created_at=rd.i64(),
        status=OrgStatus.ACTIVE if rd.flag() else OrgStatus.INACTIVE,
        bump=rd.u8(),
    )


def _encode_submission(w: _Writer, r: Submission) -> None:
    (w.u64(r.id)
     .address(r.organization)
     .string(r.arweave_hash, Validators.MAX_ARWEAVE_HASH_LEN)
     .address(r.submitter)
     .i64(r.timestamp)
     .u8(r.bump))


def _decode_submission(rd: _Reader) -> Submission:
    return Submission(
        id=rd.u64(),
        organization=rd.address(),
        arweave_hash=rd.string(Validators.MAX_ARWEAVE_HASH_LEN),
        submitter=rd.address(),
        timestamp=rd.i64(),
        bump=rd.u8(),
    )


def _encode_inbox(w: _Writer, r: Inbox) -> None:
    (w.address(r.owner)
     .fixed(r.encryption_key, Validators.ENCRYPTION_KEY_LEN)
     .u64(r.message_count)
     .i64(r.created_at)
     .u8(r.bump))


def _decode_inbox(rd: _Reader) -> Inbox:
    return Inbox(
        owner=rd.address(),
        encryption_key=rd.fixed(Validators.ENCRYPTION_KEY_LEN),
        message_count=rd.u64(),
        created_at=rd.i64(),
        bump=rd.u8(),
    )


def _encode_direct_message(w: _Writer, r: DirectMessage) -> None:
    (w.u64(r.id)
     .address(r.sender)
     .address(r.recipient)
     .string(r.arweave_hash, Validators.MAX_ARWEAVE_HASH_LEN)
     .flag(r.burn_after_reading)
     .flag(r.burned)
     .i64(r.timestamp)
     .u8(r.bump))


def _decode_direct_message(rd: _Reader) -> DirectMessage:
    return DirectMessage(
        id=rd.u64(),
        sender=rd.address(),
        recipient=rd.address(),
        arweave_hash=rd.string(Validators.MAX_ARWEAVE_HASH_LEN),
        burn_after_reading=rd.flag(),
        state=BurnState.BURNED if rd.flag() else BurnState.UNBURNED,
        timestamp=rd.i64(),
        bump=rd.u8(),
    )


LAYOUTS: Dict[Type[Any], Layout] = {
    Proof: Layout(Proof, 8 + 32 + 32 + 8 + 1, _encode_proof, _decode_proof),
    Organization: Layout(
        Organization,
        8 + (4 + 32) + (4 + 64) + (4 + 256) + 65 + 32 + 8 + 8 + 1 + 1,
        _encode_organization,
        _decode_organization,
    ),
    Submission: Layout(
        Submission, 8 + 8 + 32 + (4 + 64) + 32 + 8 + 1, _encode_submission, _decode_submission
    ),
    Inbox: Layout(Inbox, 8 + 32 + 65 + 8 + 8 + 1, _encode_inbox, _decode_inbox),
    DirectMessage: Layout(
        DirectMessage,
        8 + 8 + 32 + 32 + (4 + 64) + 1 + 1 + 8 + 1,
        _encode_direct_message,
        _decode_direct_message,
    ),
}


def layout_for(record_type: Type[Any]) -> Layout:
    return LAYOUTS[record_type]


def encode_record(record: Record) -> bytes:
    return LAYOUTS[type(record)].encode(record)


def decode_record(blob: bytes, record_type: Type[R]) -> R:
    return LAYOUTS[record_type].decode(blob)


def identify(blob: bytes) -> Type[Any]:
    """Return the record type a blob belongs to."""
    for record_type, layout in LAYOUTS.items():
        if layout.matches(blob):
            return record_type
    raise LayoutError("Blob matches no known record layout")
