"""voidledger.addressing

Deterministic record addresses.

Every record lives at an address computed purely from the record family and
its identifying seeds; nothing else can place a record. The derivation is the
program-derived-address scheme of the deployed ledger:

    candidate = sha256(seed_1 || ... || seed_n || [bump] || program_id || "ProgramDerivedAddress")

searched from bump 255 downward, keeping the first candidate that is *not* a
valid compressed Ed25519 point. Such an address can never be a signer's public
key, so no identity can collide with a record address.

Seeds per family:

    proof          ("proof", hash)
    organization   ("org", slug bytes)
    submission     ("submission", organization address, u64-LE counter)
    inbox          ("inbox", owner)
    direct message ("dm", recipient, u64-LE counter)

Child families embed the parent's counter *before* it is incremented; the
counter value is what makes each child address unique.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Tuple, Union

from voidledger.hardening import ErrorCode, U64_MAX, ValidationError, Validators


PDA_MARKER = b"ProgramDerivedAddress"
MAX_SEEDS = 16
MAX_SEED_LEN = 32

# Deployment id of the on-chain program; overridable via ledger.program_id.
DEFAULT_PROGRAM_ID = "9wPskrpZiLSb3He3QoLZMEeiBKWJUh7ykGtkb2N7HX9H"


# ---------------------------------------------------------------------------
# Base58
# ---------------------------------------------------------------------------

B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
B58_MAP = {c: i for i, c in enumerate(B58_ALPHABET)}


def b58decode(s: Union[str, bytes]) -> bytes:
    if isinstance(s, str):
        s_bytes = s.encode("ascii")
    else:
        s_bytes = s
    num = 0
    for c in s_bytes:
        if c not in B58_MAP:
            raise ValueError("Invalid base58 character")
        num = num * 58 + B58_MAP[c]
    # Count leading zeros
    n_pad = 0
    for c in s_bytes:
        if c == B58_ALPHABET[0]:
            n_pad += 1
        else:
            break
    full = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * n_pad + full


def b58encode(b: bytes) -> str:
    n_pad = 0
    for c in b:
        if c == 0:
            n_pad += 1
        else:
            break
    num = int.from_bytes(b, "big")
    out = bytearray()
    while num > 0:
        num, rem = divmod(num, 58)
        out.append(B58_ALPHABET[rem])
    out.extend(B58_ALPHABET[0] for _ in range(n_pad))
    out.reverse()
    return out.decode("ascii")


# ---------------------------------------------------------------------------
# Address
# ---------------------------------------------------------------------------


@dataclass(frozen=True, order=True)
class Address:
    """
    Opaque 32-byte identifier.

    Used both for caller identities (Ed25519 public keys handed over by the
    authentication layer) and for derived record addresses.
    """

    raw: bytes

    def __post_init__(self) -> None:
        raw = self.raw
        if isinstance(raw, (bytearray, memoryview)):
            raw = bytes(raw)
            object.__setattr__(self, "raw", raw)
        if not isinstance(raw, bytes) or len(raw) != Validators.ADDRESS_LEN:
            raise ValidationError(
                "address", ErrorCode.INVALID_LENGTH,
                f"address: expected {Validators.ADDRESS_LEN} bytes", raw,
            )

    @classmethod
    def from_base58(cls, value: str) -> "Address":
        try:
            raw = b58decode(value.strip())
        except ValueError as ex:
            raise ValidationError(
                "address", ErrorCode.INVALID_LENGTH, f"address: {ex}", value
            ) from ex
        return cls(raw)

    @classmethod
    def parse(cls, value: Union["Address", str, bytes]) -> "Address":
        """Accept an Address, raw bytes, or a base58 string."""
        if isinstance(value, Address):
            return value
        if isinstance(value, (bytes, bytearray)):
            return cls(bytes(value))
        return cls.from_base58(value)

    def to_base58(self) -> str:
        return b58encode(self.raw)

    def __bytes__(self) -> bytes:
        return self.raw

    def __str__(self) -> str:
        return self.to_base58()

    def __repr__(self) -> str:
        return f"Address({self.to_base58()})"


# ---------------------------------------------------------------------------
# Ed25519 curve membership
# ---------------------------------------------------------------------------

_P = 2 ** 255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


def is_on_curve(candidate: bytes) -> bool:
    """
    True if ``candidate`` decompresses to a point on edwards25519.

    The y coordinate is read little-endian with the sign bit masked off and
    reduced mod p; the point exists iff (y^2 - 1) / (d*y^2 + 1) is a square.
    """
    y = int.from_bytes(candidate, "little") & ((1 << 255) - 1)
    y %= _P
    yy = y * y % _P
    u = (yy - 1) % _P
    v = (_D * yy + 1) % _P
    x2 = u * pow(v, _P - 2, _P) % _P
    if x2 == 0:
        return True
    return pow(x2, (_P - 1) // 2, _P) == 1


def create_program_address(seeds: Iterable[bytes], bump: int, program_id: Address) -> Address:
    """Hash seeds plus bump into a candidate address; raises if it lands on the curve."""
    hasher = hashlib.sha256()
    for seed in seeds:
        hasher.update(seed)
    hasher.update(bytes([bump]))
    hasher.update(program_id.raw)
    hasher.update(PDA_MARKER)
    digest = hasher.digest()
    if is_on_curve(digest):
        raise ValueError("Derived address lies on the Ed25519 curve")
    return Address(digest)


def find_program_address(seeds: Iterable[bytes], program_id: Address) -> Tuple[Address, int]:
    """Return (address, canonical bump) for the given seeds."""
    seeds = [bytes(s) for s in seeds]
    if len(seeds) > MAX_SEEDS:
        raise ValueError(f"At most {MAX_SEEDS} seeds allowed, got {len(seeds)}")
    for seed in seeds:
        if len(seed) > MAX_SEED_LEN:
            raise ValueError(f"Seed longer than {MAX_SEED_LEN} bytes: {len(seed)}")

    for bump in range(255, -1, -1):
        try:
            return create_program_address(seeds, bump, program_id), bump
        except ValueError:
            continue
    raise ValueError("Unable to find a viable bump for seeds")


def u64_le(value: int) -> bytes:
    if not 0 <= value <= U64_MAX:
        raise ValueError(f"Counter out of u64 range: {value}")
    return value.to_bytes(8, "little")


# ---------------------------------------------------------------------------
# Address space
# ---------------------------------------------------------------------------


class RecordFamily(Enum):
    """Record families and their seed prefixes."""
    PROOF = "proof"
    ORGANIZATION = "org"
    SUBMISSION = "submission"
    INBOX = "inbox"
    DIRECT_MESSAGE = "dm"

    @property
    def prefix(self) -> bytes:
        return self.value.encode("ascii")


class AddressSpace:
    """
    Maps (family, seeds) to record addresses for one program namespace.

    Pure and deterministic: the same inputs always give the same address and
    bump, and distinct families never share an address because the family
    prefix is the first seed.
    """

    def __init__(self, program_id: Union[Address, str] = DEFAULT_PROGRAM_ID):
        self.program_id = Address.parse(program_id)

    def derive(self, family: RecordFamily, *seeds: bytes) -> Tuple[Address, int]:
        return find_program_address([family.prefix, *seeds], self.program_id)

    def proof(self, hash_: bytes) -> Tuple[Address, int]:
        return self.derive(RecordFamily.PROOF, hash_)

    def organization(self, slug: str) -> Tuple[Address, int]:
        return self.derive(RecordFamily.ORGANIZATION, slug.encode("utf-8"))

    def submission(self, organization: Address, counter: int) -> Tuple[Address, int]:
        return self.derive(RecordFamily.SUBMISSION, organization.raw, u64_le(counter))

    def inbox(self, owner: Address) -> Tuple[Address, int]:
        return self.derive(RecordFamily.INBOX, owner.raw)

    def direct_message(self, recipient: Address, counter: int) -> Tuple[Address, int]:
        return self.derive(RecordFamily.DIRECT_MESSAGE, recipient.raw, u64_le(counter))
