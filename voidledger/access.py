"""
VOIDLEDGER Access Layer

Two collaborators sit in front of the engine:

1. AccessController - decides whether an already-authenticated caller may
   perform an operation on a record (admin-only deactivation, recipient-only
   burn; creation needs no relationship).
2. Authenticator - turns a signed request into an authenticated caller
   address: Ed25519 signature over canonical JSON, replay protection through
   a nonce registry, and a bounded request age.

The engine itself never verifies signatures; it accepts the Address the
Authenticator hands over.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import json
import secrets
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from voidledger.addressing import Address
from voidledger.hardening import (
    AuthenticationError,
    AuthorizationError,
    CryptoUtils,
    ErrorCode,
    ValidationError,
)
from voidledger.observability import Component, get_logger
from voidledger.records import DirectMessage, Inbox, Organization


logger = get_logger("access", Component.ACCESS)


# =============================================================================
# AUTHORIZATION
# =============================================================================

class Operation(Enum):
    """The seven ledger operations."""
    CREATE_PROOF = "create_proof"
    CREATE_ORGANIZATION = "create_organization"
    SUBMIT_TIP = "submit_tip"
    DEACTIVATE_ORGANIZATION = "deactivate_organization"
    ACTIVATE_INBOX = "activate_inbox"
    SEND_DIRECT_MESSAGE = "send_direct_message"
    BURN_MESSAGE = "burn_message"

    @property
    def is_creation(self) -> bool:
        return self not in (Operation.DEACTIVATE_ORGANIZATION, Operation.BURN_MESSAGE)


@dataclass(frozen=True)
class Decision:
    """Outcome of an authorization check."""
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def _same(a: Address, b: Address) -> bool:
    return CryptoUtils.secure_compare(a.raw, b.raw)


class AccessController:
    """
    Caller/record relationship rules.

    Creation is open to any caller: anyone may stamp a hash, claim an unused
    slug, tip an active organization, open their own inbox or message an
    existing inbox. Mutations are scoped to one identity on the record.
    """

    def authorize(self, operation: Operation, caller: Address, record: Any = None) -> Decision:
        if operation is Operation.DEACTIVATE_ORGANIZATION:
            if not isinstance(record, Organization):
                return Decision(False, "deactivation target is not an organization")
            if not _same(caller, record.admin):
                return Decision(False, f"caller {caller} is not the admin of '{record.slug}'")
            return ALLOW

        if operation is Operation.BURN_MESSAGE:
            if not isinstance(record, DirectMessage):
                return Decision(False, "burn target is not a direct message")
            if not _same(caller, record.recipient):
                return Decision(False, f"caller {caller} is not the recipient of message {record.id}")
            return ALLOW

        if operation is Operation.ACTIVATE_INBOX and isinstance(record, Inbox):
            if not _same(caller, record.owner):
                return Decision(False, "an inbox can only be activated by its owner")

        return ALLOW

    def require(self, operation: Operation, caller: Address, record: Any = None) -> None:
        decision = self.authorize(operation, caller, record)
        if not decision.allowed:
            raise AuthorizationError(decision.reason)


# =============================================================================
# CANONICAL BYTES
# =============================================================================

def _coerce_json_types(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {str(k): _coerce_json_types(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_coerce_json_types(v) for v in obj]
    if isinstance(obj, float):
        raise ValueError("floats are not allowed in signed requests; encode as string")
    if isinstance(obj, Address):
        return obj.to_base58()
    if isinstance(obj, bytes):
        return obj.hex()
    return obj


def canonicalize_json(obj: Any) -> bytes:
    """Sorted keys, no insignificant whitespace, UTF-8, no floats."""
    clean = _coerce_json_types(obj)
    return json.dumps(clean, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


# =============================================================================
# SIGNED REQUESTS
# =============================================================================

@dataclass
class SignedRequest:
    """An operation request signed by the caller's Ed25519 key."""
    operation: str
    params: Dict[str, Any]
    signer: str
    nonce: str
    timestamp: int
    signature: str = ""

    def signing_input(self) -> bytes:
        return canonicalize_json({
            "operation": self.operation,
            "params": self.params,
            "signer": self.signer,
            "nonce": self.nonce,
            "timestamp": self.timestamp,
        })

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "params": _coerce_json_types(self.params),
            "signer": self.signer,
            "nonce": self.nonce,
            "timestamp": self.timestamp,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignedRequest":
        return cls(
            operation=str(data["operation"]),
            params=dict(data.get("params") or {}),
            signer=str(data["signer"]),
            nonce=str(data["nonce"]),
            timestamp=int(data["timestamp"]),
            signature=str(data.get("signature") or ""),
        )


class Keypair:
    """
    Ed25519 keypair.

    Stored on disk as a JSON array of 64 integers: the 32-byte secret seed
    followed by the 32-byte public key, the layout used by common wallet
    tooling.
    """

    def __init__(self, private_key: Ed25519PrivateKey):
        self._private_key = private_key
        self._public_bytes = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    @classmethod
    def generate(cls) -> "Keypair":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "Keypair":
        if len(seed) != 32:
            raise ValueError(f"Ed25519 seed must be 32 bytes, got {len(seed)}")
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @classmethod
    def from_bytes(cls, data: bytes) -> "Keypair":
        if len(data) != 64:
            raise ValueError(f"Keypair must be 64 bytes, got {len(data)}")
        keypair = cls.from_seed(data[:32])
        if not CryptoUtils.secure_compare(keypair._public_bytes, data[32:]):
            raise ValueError("Keypair public half does not match its secret seed")
        return keypair

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Keypair":
        path = Path(path)
        try:
            values = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as ex:
            raise ValueError(f"Keypair file is not valid JSON: {path}") from ex
        if not isinstance(values, list) or not all(isinstance(v, int) and 0 <= v <= 255 for v in values):
            raise ValueError(f"Keypair file must hold a JSON array of byte values: {path}")
        return cls.from_bytes(bytes(values))

    def to_bytes(self) -> bytes:
        seed = self._private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return seed + self._public_bytes

    def to_file(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(list(self.to_bytes())), encoding="utf-8")
        return path

    @property
    def address(self) -> Address:
        return Address(self._public_bytes)

    def sign(self, message: bytes) -> bytes:
        return self._private_key.sign(message)

    def sign_request(
        self,
        operation: Union[Operation, str],
        params: Optional[Dict[str, Any]] = None,
        timestamp: Optional[int] = None,
        nonce: Optional[str] = None,
    ) -> SignedRequest:
        request = SignedRequest(
            operation=operation.value if isinstance(operation, Operation) else operation,
            params=dict(params or {}),
            signer=self.address.to_base58(),
            nonce=nonce or secrets.token_hex(16),
            timestamp=int(time.time()) if timestamp is None else timestamp,
        )
        request.signature = self.sign(request.signing_input()).hex()
        return request


# =============================================================================
# AUTHENTICATION
# =============================================================================

class NonceRegistry:
    """
    Registry of used nonces for replay prevention.

    Nonces are kept for ``ttl_seconds``; a request older than that is
    already rejected by the age check, so forgetting it is safe.
    """

    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], float] = time.time):
        self._nonces: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._ttl = ttl_seconds
        self._clock = clock

    def check_and_register(self, nonce: str) -> bool:
        """True if the nonce was fresh; False on replay."""
        with self._lock:
            self._cleanup()
            if nonce in self._nonces:
                return False
            self._nonces[nonce] = self._clock()
            return True

    def is_fresh(self, nonce: str) -> bool:
        with self._lock:
            return nonce not in self._nonces

    def _cleanup(self) -> None:
        cutoff = self._clock() - self._ttl
        expired = [n for n, t in self._nonces.items() if t < cutoff]
        for nonce in expired:
            del self._nonces[nonce]

    def size(self) -> int:
        with self._lock:
            return len(self._nonces)


@dataclass
class Authenticator:
    """
    Verifies signed requests and yields the caller's Address.

    Checks, in order: signature, request age, nonce freshness. A nonce is
    only consumed by a request whose signature and age are valid.
    """
    max_age_seconds: int = 120
    nonces: NonceRegistry = field(default_factory=NonceRegistry)
    clock: Callable[[], float] = time.time

    def authenticate(self, request: SignedRequest, operation: Optional[Operation] = None) -> Address:
        if operation is not None and request.operation != operation.value:
            raise AuthenticationError(
                f"request is for '{request.operation}', not '{operation.value}'",
                ErrorCode.SIGNATURE_INVALID,
            )

        try:
            signer = Address.from_base58(request.signer)
            signature = bytes.fromhex(request.signature)
            public_key = Ed25519PublicKey.from_public_bytes(signer.raw)
            public_key.verify(signature, request.signing_input())
        except (InvalidSignature, ValueError, ValidationError) as ex:
            logger.warning(
                "Rejected request with invalid signature",
                operation=request.operation,
                error_code=ErrorCode.SIGNATURE_INVALID.label,
                signer=request.signer,
            )
            raise AuthenticationError(
                f"signature verification failed for {request.signer}",
                ErrorCode.SIGNATURE_INVALID,
            ) from ex

        age = self.clock() - request.timestamp
        if abs(age) > self.max_age_seconds:
            raise AuthenticationError(
                f"request timestamp is {int(age)}s from now; limit is {self.max_age_seconds}s",
                ErrorCode.REQUEST_EXPIRED,
            )

        if not self.nonces.check_and_register(request.nonce):
            logger.warning(
                "Rejected replayed request",
                operation=request.operation,
                error_code=ErrorCode.REPLAY_DETECTED.label,
                signer=request.signer,
            )
            raise AuthenticationError(
                f"nonce {request.nonce} already used",
                ErrorCode.REPLAY_DETECTED,
            )

        return signer
