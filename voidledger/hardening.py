"""
VOIDLEDGER Validation and Hardening Module

Error taxonomy, input validation and defensive primitives shared by every
layer of the ledger:

1. Typed error taxonomy with stable error codes
2. Field-level validation (length bounds, non-empty identifiers, fixed widths)
3. Thread-safety primitives
4. State machine invariant enforcement

Security Model:
    - All inputs are untrusted until validated
    - Validation runs before any write; a rejected input leaves no trace
    - Identity comparisons use constant-time comparisons
    - Counters never decrease and never overflow silently

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import hmac
import threading
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Set, Union


# =============================================================================
# ERROR CODES
# =============================================================================

class ErrorCode(IntEnum):
    """
    Stable error codes.

    The 6000 range is the program error range of the deployed ledger and
    keeps its numbering; the 7000 range covers store, access and
    authentication failures.
    """
    SLUG_TOO_LONG = 6000
    NAME_TOO_LONG = 6001
    DESCRIPTION_TOO_LONG = 6002
    SLUG_EMPTY = 6003
    ARWEAVE_HASH_TOO_LONG = 6004
    ORG_INACTIVE = 6005
    ALREADY_BURNED = 6006

    INVALID_LENGTH = 7000
    ALREADY_EXISTS = 7001
    STALE_COUNTER = 7002
    RECORD_BUSY = 7003
    NOT_FOUND = 7004
    DENIED = 7005
    SIGNATURE_INVALID = 7006
    REPLAY_DETECTED = 7007
    REQUEST_EXPIRED = 7008
    INVARIANT_VIOLATED = 7009
    STATE_CHANGED = 7010

    @property
    def label(self) -> str:
        """CamelCase name, e.g. ``SlugTooLong``."""
        return "".join(part.capitalize() for part in self.name.split("_"))

    @property
    def message(self) -> str:
        return ERROR_MESSAGES[self]


ERROR_MESSAGES: Dict[ErrorCode, str] = {
    ErrorCode.SLUG_TOO_LONG: "Organization slug too long (max 32 chars)",
    ErrorCode.NAME_TOO_LONG: "Organization name too long (max 64 chars)",
    ErrorCode.DESCRIPTION_TOO_LONG: "Organization description too long (max 256 chars)",
    ErrorCode.SLUG_EMPTY: "Slug cannot be empty",
    ErrorCode.ARWEAVE_HASH_TOO_LONG: "Arweave hash too long (max 64 chars)",
    ErrorCode.ORG_INACTIVE: "Organization is inactive",
    ErrorCode.ALREADY_BURNED: "Message has already been burned",
    ErrorCode.INVALID_LENGTH: "Fixed-width field has the wrong length",
    ErrorCode.ALREADY_EXISTS: "Record already exists at this address",
    ErrorCode.STALE_COUNTER: "Parent counter moved since the child address was derived",
    ErrorCode.RECORD_BUSY: "Record is locked by another unit of work",
    ErrorCode.NOT_FOUND: "No record at this address",
    ErrorCode.DENIED: "Caller is not authorized for this record",
    ErrorCode.SIGNATURE_INVALID: "Request signature is invalid",
    ErrorCode.REPLAY_DETECTED: "Request nonce already used",
    ErrorCode.REQUEST_EXPIRED: "Request timestamp outside the accepted window",
    ErrorCode.INVARIANT_VIOLATED: "Ledger invariant violated",
    ErrorCode.STATE_CHANGED: "State file changed since it was loaded",
}


# =============================================================================
# ERROR TYPES
# =============================================================================

class LedgerError(Exception):
    """Base class for every typed ledger failure."""

    default_code: ErrorCode = ErrorCode.INVARIANT_VIOLATED

    def __init__(self, message: str = "", code: Optional[ErrorCode] = None):
        self.code = code if code is not None else self.default_code
        self.message = message or self.code.message
        super().__init__(f"{self.code.label}: {self.message}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "code": int(self.code),
            "name": self.code.label,
            "message": self.message,
        }


class ValidationError(LedgerError):
    """Input rejected before any write."""

    default_code = ErrorCode.INVALID_LENGTH

    def __init__(
        self,
        field: str,
        code: ErrorCode,
        message: str = "",
        value: Any = None,
    ):
        self.field = field
        self.value = value
        super().__init__(message or f"{field}: {code.message}", code)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["field"] = self.field
        return result


class ConflictError(LedgerError):
    """Target address already occupied, or a race was lost."""

    default_code = ErrorCode.ALREADY_EXISTS


class ContentionError(ConflictError):
    """A record lock could not be taken in time."""

    default_code = ErrorCode.RECORD_BUSY


class StateError(LedgerError):
    """Operation invalid for the record's current state."""

    default_code = ErrorCode.ORG_INACTIVE


class AuthorizationError(LedgerError):
    """Caller lacks the required relationship to the record."""

    default_code = ErrorCode.DENIED


class NotFoundError(LedgerError):
    """Referenced record does not exist."""

    default_code = ErrorCode.NOT_FOUND


class AuthenticationError(LedgerError):
    """A signed request failed verification."""

    default_code = ErrorCode.SIGNATURE_INVALID


class InvariantViolation(LedgerError):
    """State machine invariant violated."""

    default_code = ErrorCode.INVARIANT_VIOLATED


# =============================================================================
# VALIDATION RESULT
# =============================================================================

@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    sanitized_value: Any = None

    def raise_if_invalid(self) -> None:
        """Raise the first recorded ValidationError if validation failed."""
        if not self.is_valid:
            raise self.errors[0]

    @classmethod
    def success(cls, sanitized_value: Any = None) -> 'ValidationResult':
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, errors: List[ValidationError]) -> 'ValidationResult':
        return cls(is_valid=False, errors=errors)


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """
    Field-level pre-checks run before a record is admitted.

    Lengths are counted in UTF-8 bytes, which is what the fixed record
    layout reserves. Content is never inspected: a pointer or key of the
    right size is accepted as-is.
    """

    # Limits
    MAX_SLUG_LEN = 32
    MAX_NAME_LEN = 64
    MAX_DESC_LEN = 256
    MAX_ARWEAVE_HASH_LEN = 64

    HASH_LEN = 32
    ENCRYPTION_KEY_LEN = 65
    ADDRESS_LEN = 32

    @classmethod
    def validate_string(
        cls,
        value: Any,
        field_name: str,
        max_length: int,
        code: ErrorCode,
    ) -> ValidationResult:
        """Validate a bounded string."""
        if not isinstance(value, str):
            return ValidationResult.failure([ValidationError(
                field_name, code,
                f"{field_name}: expected string, got {type(value).__name__}",
                value,
            )])

        if len(value.encode("utf-8")) > max_length:
            return ValidationResult.failure([ValidationError(field_name, code, value=value)])

        return ValidationResult.success(value)

    @classmethod
    def validate_slug(cls, value: Any) -> ValidationResult:
        return cls.validate_string(value, "slug", cls.MAX_SLUG_LEN, ErrorCode.SLUG_TOO_LONG)

    @classmethod
    def validate_arweave_hash(cls, value: Any) -> ValidationResult:
        return cls.validate_string(
            value, "arweave_hash", cls.MAX_ARWEAVE_HASH_LEN, ErrorCode.ARWEAVE_HASH_TOO_LONG
        )

    @classmethod
    def validate_organization(
        cls,
        slug: Any,
        name: Any,
        description: Any,
    ) -> ValidationResult:
        """
        Validate organization fields.

        Checks run in a fixed order (slug length, name length, description
        length, slug emptiness) and every failure is collected; callers
        raise the first one.
        """
        errors: List[ValidationError] = []
        checks = (
            cls.validate_slug(slug),
            cls.validate_string(name, "name", cls.MAX_NAME_LEN, ErrorCode.NAME_TOO_LONG),
            cls.validate_string(
                description, "description", cls.MAX_DESC_LEN, ErrorCode.DESCRIPTION_TOO_LONG
            ),
        )
        for result in checks:
            errors.extend(result.errors)

        if isinstance(slug, str) and not slug:
            errors.append(ValidationError("slug", ErrorCode.SLUG_EMPTY, value=slug))

        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success((slug, name, description))

    @classmethod
    def validate_fixed_bytes(
        cls,
        value: Any,
        field_name: str,
        length: int,
    ) -> ValidationResult:
        """Validate a fixed-width byte field. Hex strings are decoded first."""
        if isinstance(value, str):
            try:
                value = bytes.fromhex(value)
            except ValueError:
                return ValidationResult.failure([ValidationError(
                    field_name, ErrorCode.INVALID_LENGTH,
                    f"{field_name}: invalid hex string", value,
                )])

        if isinstance(value, (bytearray, memoryview)):
            value = bytes(value)

        if not isinstance(value, bytes):
            return ValidationResult.failure([ValidationError(
                field_name, ErrorCode.INVALID_LENGTH,
                f"{field_name}: expected bytes, got {type(value).__name__}", value,
            )])

        if len(value) != length:
            return ValidationResult.failure([ValidationError(
                field_name, ErrorCode.INVALID_LENGTH,
                f"{field_name}: expected {length} bytes, got {len(value)}", value,
            )])

        return ValidationResult.success(value)

    @classmethod
    def validate_counter(cls, value: Any, field_name: str) -> ValidationResult:
        """Validate a child id: an int that fits an unsigned 64-bit counter."""
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.failure([ValidationError(
                field_name, ErrorCode.INVALID_LENGTH,
                f"{field_name}: expected int, got {type(value).__name__}", value,
            )])

        if not 0 <= value <= U64_MAX:
            return ValidationResult.failure([ValidationError(
                field_name, ErrorCode.INVALID_LENGTH,
                f"{field_name}: {value} out of u64 range", value,
            )])

        return ValidationResult.success(value)


# =============================================================================
# CRYPTOGRAPHIC UTILITIES
# =============================================================================

class CryptoUtils:
    """Cryptographic utility functions with security hardening."""

    @staticmethod
    def secure_compare(a: bytes, b: bytes) -> bool:
        """Constant-time comparison of two byte strings."""
        return hmac.compare_digest(a, b)

    @staticmethod
    def sha256(data: Union[str, bytes]) -> bytes:
        if isinstance(data, str):
            data = data.encode("utf-8")
        return hashlib.sha256(data).digest()

    @staticmethod
    def hash_sha256(data: Union[str, bytes]) -> str:
        """SHA-256 as lowercase hex."""
        return CryptoUtils.sha256(data).hex()


# =============================================================================
# THREAD SAFETY
# =============================================================================

class AtomicCounter:
    """Thread-safe counter."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, delta: int = 1) -> int:
        """Atomically increment and return new value."""
        with self._lock:
            self._value += delta
            return self._value

    def get(self) -> int:
        """Get current value."""
        with self._lock:
            return self._value

    def reset(self, value: int = 0) -> None:
        """Atomically reset the counter to the given value."""
        with self._lock:
            self._value = value


# =============================================================================
# STATE MACHINE INVARIANTS
# =============================================================================

U64_MAX = 2 ** 64 - 1


class InvariantChecker:
    """Enforces state machine invariants."""

    @staticmethod
    def check_state_transition(
        current_state: Enum,
        target_state: Enum,
        valid_transitions: Dict[Enum, Set[Enum]],
    ) -> None:
        """Verify state transition is valid."""
        valid_targets = valid_transitions.get(current_state, set())
        if target_state not in valid_targets:
            raise InvariantViolation(
                f"Invalid state transition: {current_state.value} -> {target_state.value}. "
                f"Valid targets: {sorted(s.value for s in valid_targets)}"
            )

    @staticmethod
    def check_monotonic_increase(
        field_name: str,
        old_value: int,
        new_value: int,
    ) -> None:
        """Ensure value only increases."""
        if new_value < old_value:
            raise InvariantViolation(
                f"{field_name} must be monotonically increasing: "
                f"cannot go from {old_value} to {new_value}"
            )

    @staticmethod
    def check_u64(field_name: str, value: int) -> None:
        """Ensure value fits an unsigned 64-bit counter."""
        if not 0 <= value <= U64_MAX:
            raise InvariantViolation(f"{field_name} out of u64 range: {value}")
