"""
VOIDLEDGER - Deterministically-Addressed Record Store

A ledger of three record families whose every record lives at an address
derived from its identifying fields, never at a caller-chosen key.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                              VOIDLEDGER                                  │
    │                                                                          │
    │  SURFACE                                                                 │
    │    cli.py           voidledger command, signed requests, state file     │
    │    engine.py        the seven operations and read-side queries          │
    │                                                                          │
    │  RULES                                                                   │
    │    access.py        admin/recipient scoping, signed-request auth         │
    │    sequence.py      dense counter-scoped child ids                       │
    │    hardening.py     error taxonomy, validators, invariant checks         │
    │                                                                          │
    │  FOUNDATION                                                              │
    │    addressing.py    program-derived addresses per record family          │
    │    records.py       record types, one-way states, fixed byte layouts    │
    │    store.py         per-record locks, atomic units of work, snapshots   │
    │                                                                          │
    │  AMBIENT                                                                 │
    │    config.py        YAML + environment configuration                     │
    │    observability.py structured logging, hash-chained audit trail        │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Record Families
───────────────

    stamp   Proof          one per content hash
    drop    Organization   one per non-empty slug, receives tips
            Submission     one per (organization, submission id)
    burn    Inbox          one per owner
            DirectMessage  one per (inbox owner, message id)

Copyright © 2026 Momentum. All rights reserved.
"""

__version__ = "0.1.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    """Lazy import VOIDLEDGER modules on first access."""

    if name in ("Address", "AddressSpace", "RecordFamily", "DEFAULT_PROGRAM_ID",
                "find_program_address", "create_program_address", "is_on_curve"):
        from voidledger import addressing
        return getattr(addressing, name)

    if name in ("Proof", "Organization", "Submission", "Inbox", "DirectMessage",
                "OrgStatus", "BurnState", "encode_record", "decode_record", "layout_for"):
        from voidledger import records
        return getattr(records, name)

    if name in ("RecordStore", "UnitOfWork", "SnapshotError"):
        from voidledger import store
        return getattr(store, name)

    if name in ("ErrorCode", "LedgerError", "ValidationError", "ConflictError",
                "ContentionError", "StateError", "AuthorizationError", "NotFoundError",
                "AuthenticationError", "InvariantViolation", "Validators"):
        from voidledger import hardening
        return getattr(hardening, name)

    if name in ("AccessController", "Authenticator", "Decision", "Keypair",
                "NonceRegistry", "Operation", "SignedRequest"):
        from voidledger import access
        return getattr(access, name)

    if name == "SequenceAllocator":
        from voidledger import sequence
        return sequence.SequenceAllocator

    if name == "LedgerEngine":
        from voidledger import engine
        return engine.LedgerEngine

    raise AttributeError(f"module 'voidledger' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Addressing
    "Address",
    "AddressSpace",
    "RecordFamily",
    "DEFAULT_PROGRAM_ID",
    # Records
    "Proof",
    "Organization",
    "Submission",
    "Inbox",
    "DirectMessage",
    "OrgStatus",
    "BurnState",
    # Store
    "RecordStore",
    "SnapshotError",
    # Errors
    "ErrorCode",
    "LedgerError",
    "ValidationError",
    "ConflictError",
    "ContentionError",
    "StateError",
    "AuthorizationError",
    "NotFoundError",
    "AuthenticationError",
    "InvariantViolation",
    # Access
    "AccessController",
    "Authenticator",
    "Keypair",
    "Operation",
    "SignedRequest",
    # Engine
    "SequenceAllocator",
    "LedgerEngine",
]
