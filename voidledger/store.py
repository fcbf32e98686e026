"""
VOIDLEDGER Record Store

Keyed storage of fixed-size record blobs with create-if-absent semantics.

Uniqueness is a property of the address space: a record family's uniqueness
rule (one proof per hash, one organization per slug, one inbox per owner,
one child per parent counter value) holds because creation at an occupied
address fails atomically. There is no auxiliary index.

Concurrency Model:
    - One re-entrant lock per record address, created on first use
    - A unit of work names the records it touches and locks them up front,
      in sorted order
    - A child record may be included after its parent has been read; the
      parent -> child order is the only late-inclusion order used, so lock
      acquisition cannot cycle
    - Writes are staged and committed in a single step on normal exit;
      any exception discards every staged write
    - No global write lock: units of work on unrelated records run in
      parallel
    - Lock acquisition is bounded; the loser is rejected with ContentionError
    - A record lock lives only while some unit of work holds or waits on it

Persistence:
    - A store remembers the commit version of the snapshot it was loaded
      from; saving over a file whose commit version has since moved is
      rejected with ConflictError (StateChanged), so the first writer wins
    - The check and the replace run under an exclusive ``<state>.lock``
      file lock

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import base64
import fcntl
import json
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple, Union

from jsonschema import Draft202012Validator

from voidledger.addressing import Address
from voidledger.hardening import (
    AtomicCounter,
    ConflictError,
    ContentionError,
    ErrorCode,
    InvariantViolation,
    NotFoundError,
)
from voidledger.observability import Component, get_logger


SNAPSHOT_FORMAT = "voidledger-state"
SNAPSHOT_VERSION = 1

SNAPSHOT_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["format", "version", "records"],
    "additionalProperties": False,
    "properties": {
        "format": {"const": SNAPSHOT_FORMAT},
        "version": {"const": SNAPSHOT_VERSION},
        "program_id": {"type": ["string", "null"]},
        "commit_version": {"type": "integer", "minimum": 0},
        "records": {
            "type": "object",
            "propertyNames": {"pattern": "^[1-9A-HJ-NP-Za-km-z]{32,44}$"},
            "additionalProperties": {"type": "string", "contentEncoding": "base64"},
        },
    },
}


class SnapshotError(Exception):
    """Persisted state could not be read or written."""
    pass


def validate_with_schema(obj: Any, validator: Draft202012Validator) -> List[str]:
    errors = []
    for e in sorted(validator.iter_errors(obj), key=str):
        errors.append(f"{list(e.absolute_path)}: {e.message}")
    return errors


# =============================================================================
# FILE LOCKING
# =============================================================================

_LOCK_SUFFIX = ".lock"
_LOCK_POLL_SECONDS = 0.01


@contextmanager
def _locked_file(path: Path, timeout_seconds: float) -> Iterator[None]:
    """
    Hold an exclusive lock on the ``.lock`` sidecar of ``path``.

    The sidecar is separate from the state file so the state file can be
    replaced with ``os.replace`` while the lock is held.
    """
    lock_path = path.with_suffix(path.suffix + _LOCK_SUFFIX)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    deadline = time.monotonic() + timeout_seconds
    with lock_path.open("a+", encoding="utf-8") as lock_handle:
        while True:
            try:
                fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise ContentionError(f"State file {path} is locked by another writer")
                time.sleep(_LOCK_POLL_SECONDS)
        try:
            yield
        finally:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)


def _read_commit_version(path: Path) -> Optional[int]:
    """Commit version recorded in the snapshot at ``path``; None if there is no file."""
    if not path.exists():
        return None
    try:
        snapshot = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as ex:
        raise SnapshotError(f"State file is not valid JSON: {path}: {ex}") from ex
    if not isinstance(snapshot, dict):
        raise SnapshotError(f"Invalid state snapshot: {path}")
    return snapshot.get("commit_version", 0)


class _RecordLock:
    """A record lock and the number of units of work holding or waiting on it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


# =============================================================================
# UNIT OF WORK
# =============================================================================

class UnitOfWork:
    """
    One all-or-nothing unit of work over a set of locked records.

    Obtained from ``RecordStore.transaction``; never constructed directly.
    """

    def __init__(self, store: "RecordStore"):
        self._store = store
        self._held: List[Tuple[Address, threading.RLock]] = []
        self._held_keys: Set[Address] = set()
        self._staged: Dict[Address, bytes] = {}
        self._created: Set[Address] = set()

    def include(self, key: Address) -> None:
        """Lock an additional record for the rest of this unit of work."""
        if key in self._held_keys:
            return
        lock = self._store._checkout_lock(key)
        if not lock.acquire(timeout=self._store.lock_timeout_seconds):
            self._store._return_lock(key)
            raise ContentionError(f"Record {key} is locked by another unit of work")
        self._held.append((key, lock))
        self._held_keys.add(key)

    def _require_held(self, key: Address) -> None:
        if key not in self._held_keys:
            raise InvariantViolation(f"Record {key} was not named in this unit of work")

    def get(self, key: Address) -> Optional[bytes]:
        self._require_held(key)
        if key in self._staged:
            return self._staged[key]
        return self._store.get(key)

    def read(self, key: Address) -> bytes:
        blob = self.get(key)
        if blob is None:
            raise NotFoundError(f"No record at {key}")
        return blob

    def exists(self, key: Address) -> bool:
        return self.get(key) is not None

    def create(self, key: Address, blob: bytes) -> None:
        """Stage creation of a record; fails if the address is occupied."""
        if self.exists(key):
            raise ConflictError(f"Record already exists at {key}")
        self._staged[key] = bytes(blob)
        self._created.add(key)

    def write(self, key: Address, blob: bytes) -> None:
        """Stage an update of an existing record. The reserved size is fixed."""
        current = self.read(key)
        if len(blob) != len(current):
            raise InvariantViolation(
                f"Record {key} is {len(current)} bytes; refusing {len(blob)}-byte write"
            )
        self._staged[key] = bytes(blob)

    @property
    def created(self) -> Set[Address]:
        return set(self._created)

    def _commit(self) -> int:
        if not self._staged:
            return self._store.commit_version
        with self._store._data_lock:
            self._store._records.update(self._staged)
            version = self._store._commit_counter.increment()
        self._store._logger.debug(
            "Committed unit of work",
            operation="commit",
            commit_version=version,
            created=len(self._created),
            updated=len(self._staged) - len(self._created),
        )
        return version

    def _release(self) -> None:
        for key, lock in reversed(self._held):
            lock.release()
            self._store._return_lock(key)
        self._held.clear()
        self._held_keys.clear()
        self._staged.clear()


# =============================================================================
# RECORD STORE
# =============================================================================

class RecordStore:
    """
    Thread-safe keyed blob store.

    Usage:
        store = RecordStore()
        store.create_if_absent(key, blob)      # ConflictError if occupied
        store.read(key)                        # NotFoundError if absent
        store.mutate(key, lambda b: new_blob)  # NotFoundError if absent

        with store.transaction(parent_key) as uow:
            parent = uow.read(parent_key)
            uow.include(child_key)
            uow.create(child_key, child_blob)
            uow.write(parent_key, new_parent)
    """

    def __init__(self, lock_timeout_seconds: float = 5.0):
        self.lock_timeout_seconds = lock_timeout_seconds
        self.program_id: Optional[str] = None
        self._records: Dict[Address, bytes] = {}
        self._data_lock = threading.RLock()
        self._locks: Dict[Address, _RecordLock] = {}
        self._locks_guard = threading.Lock()
        self._commit_counter = AtomicCounter(0)
        # Commit version of the file this store was loaded from; None if not loaded.
        self._base_version: Optional[int] = None
        self._logger = get_logger("store", Component.STORE)

    def _checkout_lock(self, key: Address) -> threading.RLock:
        with self._locks_guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _RecordLock()
                self._locks[key] = entry
            entry.users += 1
            return entry.lock

    def _return_lock(self, key: Address) -> None:
        with self._locks_guard:
            entry = self._locks[key]
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @property
    def lock_table_size(self) -> int:
        """Number of record locks currently held or waited on."""
        with self._locks_guard:
            return len(self._locks)

    @contextmanager
    def transaction(self, *keys: Address) -> Iterator[UnitOfWork]:
        """Open a unit of work holding locks on ``keys``."""
        uow = UnitOfWork(self)
        try:
            for key in sorted(set(keys)):
                uow.include(key)
            yield uow
            uow._commit()
        finally:
            uow._release()

    # -------------------------------------------------------------------------
    # Single-record operations
    # -------------------------------------------------------------------------

    def create_if_absent(self, key: Address, blob: bytes) -> None:
        with self.transaction(key) as uow:
            uow.create(key, blob)

    def get(self, key: Address) -> Optional[bytes]:
        with self._data_lock:
            return self._records.get(key)

    def read(self, key: Address) -> bytes:
        blob = self.get(key)
        if blob is None:
            raise NotFoundError(f"No record at {key}")
        return blob

    def mutate(self, key: Address, fn: Callable[[bytes], bytes]) -> bytes:
        with self.transaction(key) as uow:
            new_blob = fn(uow.read(key))
            uow.write(key, new_blob)
        return new_blob

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def __contains__(self, key: object) -> bool:
        with self._data_lock:
            return key in self._records

    def __len__(self) -> int:
        with self._data_lock:
            return len(self._records)

    def keys(self) -> List[Address]:
        with self._data_lock:
            return sorted(self._records)

    def scan(self, discriminator: Optional[bytes] = None) -> List[Tuple[Address, bytes]]:
        """All (key, blob) pairs in key order, optionally only one record family."""
        with self._data_lock:
            items = sorted(self._records.items())
        if discriminator is None:
            return items
        return [(k, b) for k, b in items if b[:len(discriminator)] == discriminator]

    @property
    def commit_version(self) -> int:
        return self._commit_counter.get()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def to_snapshot(self) -> Dict[str, Any]:
        with self._data_lock:
            records = {
                key.to_base58(): base64.b64encode(blob).decode("ascii")
                for key, blob in sorted(self._records.items())
            }
            version = self._commit_counter.get()
        return {
            "format": SNAPSHOT_FORMAT,
            "version": SNAPSHOT_VERSION,
            "program_id": self.program_id,
            "commit_version": version,
            "records": records,
        }

    def save(self, path: Union[str, Path]) -> Path:
        """
        Write a JSON snapshot atomically (write to temp, then rename).

        Raises ConflictError (StateChanged) if the file at ``path`` is not
        the one this store was loaded from: another writer saved since, or
        the file appeared after a fresh store was opened.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with _locked_file(path, self.lock_timeout_seconds):
            on_disk = _read_commit_version(path)
            if on_disk != self._base_version:
                self._logger.warning(
                    "Refusing to overwrite changed state file",
                    operation="save",
                    path=str(path),
                    loaded_version=self._base_version,
                    on_disk_version=on_disk,
                )
                raise ConflictError(
                    f"State file {path} is at commit {on_disk}; "
                    f"this store was loaded at commit {self._base_version}",
                    ErrorCode.STATE_CHANGED,
                )
            snapshot = self.to_snapshot()
            temp_path = path.with_suffix(path.suffix + ".tmp")
            temp_path.write_text(json.dumps(snapshot, indent=2, sort_keys=True), encoding="utf-8")
            temp_path.replace(path)
            self._base_version = snapshot["commit_version"]
        self._logger.info(
            "Saved state snapshot",
            operation="save",
            path=str(path),
            records=len(snapshot["records"]),
        )
        return path

    @classmethod
    def from_snapshot(cls, snapshot: Any, lock_timeout_seconds: float = 5.0) -> "RecordStore":
        errors = validate_with_schema(snapshot, Draft202012Validator(SNAPSHOT_SCHEMA))
        if errors:
            raise SnapshotError("Invalid state snapshot: " + "; ".join(errors))

        store = cls(lock_timeout_seconds=lock_timeout_seconds)
        store.program_id = snapshot.get("program_id")
        try:
            for key, encoded in snapshot["records"].items():
                store._records[Address.from_base58(key)] = base64.b64decode(encoded, validate=True)
        except (ValueError, InvariantViolation) as ex:
            raise SnapshotError(f"Invalid record in state snapshot: {ex}") from ex
        store._commit_counter.reset(snapshot.get("commit_version", 0))
        return store

    @classmethod
    def load(cls, path: Union[str, Path], lock_timeout_seconds: float = 5.0) -> "RecordStore":
        path = Path(path)
        if not path.exists():
            raise SnapshotError(f"State file not found: {path}")
        try:
            snapshot = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as ex:
            raise SnapshotError(f"State file is not valid JSON: {path}: {ex}") from ex
        store = cls.from_snapshot(snapshot, lock_timeout_seconds=lock_timeout_seconds)
        store._base_version = store.commit_version
        store._logger.info(
            "Loaded state snapshot",
            operation="load",
            path=str(path),
            records=len(store),
        )
        return store
