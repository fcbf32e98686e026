"""
VOIDLEDGER Ledger Engine

Orchestrates validation, addressing, storage, access control and sequence
allocation into the seven ledger operations, plus read-side queries.

Operation flow:
    caller -> Validators -> AddressSpace -> RecordStore unit of work
           -> AccessController (mutations) -> SequenceAllocator (children)
           -> commit

Every operation is one unit of work: it either commits every write it
staged or none of them. Errors are typed (see ``voidledger.hardening``) and
leave the store exactly as it was.

Child creation (tips, direct messages) locks the parent, reads its counter,
derives the child address from the pre-increment value, locks the child,
creates it and advances the parent counter, all before committing. Two
callers racing on one parent are serialized by the parent lock; callers on
different parents never wait for each other.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, Tuple, Union

from voidledger.access import AccessController, Operation
from voidledger.addressing import DEFAULT_PROGRAM_ID, Address, AddressSpace
from voidledger.config import VoidLedgerConfig
from voidledger.hardening import (
    AuthorizationError,
    ConflictError,
    ErrorCode,
    LedgerError,
    NotFoundError,
    StateError,
    Validators,
)
from voidledger.observability import (
    AuditLogger,
    AuditOutcome,
    Component,
    get_logger,
    timed_operation,
)
from voidledger.records import (
    BurnState,
    DirectMessage,
    Inbox,
    Organization,
    OrgStatus,
    Proof,
    Submission,
    decode_record,
    encode_record,
    layout_for,
)
from voidledger.sequence import SequenceAllocator
from voidledger.store import RecordStore, SnapshotError


logger = get_logger("engine", Component.ENGINE)

HASH_CHUNK_SIZE = 1024 * 1024

AUDIT_SUFFIX = ".audit.jsonl"

AddressLike = Union[Address, str, bytes]


def _wall_clock() -> int:
    return int(time.time())


def _decode(blob: bytes, record_type: Any, key: Address) -> Any:
    """Decode a blob, treating a record of another family as absent."""
    if not layout_for(record_type).matches(blob):
        raise NotFoundError(f"No {record_type.__name__} at {key}")
    return decode_record(blob, record_type)


class LedgerEngine:
    """
    The ledger's operation surface.

    Callers are already-authenticated ``Address`` values; signature checks
    belong to ``voidledger.access.Authenticator``.
    """

    def __init__(
        self,
        store: Optional[RecordStore] = None,
        program_id: Union[Address, str] = DEFAULT_PROGRAM_ID,
        clock: Callable[[], int] = _wall_clock,
        access: Optional[AccessController] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.store = store if store is not None else RecordStore()
        self.space = AddressSpace(program_id)
        self.clock = clock
        self.access = access or AccessController()
        self.audit = audit if audit is not None else AuditLogger()

        pinned = self.store.program_id
        if pinned is not None and pinned != self.space.program_id.to_base58():
            raise SnapshotError(
                f"State belongs to program {pinned}, not {self.space.program_id}"
            )
        self.store.program_id = self.space.program_id.to_base58()

    @classmethod
    def from_config(
        cls,
        config: VoidLedgerConfig,
        store: Optional[RecordStore] = None,
        clock: Callable[[], int] = _wall_clock,
    ) -> "LedgerEngine":
        if store is None:
            store = RecordStore(lock_timeout_seconds=config.store.lock_timeout_seconds.get())
        return cls(
            store=store,
            program_id=config.ledger.program_id.get(),
            clock=clock,
            audit=AuditLogger(enabled=config.observability.audit_enabled.get()),
        )

    @classmethod
    def open(
        cls,
        state_path: Union[str, Path],
        config: VoidLedgerConfig,
        clock: Callable[[], int] = _wall_clock,
    ) -> "LedgerEngine":
        """
        Engine over the snapshot at ``state_path``, or a fresh store if none exists.

        When auditing is enabled the trail next to the snapshot is loaded too.
        """
        timeout = config.store.lock_timeout_seconds.get()
        path = Path(state_path)
        store = RecordStore.load(path, timeout) if path.exists() else RecordStore(timeout)
        engine = cls.from_config(config, store=store, clock=clock)
        trail = cls.audit_path(path)
        if engine.audit.enabled and trail.exists():
            engine.audit = AuditLogger.load(trail)
        return engine

    @staticmethod
    def audit_path(state_path: Union[str, Path]) -> Path:
        """JSON Lines audit trail kept beside a state file."""
        path = Path(state_path)
        return path.with_suffix(path.suffix + AUDIT_SUFFIX)

    def save(self, state_path: Union[str, Path]) -> Path:
        """Save the snapshot, then append new audit events beside it."""
        path = self.store.save(state_path)
        self.save_audit(path)
        return path

    def save_audit(self, state_path: Union[str, Path]) -> int:
        if not self.audit.enabled:
            return 0
        return self.audit.append_to(self.audit_path(state_path))

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    @contextmanager
    def _audited(
        self,
        operation: Operation,
        caller: Address,
        resource_type: str,
        resource_id: str,
    ) -> Iterator[None]:
        try:
            yield
        except AuthorizationError as ex:
            self.audit.log(
                str(caller), operation.value, resource_type, resource_id,
                AuditOutcome.DENIED, error=ex.code.label,
            )
            raise
        except LedgerError as ex:
            self.audit.log(
                str(caller), operation.value, resource_type, resource_id,
                AuditOutcome.FAILURE, error=ex.code.label,
            )
            raise
        self.audit.log(
            str(caller), operation.value, resource_type, resource_id, AuditOutcome.SUCCESS
        )

    # -------------------------------------------------------------------------
    # Proofs
    # -------------------------------------------------------------------------

    @timed_operation(logger, "create_proof")
    def create_proof(self, caller: Address, hash_: Union[bytes, str]) -> Proof:
        """Register proof that content hashing to ``hash_`` exists, owned by ``caller``."""
        check = Validators.validate_fixed_bytes(hash_, "hash", Validators.HASH_LEN)
        check.raise_if_invalid()
        digest: bytes = check.sanitized_value

        with self._audited(Operation.CREATE_PROOF, caller, "proof", digest.hex()):
            self.access.require(Operation.CREATE_PROOF, caller)
            key, bump = self.space.proof(digest)
            proof = Proof(hash=digest, owner=caller, timestamp=self.clock(), bump=bump)
            try:
                self.store.create_if_absent(key, encode_record(proof))
            except ConflictError as ex:
                if ex.code is ErrorCode.ALREADY_EXISTS:
                    raise ConflictError(f"Proof already exists for hash {digest.hex()}") from ex
                raise

        logger.info("Proof created", operation="create_proof", address=str(key), owner=str(caller))
        return proof

    # -------------------------------------------------------------------------
    # Organizations and tips
    # -------------------------------------------------------------------------

    @timed_operation(logger, "create_organization")
    def create_organization(
        self,
        caller: Address,
        slug: str,
        name: str,
        description: str,
        encryption_key: Union[bytes, str],
    ) -> Organization:
        Validators.validate_organization(slug, name, description).raise_if_invalid()
        key_check = Validators.validate_fixed_bytes(
            encryption_key, "encryption_key", Validators.ENCRYPTION_KEY_LEN
        )
        key_check.raise_if_invalid()

        with self._audited(Operation.CREATE_ORGANIZATION, caller, "organization", slug):
            self.access.require(Operation.CREATE_ORGANIZATION, caller)
            key, bump = self.space.organization(slug)
            org = Organization(
                slug=slug,
                name=name,
                description=description,
                encryption_key=key_check.sanitized_value,
                admin=caller,
                submission_count=0,
                created_at=self.clock(),
                status=OrgStatus.ACTIVE,
                bump=bump,
            )
            try:
                self.store.create_if_absent(key, encode_record(org))
            except ConflictError as ex:
                if ex.code is ErrorCode.ALREADY_EXISTS:
                    raise ConflictError(f"Organization '{slug}' already exists") from ex
                raise

        logger.info("Organization created", operation="create_organization", slug=slug, address=str(key))
        return org

    @timed_operation(logger, "submit_tip")
    def submit_tip(
        self,
        caller: Address,
        organization: AddressLike,
        arweave_hash: str,
        expected_id: Optional[int] = None,
    ) -> Submission:
        """
        Create the next submission under ``organization``.

        With ``expected_id``, the call only succeeds if that is still the
        organization's next id; a moved counter is a lost race.
        """
        Validators.validate_arweave_hash(arweave_hash).raise_if_invalid()
        org_key = Address.parse(organization)

        with self._audited(Operation.SUBMIT_TIP, caller, "organization", str(org_key)):
            with self.store.transaction(org_key) as uow:
                org = _decode(uow.read(org_key), Organization, org_key)
                self.access.require(Operation.SUBMIT_TIP, caller, org)
                if not org.active:
                    raise StateError(f"Organization '{org.slug}' is inactive", ErrorCode.ORG_INACTIVE)
                self._check_expected(expected_id, org.submission_count)

                issued, advanced = SequenceAllocator.allocate(org, "submission_count")
                sub_key, bump = self.space.submission(org_key, issued)
                uow.include(sub_key)
                submission = Submission(
                    id=issued,
                    organization=org_key,
                    arweave_hash=arweave_hash,
                    submitter=caller,
                    timestamp=self.clock(),
                    bump=bump,
                )
                uow.create(sub_key, encode_record(submission))
                uow.write(org_key, encode_record(advanced))

        logger.info(
            "Tip submitted",
            operation="submit_tip",
            organization=str(org_key),
            submission_id=issued,
        )
        return submission

    @timed_operation(logger, "deactivate_organization")
    def deactivate_organization(self, caller: Address, organization: AddressLike) -> Organization:
        """Stop an organization accepting tips. Admin only; repeat calls succeed."""
        org_key = Address.parse(organization)

        with self._audited(Operation.DEACTIVATE_ORGANIZATION, caller, "organization", str(org_key)):
            with self.store.transaction(org_key) as uow:
                org = _decode(uow.read(org_key), Organization, org_key)
                self.access.require(Operation.DEACTIVATE_ORGANIZATION, caller, org)
                deactivated = org.deactivated()
                uow.write(org_key, encode_record(deactivated))

        logger.info("Organization deactivated", operation="deactivate_organization", slug=org.slug)
        return deactivated

    # -------------------------------------------------------------------------
    # Inboxes and direct messages
    # -------------------------------------------------------------------------

    @timed_operation(logger, "activate_inbox")
    def activate_inbox(self, caller: Address, encryption_key: Union[bytes, str]) -> Inbox:
        key_check = Validators.validate_fixed_bytes(
            encryption_key, "encryption_key", Validators.ENCRYPTION_KEY_LEN
        )
        key_check.raise_if_invalid()

        with self._audited(Operation.ACTIVATE_INBOX, caller, "inbox", str(caller)):
            key, bump = self.space.inbox(caller)
            inbox = Inbox(
                owner=caller,
                encryption_key=key_check.sanitized_value,
                message_count=0,
                created_at=self.clock(),
                bump=bump,
            )
            self.access.require(Operation.ACTIVATE_INBOX, caller, inbox)
            try:
                self.store.create_if_absent(key, encode_record(inbox))
            except ConflictError as ex:
                if ex.code is ErrorCode.ALREADY_EXISTS:
                    raise ConflictError(f"Inbox already active for {caller}") from ex
                raise

        logger.info("Inbox activated", operation="activate_inbox", owner=str(caller))
        return inbox

    @timed_operation(logger, "send_direct_message")
    def send_direct_message(
        self,
        caller: Address,
        recipient_inbox: AddressLike,
        arweave_hash: str,
        burn_after_reading: bool = False,
        expected_id: Optional[int] = None,
    ) -> DirectMessage:
        Validators.validate_arweave_hash(arweave_hash).raise_if_invalid()
        inbox_key = Address.parse(recipient_inbox)

        with self._audited(Operation.SEND_DIRECT_MESSAGE, caller, "inbox", str(inbox_key)):
            with self.store.transaction(inbox_key) as uow:
                inbox = _decode(uow.read(inbox_key), Inbox, inbox_key)
                self.access.require(Operation.SEND_DIRECT_MESSAGE, caller, inbox)
                self._check_expected(expected_id, inbox.message_count)

                issued, advanced = SequenceAllocator.allocate(inbox, "message_count")
                msg_key, bump = self.space.direct_message(inbox.owner, issued)
                uow.include(msg_key)
                message = DirectMessage(
                    id=issued,
                    sender=caller,
                    recipient=inbox.owner,
                    arweave_hash=arweave_hash,
                    burn_after_reading=bool(burn_after_reading),
                    state=BurnState.UNBURNED,
                    timestamp=self.clock(),
                    bump=bump,
                )
                uow.create(msg_key, encode_record(message))
                uow.write(inbox_key, encode_record(advanced))

        logger.info(
            "Direct message sent",
            operation="send_direct_message",
            recipient=str(inbox.owner),
            message_id=issued,
        )
        return message

    @timed_operation(logger, "burn_message")
    def burn_message(self, caller: Address, message: AddressLike) -> DirectMessage:
        """Flag a message as burned. Recipient only; a second burn is rejected."""
        msg_key = Address.parse(message)

        with self._audited(Operation.BURN_MESSAGE, caller, "direct_message", str(msg_key)):
            with self.store.transaction(msg_key) as uow:
                current = _decode(uow.read(msg_key), DirectMessage, msg_key)
                self.access.require(Operation.BURN_MESSAGE, caller, current)
                if current.burned:
                    raise StateError(
                        f"Message {current.id} has already been burned", ErrorCode.ALREADY_BURNED
                    )
                burned = current.burn()
                uow.write(msg_key, encode_record(burned))

        logger.info("Message burned", operation="burn_message", message_id=burned.id)
        return burned

    @staticmethod
    def _check_expected(expected_id: Optional[int], counter: int) -> None:
        if expected_id is not None and expected_id != counter:
            raise ConflictError(
                f"Expected next id {expected_id} but the counter is at {counter}",
                ErrorCode.STALE_COUNTER,
            )

    # -------------------------------------------------------------------------
    # Address helpers
    # -------------------------------------------------------------------------

    def proof_address(self, hash_: Union[bytes, str]) -> Tuple[Address, int]:
        check = Validators.validate_fixed_bytes(hash_, "hash", Validators.HASH_LEN)
        check.raise_if_invalid()
        return self.space.proof(check.sanitized_value)

    def organization_address(self, slug: str) -> Tuple[Address, int]:
        Validators.validate_slug(slug).raise_if_invalid()
        return self.space.organization(slug)

    def submission_address(self, organization: AddressLike, submission_id: int) -> Tuple[Address, int]:
        Validators.validate_counter(submission_id, "submission_id").raise_if_invalid()
        return self.space.submission(Address.parse(organization), submission_id)

    def inbox_address(self, owner: AddressLike) -> Tuple[Address, int]:
        return self.space.inbox(Address.parse(owner))

    def message_address(self, recipient: AddressLike, message_id: int) -> Tuple[Address, int]:
        Validators.validate_counter(message_id, "message_id").raise_if_invalid()
        return self.space.direct_message(Address.parse(recipient), message_id)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @staticmethod
    def hash_bytes(data: bytes) -> bytes:
        return hashlib.sha256(data).digest()

    @staticmethod
    def hash_file(path: Union[str, Path]) -> bytes:
        """SHA-256 of a file, read in chunks."""
        hasher = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
                hasher.update(chunk)
        return hasher.digest()

    def get_proof(self, hash_: Union[bytes, str]) -> Optional[Proof]:
        """The proof registered for ``hash_``, or None if it was never stamped."""
        key, _ = self.proof_address(hash_)
        blob = self.store.get(key)
        return decode_record(blob, Proof) if blob is not None else None

    def get_organization_at(self, address: AddressLike) -> Organization:
        key = Address.parse(address)
        return _decode(self.store.read(key), Organization, key)

    def get_organization(self, slug: str) -> Organization:
        key, _ = self.organization_address(slug)
        blob = self.store.get(key)
        if blob is None:
            raise NotFoundError(f"Organization '{slug}' not found")
        return decode_record(blob, Organization)

    def list_organizations(self, admin: Optional[AddressLike] = None) -> List[Tuple[Address, Organization]]:
        """All organizations ordered by slug, optionally only those ``admin`` runs."""
        discriminator = layout_for(Organization).discriminator
        orgs = [
            (key, decode_record(blob, Organization))
            for key, blob in self.store.scan(discriminator)
        ]
        if admin is not None:
            admin_addr = Address.parse(admin)
            orgs = [(key, org) for key, org in orgs if org.admin == admin_addr]
        return sorted(orgs, key=lambda item: item[1].slug)

    def list_submissions(self, organization: AddressLike) -> List[Submission]:
        """Submissions of an organization, newest first."""
        org_key = Address.parse(organization)
        org = self.get_organization_at(org_key)
        return self._walk(
            org.submission_count,
            lambda i: self.space.submission(org_key, i)[0],
            Submission,
        )

    def get_inbox(self, owner: AddressLike) -> Inbox:
        key, _ = self.inbox_address(owner)
        blob = self.store.get(key)
        if blob is None:
            raise NotFoundError(f"No inbox for {Address.parse(owner)}")
        return decode_record(blob, Inbox)

    def list_messages(self, owner: AddressLike) -> List[DirectMessage]:
        """Messages in ``owner``'s inbox, newest first."""
        owner_addr = Address.parse(owner)
        inbox = self.get_inbox(owner_addr)
        return self._walk(
            inbox.message_count,
            lambda i: self.space.direct_message(owner_addr, i)[0],
            DirectMessage,
        )

    def get_message(self, owner: AddressLike, message_id: int) -> DirectMessage:
        key, _ = self.message_address(owner, message_id)
        blob = self.store.get(key)
        if blob is None:
            raise NotFoundError(f"No message {message_id} in the inbox of {Address.parse(owner)}")
        return decode_record(blob, DirectMessage)

    def _walk(self, count: int, key_for: Callable[[int], Address], record_type: Any) -> List[Any]:
        records = []
        for child_id in range(count - 1, -1, -1):
            blob = self.store.get(key_for(child_id))
            if blob is not None:
                records.append(decode_record(blob, record_type))
        return records
