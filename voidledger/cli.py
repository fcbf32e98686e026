#!/usr/bin/env python3
"""
VOIDLEDGER CLI

Command-line interface for the VOIDLEDGER record store. Ledger state lives
in a JSON snapshot between invocations; every mutating command is signed
with the caller's keypair and authenticated before it reaches the engine.

Usage:
    voidledger [--state F] [--keypair K] [--config C] <command> [subcommand] [options]

Commands:
    keygen      Generate an Ed25519 keypair
    proof       Proofs of existence (create, verify, certificate)
    org         Organization drop boxes (create, show, list, deactivate, submissions)
    tip         Encrypted tip pointers (submit)
    inbox       Direct-message inboxes (activate, show, messages)
    dm          Direct messages (send, burn)
    address     Derive record addresses without touching state
    audit       Audit trail kept beside the state file (verify, show)
    config      Configuration management

Exit codes:
    0  success
    1  ledger, state or configuration error
    2  usage error

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from voidledger import __version__
from voidledger.access import Authenticator, Keypair, NonceRegistry, Operation
from voidledger.addressing import Address
from voidledger.certificate import certificate_filename, render_certificate
from voidledger.config import ConfigError, ConfigManager, get_config_manager
from voidledger.engine import LedgerEngine
from voidledger.hardening import LedgerError, NotFoundError
from voidledger.observability import (
    AuditLogger,
    configure_logging,
    generate_correlation_id,
    set_correlation_id,
)
from voidledger.store import SnapshotError

DEFAULT_KEYPAIR = Path.home() / ".voidledger" / "id.json"


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TABLE = "table"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        return yaml.dump(data, default_flow_style=False)
    elif fmt == OutputFormat.TABLE:
        return _format_table(data)
    else:
        return str(data)


def _format_table(data: Any) -> str:
    """Format data as ASCII table."""
    if isinstance(data, dict) and len(data) == 2 and "count" in data:
        rows = next(v for k, v in data.items() if k != "count")
        if isinstance(rows, list):
            data = rows
    if isinstance(data, list) and data and isinstance(data[0], dict):
        headers = list(data[0].keys())
        rows = [[str(row.get(h, ""))[:44] for h in headers] for row in data]
        widths = [max(len(h), max(len(r[i]) for r in rows)) for i, h in enumerate(headers)]

        lines = []
        lines.append(" | ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
        lines.append("-+-".join("-" * w for w in widths))
        for row in rows:
            lines.append(" | ".join(c.ljust(widths[i]) for i, c in enumerate(row)))
        return "\n".join(lines)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


def _with_address(address: Address, record: Any) -> Dict[str, Any]:
    result = {"address": str(address)}
    result.update(record.to_dict())
    return result


class VoidLedgerCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="voidledger",
            description="VOIDLEDGER deterministically-addressed record store",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"voidledger {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml", "table", "text"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error messages",
        )
        self.parser.add_argument("--state", "-s", help="State file (default: ledger.state_path)")
        self.parser.add_argument(
            "--keypair", "-k",
            help=f"Keypair file (default: {DEFAULT_KEYPAIR})",
        )
        self.parser.add_argument("--config", "-c", help="Configuration file (YAML)")

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        """Register all command groups."""
        self._register_keygen_command()
        self._register_proof_commands()
        self._register_org_commands()
        self._register_tip_commands()
        self._register_inbox_commands()
        self._register_dm_commands()
        self._register_address_commands()
        self._register_audit_commands()
        self._register_config_commands()

    def _register_keygen_command(self) -> None:
        keygen = self.subparsers.add_parser("keygen", help="Generate an Ed25519 keypair")
        keygen.add_argument("--outfile", "-o", help=f"Where to write it (default: {DEFAULT_KEYPAIR})")
        keygen.add_argument("--force", action="store_true", help="Overwrite an existing file")

    def _register_proof_commands(self) -> None:
        """Register proof subcommands."""
        proof = self.subparsers.add_parser("proof", help="Proofs of existence")
        proof_sub = proof.add_subparsers(dest="subcommand")

        for name, help_text in (("create", "Stamp a file or hash"), ("verify", "Look up a stamp")):
            cmd = proof_sub.add_parser(name, help=help_text)
            source = cmd.add_mutually_exclusive_group(required=True)
            source.add_argument("--file", help="File to hash")
            source.add_argument("--hash", help="SHA-256 as 64 hex characters")

        certificate = proof_sub.add_parser("certificate", help="Write a PDF certificate for a stamp")
        source = certificate.add_mutually_exclusive_group(required=True)
        source.add_argument("--file", help="File to hash")
        source.add_argument("--hash", help="SHA-256 as 64 hex characters")
        certificate.add_argument("--out", help="PDF path (default: void-proof-<hash prefix>.pdf)")

    def _register_org_commands(self) -> None:
        """Register organization subcommands."""
        org = self.subparsers.add_parser("org", help="Organization drop boxes")
        org_sub = org.add_subparsers(dest="subcommand")

        create = org_sub.add_parser("create", help="Create an organization")
        create.add_argument("--slug", required=True, help="Unique slug (max 32 bytes)")
        create.add_argument("--name", required=True, help="Display name (max 64 bytes)")
        create.add_argument("--description", default="", help="Description (max 256 bytes)")
        create.add_argument("--encryption-key", required=True, help="65-byte public key as hex")

        show = org_sub.add_parser("show", help="Show an organization")
        show.add_argument("--slug", required=True)

        list_cmd = org_sub.add_parser("list", help="List organizations")
        list_cmd.add_argument("--admin", help="Only organizations administered by this address")

        deactivate = org_sub.add_parser("deactivate", help="Stop accepting tips (admin only)")
        deactivate.add_argument("--slug", required=True)

        submissions = org_sub.add_parser("submissions", help="List submissions, newest first")
        submissions.add_argument("--slug", required=True)

    def _register_tip_commands(self) -> None:
        tip = self.subparsers.add_parser("tip", help="Encrypted tips")
        tip_sub = tip.add_subparsers(dest="subcommand")

        submit = tip_sub.add_parser("submit", help="Submit a tip pointer to an organization")
        submit.add_argument("--slug", required=True)
        submit.add_argument("--arweave-hash", required=True, help="Pointer to the encrypted tip")
        submit.add_argument("--expected-id", type=int, help="Fail unless this is the next submission id")

    def _register_inbox_commands(self) -> None:
        inbox = self.subparsers.add_parser("inbox", help="Direct-message inboxes")
        inbox_sub = inbox.add_subparsers(dest="subcommand")

        activate = inbox_sub.add_parser("activate", help="Activate your inbox")
        activate.add_argument("--encryption-key", required=True, help="65-byte public key as hex")

        show = inbox_sub.add_parser("show", help="Show an inbox")
        show.add_argument("--owner", help="Owner address (default: keypair address)")

        messages = inbox_sub.add_parser("messages", help="List messages, newest first")
        messages.add_argument("--owner", help="Owner address (default: keypair address)")

    def _register_dm_commands(self) -> None:
        dm = self.subparsers.add_parser("dm", help="Direct messages")
        dm_sub = dm.add_subparsers(dest="subcommand")

        send = dm_sub.add_parser("send", help="Send a message pointer to an inbox owner")
        send.add_argument("--to", required=True, help="Recipient address")
        send.add_argument("--arweave-hash", required=True, help="Pointer to the encrypted message")
        send.add_argument("--burn-after-reading", action="store_true")
        send.add_argument("--expected-id", type=int, help="Fail unless this is the next message id")

        burn = dm_sub.add_parser("burn", help="Burn a message in your inbox")
        burn.add_argument("--id", type=int, required=True, help="Message id")

    def _register_address_commands(self) -> None:
        address = self.subparsers.add_parser("address", help="Derive record addresses")
        address_sub = address.add_subparsers(dest="subcommand")

        proof = address_sub.add_parser("proof", help="Address of a proof")
        proof.add_argument("--hash", required=True)

        org = address_sub.add_parser("org", help="Address of an organization")
        org.add_argument("--slug", required=True)

        submission = address_sub.add_parser("submission", help="Address of a submission")
        submission.add_argument("--slug", required=True)
        submission.add_argument("--id", type=int, required=True)

        inbox = address_sub.add_parser("inbox", help="Address of an inbox")
        inbox.add_argument("--owner", required=True)

        dm = address_sub.add_parser("dm", help="Address of a direct message")
        dm.add_argument("--owner", required=True)
        dm.add_argument("--id", type=int, required=True)

    def _register_audit_commands(self) -> None:
        audit = self.subparsers.add_parser("audit", help="Audit trail")
        audit_sub = audit.add_subparsers(dest="subcommand")

        audit_sub.add_parser("verify", help="Check the hash chain of the audit trail")
        show = audit_sub.add_parser("show", help="List audit events, oldest first")
        show.add_argument("--limit", type=int, help="Only the last N events")

    def _register_config_commands(self) -> None:
        """Register config subcommands."""
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        get = config_sub.add_parser("get", help="Get configuration value")
        get.add_argument("path", help="Config path (e.g., store.lock_timeout_seconds)")

        config_sub.add_parser("show", help="Show all configuration")
        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration schema")

    # -------------------------------------------------------------------------
    # Run loop
    # -------------------------------------------------------------------------

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help(sys.stderr)
            return 2

        set_correlation_id(generate_correlation_id())

        try:
            self._configure(parsed)
            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except LedgerError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

        except (ConfigError, SnapshotError, OSError, ValueError) as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _configure(self, args: argparse.Namespace) -> None:
        self.config_manager: ConfigManager = get_config_manager()
        if args.config:
            self.config_manager.load_from_file(args.config)
        else:
            self.config_manager.load_defaults()
        problems = self.config_manager.validate()
        if problems:
            if args.command != "config":
                raise ConfigError("Invalid configuration: " + "; ".join(problems))
            return

        obs = self.config_manager.config.observability
        configure_logging(obs.log_level.get(), obs.log_format.get())

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}".rstrip(), exit_code=2)

        return handler(args)

    # -------------------------------------------------------------------------
    # Shared plumbing
    # -------------------------------------------------------------------------

    def _state_path(self, args: argparse.Namespace) -> Path:
        return Path(args.state or self.config_manager.config.ledger.state_path.get())

    def _engine(self, args: argparse.Namespace) -> LedgerEngine:
        return LedgerEngine.open(self._state_path(args), self.config_manager.config)

    def _keypair(self, args: argparse.Namespace) -> Keypair:
        path = Path(args.keypair) if args.keypair else DEFAULT_KEYPAIR
        if not path.exists():
            raise CLIError(f"Keypair not found: {path} (run 'voidledger keygen')")
        return Keypair.from_file(path)

    def _owner(self, args: argparse.Namespace) -> Address:
        if args.owner:
            return Address.parse(args.owner)
        return self._keypair(args).address

    def _signed(
        self,
        args: argparse.Namespace,
        operation: Operation,
        params: Dict[str, Any],
        action: Callable[[LedgerEngine, Address], Any],
    ) -> Any:
        """Sign, authenticate, execute and persist one mutating command."""
        security = self.config_manager.config.security
        authenticator = Authenticator(
            max_age_seconds=security.signature_max_age_seconds.get(),
            nonces=NonceRegistry(ttl_seconds=security.nonce_ttl_seconds.get()),
        )
        request = self._keypair(args).sign_request(operation, params)
        caller = authenticator.authenticate(request, operation)

        state_path = self._state_path(args)
        engine = self._engine(args)
        try:
            result = action(engine, caller)
        except LedgerError:
            engine.save_audit(state_path)
            raise
        engine.save(state_path)
        return result

    @staticmethod
    def _hash_arg(args: argparse.Namespace) -> str:
        if args.file:
            return LedgerEngine.hash_file(args.file).hex()
        return args.hash

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _handle_keygen(self, args: argparse.Namespace) -> Any:
        path = Path(args.outfile) if args.outfile else DEFAULT_KEYPAIR
        if path.exists() and not args.force:
            raise CLIError(f"Refusing to overwrite {path} (use --force)")
        keypair = Keypair.generate()
        keypair.to_file(path)
        return {"address": str(keypair.address), "path": str(path)}

    def _handle_proof_create(self, args: argparse.Namespace) -> Any:
        digest = self._hash_arg(args)

        def action(engine: LedgerEngine, caller: Address) -> Any:
            proof = engine.create_proof(caller, digest)
            return _with_address(engine.proof_address(proof.hash)[0], proof)

        return self._signed(args, Operation.CREATE_PROOF, {"hash": digest}, action)

    def _handle_proof_verify(self, args: argparse.Namespace) -> Any:
        digest = self._hash_arg(args)
        engine = self._engine(args)
        proof = engine.get_proof(digest)
        if proof is None:
            return {"verified": False, "hash": digest}
        result = {"verified": True}
        result.update(_with_address(engine.proof_address(digest)[0], proof))
        return result

    def _handle_proof_certificate(self, args: argparse.Namespace) -> Any:
        digest = self._hash_arg(args)
        engine = self._engine(args)
        proof = engine.get_proof(digest)
        if proof is None:
            raise NotFoundError(f"No proof registered for hash {digest}")
        out = Path(args.out) if args.out else Path(certificate_filename(proof))
        address, _ = engine.proof_address(proof.hash)
        render_certificate(proof, address, engine.space.program_id, out)
        return {"certificate": str(out), "hash": proof.hash.hex(), "address": str(address)}

    def _handle_org_create(self, args: argparse.Namespace) -> Any:
        params = {
            "slug": args.slug,
            "name": args.name,
            "description": args.description,
            "encryption_key": args.encryption_key,
        }

        def action(engine: LedgerEngine, caller: Address) -> Any:
            org = engine.create_organization(
                caller, args.slug, args.name, args.description, args.encryption_key
            )
            return _with_address(engine.organization_address(org.slug)[0], org)

        return self._signed(args, Operation.CREATE_ORGANIZATION, params, action)

    def _handle_org_show(self, args: argparse.Namespace) -> Any:
        engine = self._engine(args)
        org = engine.get_organization(args.slug)
        return _with_address(engine.organization_address(args.slug)[0], org)

    def _handle_org_list(self, args: argparse.Namespace) -> Any:
        orgs = self._engine(args).list_organizations(admin=args.admin)
        return {
            "organizations": [_with_address(key, org) for key, org in orgs],
            "count": len(orgs),
        }

    def _handle_org_deactivate(self, args: argparse.Namespace) -> Any:
        def action(engine: LedgerEngine, caller: Address) -> Any:
            key, _ = engine.organization_address(args.slug)
            return _with_address(key, engine.deactivate_organization(caller, key))

        return self._signed(args, Operation.DEACTIVATE_ORGANIZATION, {"slug": args.slug}, action)

    def _handle_org_submissions(self, args: argparse.Namespace) -> Any:
        engine = self._engine(args)
        key, _ = engine.organization_address(args.slug)
        subs = engine.list_submissions(key)
        return {
            "submissions": [
                _with_address(engine.submission_address(key, sub.id)[0], sub) for sub in subs
            ],
            "count": len(subs),
        }

    def _handle_tip_submit(self, args: argparse.Namespace) -> Any:
        params = {"slug": args.slug, "arweave_hash": args.arweave_hash, "expected_id": args.expected_id}

        def action(engine: LedgerEngine, caller: Address) -> Any:
            key, _ = engine.organization_address(args.slug)
            sub = engine.submit_tip(caller, key, args.arweave_hash, expected_id=args.expected_id)
            return _with_address(engine.submission_address(key, sub.id)[0], sub)

        return self._signed(args, Operation.SUBMIT_TIP, params, action)

    def _handle_inbox_activate(self, args: argparse.Namespace) -> Any:
        def action(engine: LedgerEngine, caller: Address) -> Any:
            inbox = engine.activate_inbox(caller, args.encryption_key)
            return _with_address(engine.inbox_address(caller)[0], inbox)

        return self._signed(
            args, Operation.ACTIVATE_INBOX, {"encryption_key": args.encryption_key}, action
        )

    def _handle_inbox_show(self, args: argparse.Namespace) -> Any:
        owner = self._owner(args)
        engine = self._engine(args)
        return _with_address(engine.inbox_address(owner)[0], engine.get_inbox(owner))

    def _handle_inbox_messages(self, args: argparse.Namespace) -> Any:
        owner = self._owner(args)
        engine = self._engine(args)
        messages = engine.list_messages(owner)
        return {
            "messages": [
                _with_address(engine.message_address(owner, m.id)[0], m) for m in messages
            ],
            "count": len(messages),
        }

    def _handle_dm_send(self, args: argparse.Namespace) -> Any:
        recipient = Address.parse(args.to)
        params = {
            "to": str(recipient),
            "arweave_hash": args.arweave_hash,
            "burn_after_reading": args.burn_after_reading,
            "expected_id": args.expected_id,
        }

        def action(engine: LedgerEngine, caller: Address) -> Any:
            inbox_key, _ = engine.inbox_address(recipient)
            msg = engine.send_direct_message(
                caller, inbox_key, args.arweave_hash,
                burn_after_reading=args.burn_after_reading,
                expected_id=args.expected_id,
            )
            return _with_address(engine.message_address(recipient, msg.id)[0], msg)

        return self._signed(args, Operation.SEND_DIRECT_MESSAGE, params, action)

    def _handle_dm_burn(self, args: argparse.Namespace) -> Any:
        def action(engine: LedgerEngine, caller: Address) -> Any:
            key, _ = engine.message_address(caller, args.id)
            return _with_address(key, engine.burn_message(caller, key))

        return self._signed(args, Operation.BURN_MESSAGE, {"id": args.id}, action)

    def _handle_address_proof(self, args: argparse.Namespace) -> Any:
        key, bump = LedgerEngine(program_id=self._program_id()).proof_address(args.hash)
        return {"family": "proof", "address": str(key), "bump": bump}

    def _handle_address_org(self, args: argparse.Namespace) -> Any:
        key, bump = LedgerEngine(program_id=self._program_id()).organization_address(args.slug)
        return {"family": "org", "address": str(key), "bump": bump}

    def _handle_address_submission(self, args: argparse.Namespace) -> Any:
        engine = LedgerEngine(program_id=self._program_id())
        org_key, _ = engine.organization_address(args.slug)
        key, bump = engine.submission_address(org_key, args.id)
        return {"family": "submission", "address": str(key), "bump": bump}

    def _handle_address_inbox(self, args: argparse.Namespace) -> Any:
        key, bump = LedgerEngine(program_id=self._program_id()).inbox_address(args.owner)
        return {"family": "inbox", "address": str(key), "bump": bump}

    def _handle_address_dm(self, args: argparse.Namespace) -> Any:
        key, bump = LedgerEngine(program_id=self._program_id()).message_address(args.owner, args.id)
        return {"family": "dm", "address": str(key), "bump": bump}

    def _program_id(self) -> str:
        return self.config_manager.config.ledger.program_id.get()

    # Audit handlers
    def _audit_trail(self, args: argparse.Namespace) -> AuditLogger:
        path = LedgerEngine.audit_path(self._state_path(args))
        return AuditLogger.load(path) if path.exists() else AuditLogger()

    def _handle_audit_verify(self, args: argparse.Namespace) -> Any:
        trail = self._audit_trail(args)
        if not trail.verify_chain():
            raise CLIError(f"Audit trail {LedgerEngine.audit_path(self._state_path(args))} is broken")
        return {"valid": True, "events": len(trail.events), "head": trail.head}

    def _handle_audit_show(self, args: argparse.Namespace) -> Any:
        events = self._audit_trail(args).export()
        if args.limit is not None:
            events = events[-args.limit:] if args.limit > 0 else []
        return {"count": len(events), "events": events}

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        return {"path": args.path, "value": self.config_manager.get(args.path)}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return self.config_manager.config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = self.config_manager.validate()
        if errors:
            raise CLIError("Invalid configuration: " + "; ".join(errors))
        return {"valid": True, "errors": []}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        return self.config_manager.export_schema()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    cli = VoidLedgerCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
