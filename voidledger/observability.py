"""
VOIDLEDGER Observability

Structured logging and a tamper-evident audit trail for ledger operations.

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                    Ledger Code                           │
    │  logger.info("msg", slug=x)   audit.log(actor, action)  │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │              LedgerLogger / AuditLogger                  │
    │  correlation IDs, component tags, hash chaining         │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │          "voidledger" logger (configure_logging)         │
    │        StructuredHandler (json) │ TextFormatter (text)   │
    └─────────────────────────────────────────────────────────┘

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextvars
import fcntl
import functools
import hashlib
import json
import logging
import sys
import threading
import time
import traceback
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

ROOT_LOGGER = "voidledger"

# Context variable for request-scoped correlation
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)


class LogLevel(Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class Component(Enum):
    """Ledger components for categorization."""
    ADDRESSING = "addressing"
    STORE = "store"
    ACCESS = "access"
    ENGINE = "engine"
    CONFIG = "config"
    AUDIT = "audit"
    CLI = "cli"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    component: str = ""
    operation: str = ""
    duration_ms: Optional[float] = None
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_record(cls, record: logging.LogRecord) -> "LogEvent":
        event = cls(
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            level=record.levelname.lower(),
            logger=record.name,
            message=record.getMessage(),
            correlation_id=correlation_id_var.get(),
            component=getattr(record, "component", ""),
            operation=getattr(record, "operation", ""),
            duration_ms=getattr(record, "duration_ms", None),
            error_code=getattr(record, "error_code", ""),
            context=getattr(record, "context", {}),
        )
        if record.exc_info:
            event.exception = "".join(traceback.format_exception(*record.exc_info))
        return event


class StructuredHandler(logging.Handler):
    """Logging handler that outputs one JSON object per line."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream or sys.stderr

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.stream.write(LogEvent.from_record(record).to_json() + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


class TextFormatter(logging.Formatter):
    """Human-readable single-line format with trailing key=value context."""

    def format(self, record: logging.LogRecord) -> str:
        event = LogEvent.from_record(record)
        parts = [event.timestamp, event.level.upper(), event.logger, event.message]
        extras = dict(event.context)
        if event.operation:
            extras["operation"] = event.operation
        if event.duration_ms is not None:
            extras["duration_ms"] = round(event.duration_ms, 2)
        if event.error_code:
            extras["error_code"] = event.error_code
        line = " ".join(parts)
        if extras:
            line += " " + " ".join(f"{k}={v}" for k, v in sorted(extras.items()))
        if event.exception:
            line += "\n" + event.exception.rstrip()
        return line


def configure_logging(level: str = "warning", fmt: str = "json", stream: Any = None) -> logging.Logger:
    """
    Install the single ledger handler on the ``voidledger`` logger.

    Calling again replaces the previous handler, so tests and the CLI can
    reconfigure freely.
    """
    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        if getattr(handler, "_voidledger", False):
            root.removeHandler(handler)

    if fmt == "json":
        handler: logging.Handler = StructuredHandler(stream)
    else:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(TextFormatter())
    handler._voidledger = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper()))
    root.propagate = False
    return root


class LedgerLogger:
    """
    Structured logger for ledger components.

    Every event carries the component tag and the current correlation id.
    Records propagate to the ``voidledger`` logger configured by
    ``configure_logging``.
    """

    def __init__(self, name: str, component: Component):
        self.name = name
        self.component = component
        self._logger = logging.getLogger(f"{ROOT_LOGGER}.{component.value}.{name}")

    def _log(
        self,
        level: int,
        message: str,
        operation: str = "",
        error_code: str = "",
        duration_ms: Optional[float] = None,
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        extra = {
            "component": self.component.value,
            "operation": operation,
            "error_code": error_code,
            "duration_ms": duration_ms,
            "context": context,
        }
        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, **context)

    def error(
        self,
        message: str,
        error_code: str = "",
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        self._log(logging.ERROR, message, error_code=error_code, exc_info=exc_info, **context)

    def operation(
        self,
        name: str,
        duration_ms: float,
        success: bool = True,
        **context: Any,
    ) -> None:
        """Log an operation completion."""
        level = logging.INFO if success else logging.WARNING
        status = "completed" if success else "failed"
        self._log(
            level,
            f"Operation {name} {status}",
            operation=name,
            duration_ms=duration_ms,
            **context,
        )


def generate_correlation_id() -> str:
    return f"corr-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    """Set the correlation ID for the current context."""
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    """Get the current correlation ID, creating one if unset."""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


def get_logger(name: str, component: Component) -> LedgerLogger:
    return LedgerLogger(name, component)


T = TypeVar("T")


def timed_operation(
    logger: LedgerLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for timing and logging operations."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            start = time.monotonic()
            success = True
            error_code = ""
            try:
                return func(*args, **kwargs)
            except Exception as ex:
                success = False
                code = getattr(ex, "code", None)
                error_code = getattr(code, "label", "") or type(ex).__name__
                raise
            finally:
                duration_ms = (time.monotonic() - start) * 1000
                if error_code:
                    logger.operation(operation_name, duration_ms, success, error_code=error_code)
                else:
                    logger.operation(operation_name, duration_ms, success)
        return wrapper
    return decorator


# =============================================================================
# AUDIT TRAIL
# =============================================================================

GENESIS_HASH = "genesis"


class AuditTrailError(ValueError):
    """A persisted audit trail could not be read."""
    pass


class AuditOutcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"


@dataclass
class AuditEvent:
    """One entry in the audit trail."""
    event_id: str
    timestamp: str
    actor: str
    action: str
    resource_type: str
    resource_id: str
    outcome: str
    correlation_id: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    previous_hash: str = GENESIS_HASH
    event_hash: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEvent":
        if not isinstance(data, dict):
            raise AuditTrailError(f"Audit event must be an object, got {type(data).__name__}")
        known = {f.name for f in fields(cls)}
        try:
            return cls(**{k: v for k, v in data.items() if k in known})
        except TypeError as ex:
            raise AuditTrailError(f"Incomplete audit event: {ex}") from ex

    def digest(self) -> str:
        """Hash of every field except ``event_hash``, chained to the previous entry."""
        body = self.to_dict()
        body.pop("event_hash")
        data = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(data.encode("utf-8")).hexdigest()


class AuditLogger:
    """
    Tamper-evident audit trail.

    Each event stores the hash of its predecessor; editing or removing any
    entry breaks ``verify_chain``. The trail lives in memory and can be
    persisted as JSON Lines with ``append_to`` and read back with ``load``.
    """

    def __init__(self, logger: Optional[LedgerLogger] = None, enabled: bool = True):
        self._logger = logger or get_logger("trail", Component.AUDIT)
        self.enabled = enabled
        self._events: List[AuditEvent] = []
        self._last_hash: str = GENESIS_HASH
        self._persisted = 0
        self._lock = threading.Lock()

    def log(
        self,
        actor: str,
        action: str,
        resource_type: str,
        resource_id: str,
        outcome: AuditOutcome,
        **details: Any,
    ) -> Optional[AuditEvent]:
        if not self.enabled:
            return None

        event = AuditEvent(
            event_id=uuid.uuid4().hex,
            timestamp=datetime.now(timezone.utc).isoformat(),
            actor=actor,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            outcome=outcome.value,
            correlation_id=get_correlation_id(),
            details=details,
        )

        with self._lock:
            event.previous_hash = self._last_hash
            event.event_hash = event.digest()
            self._last_hash = event.event_hash
            self._events.append(event)

        self._logger.info(
            f"AUDIT: {action} on {resource_type}/{resource_id} {outcome.value}",
            operation="audit",
            actor=actor,
            outcome=outcome.value,
            event_hash=event.event_hash,
        )
        return event

    @property
    def events(self) -> List[AuditEvent]:
        with self._lock:
            return list(self._events)

    @property
    def head(self) -> str:
        with self._lock:
            return self._last_hash

    def verify_chain(self) -> bool:
        previous = GENESIS_HASH
        for event in self.events:
            if event.previous_hash != previous or event.digest() != event.event_hash:
                return False
            previous = event.event_hash
        return True

    def export(self) -> List[Dict[str, Any]]:
        return [event.to_dict() for event in self.events]

    # -------------------------------------------------------------------------
    # JSON Lines persistence
    # -------------------------------------------------------------------------

    @classmethod
    def load(cls, path: Union[str, Path], logger: Optional[LedgerLogger] = None) -> "AuditLogger":
        """
        Read a trail written by ``append_to``.

        The chain is not checked here; a tampered file loads and then fails
        ``verify_chain``.
        """
        path = Path(path)
        audit = cls(logger=logger)
        with path.open("r", encoding="utf-8") as handle:
            events = _parse_events(handle.read(), path)
        audit._events = events
        audit._persisted = len(events)
        if events:
            audit._last_hash = events[-1].event_hash
        return audit

    def append_to(self, path: Union[str, Path]) -> int:
        """
        Append events not yet written to ``path``; returns how many were written.

        Runs under an exclusive lock on the file. If another writer appended
        since this trail was loaded, the pending events are re-chained onto
        the file's last event and this trail is refreshed to match the file.
        """
        path = Path(path)
        with self._lock:
            pending = self._events[self._persisted:]
            if not pending:
                return 0
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a+", encoding="utf-8") as handle:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
                try:
                    handle.seek(0)
                    existing = _parse_events(handle.read(), path)
                    previous = existing[-1].event_hash if existing else GENESIS_HASH
                    if pending[0].previous_hash != previous:
                        for event in pending:
                            event.previous_hash = previous
                            event.event_hash = event.digest()
                            previous = event.event_hash
                    for event in pending:
                        handle.write(json.dumps(event.to_dict(), sort_keys=True, default=str) + "\n")
                    handle.flush()
                finally:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            self._events = existing + pending
            self._persisted = len(self._events)
            self._last_hash = self._events[-1].event_hash

        self._logger.debug(
            "Appended audit events",
            operation="audit_append",
            path=str(path),
            events=len(pending),
        )
        return len(pending)


def _parse_events(text: str, path: Path) -> List[AuditEvent]:
    events = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError as ex:
            raise AuditTrailError(f"{path}:{lineno}: not valid JSON: {ex}") from ex
        try:
            events.append(AuditEvent.from_dict(data))
        except AuditTrailError as ex:
            raise AuditTrailError(f"{path}:{lineno}: {ex}") from ex
    return events
