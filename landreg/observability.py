"""
Land Registry Observability

Structured logging and the tamper-evident audit trail.

    ┌─────────────────────────────────────────────────────────┐
    │                    Engine Code                           │
    │  log.info("Asset verified", asset_id=7)                 │
    │  audit.record(actor, "verify", "asset", "7", "success") │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │              EngineLogger / AuditLogger                  │
    │  layer tag, correlation id, hash-chained audit entries   │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │         stdlib logging ("landreg" logger tree)           │
    │  StructuredHandler (JSON lines) │ text formatter         │
    └─────────────────────────────────────────────────────────┘

Loggers never install handlers themselves; ``configure_logging`` attaches
one handler to the ``landreg`` logger and everything below propagates to it.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextvars
import functools
import hashlib
import json
import logging
import sys
import threading
import time
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TypeVar

ROOT_LOGGER_NAME = "landreg"

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)


class EngineLayer(Enum):
    """Engine layers used to tag log events."""
    IDENTITY = "identity"
    EVIDENCE = "evidence"
    REGISTRY = "registry"
    WORKFLOW = "workflow"
    LEDGER = "ledger"
    CONFIG = "config"
    CLI = "cli"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    layer: str = ""
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


class StructuredHandler(logging.Handler):
    """Logging handler that writes one JSON object per line."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream or sys.stderr

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname.lower(),
                logger=record.name,
                message=record.getMessage(),
                correlation_id=correlation_id_var.get(),
                layer=getattr(record, "layer", ""),
                operation=getattr(record, "operation", ""),
                duration_ms=getattr(record, "duration_ms", None),
                error_code=getattr(record, "error_code", ""),
                context=getattr(record, "context", {}),
            )
            if record.exc_info:
                event.exception = "".join(traceback.format_exception(*record.exc_info))
            self.stream.write(event.to_json() + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


class EngineLogger:
    """
    Structured logger for engine components.

    Keyword arguments passed to the log methods land in the event's
    ``context`` mapping; ``operation``, ``error_code`` and ``duration_ms``
    are promoted to top-level fields.
    """

    def __init__(self, name: str, layer: EngineLayer):
        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{layer.value}.{name}")

    @property
    def stdlib_logger(self) -> logging.Logger:
        return self._logger

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
            "layer": self.layer.value,
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
            duration_ms=round(duration_ms, 3),
            **context,
        )


def get_logger(name: str, layer: EngineLayer) -> EngineLogger:
    return EngineLogger(name, layer)


_configure_lock = threading.Lock()


def configure_logging(
    level: str = "INFO",
    log_format: str = "json",
    stream: Any = None,
) -> logging.Handler:
    """
    Install a single handler on the ``landreg`` logger.

    Calling again replaces the previously installed handler, so the CLI and
    tests can reconfigure freely.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    with _configure_lock:
        for existing in list(root.handlers):
            if getattr(existing, "_landreg_handler", False):
                root.removeHandler(existing)
        if log_format == "json":
            handler: logging.Handler = StructuredHandler(stream)
        else:
            handler = logging.StreamHandler(stream or sys.stderr)
            handler.setFormatter(logging.Formatter(
                "%(asctime)s %(levelname)s [%(layer)s] %(name)s: %(message)s",
                defaults={"layer": "-"},
            ))
        handler._landreg_handler = True  # type: ignore[attr-defined]
        root.addHandler(handler)
        root.setLevel(getattr(logging, level.upper()))
    return handler


# ---------------------------------------------------------------------------
# Correlation ids
# ---------------------------------------------------------------------------

def generate_correlation_id() -> str:
    return f"corr-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    """Get the current correlation id, creating one on first use."""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


T = TypeVar("T")


def timed_operation(
    logger: EngineLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for timing and logging operations."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            start = time.monotonic()
            success = True
            try:
                return func(*args, **kwargs)
            except Exception:
                success = False
                raise
            finally:
                logger.operation(operation_name, (time.monotonic() - start) * 1000, success)
        return wrapper
    return decorator


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------

GENESIS_HASH = "genesis"


class AuditOutcome(Enum):
    SUCCESS = "success"
    DENIED = "denied"
    FAILURE = "failure"


@dataclass
class AuditEvent:
    """One attempted transition, successful or not."""
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

    def hashable_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d.pop("event_hash")
        return d

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _chain_hash(event: AuditEvent) -> str:
    data = json.dumps(event.hashable_dict(), sort_keys=True, default=str)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


class AuditLogger:
    """
    Tamper-evident audit trail with hash chaining.

    Every entry embeds the hash of its predecessor; ``verify_chain`` recomputes
    the chain and reports the first broken link.
    """

    def __init__(self, logger: Optional[EngineLogger] = None):
        self._logger = logger or get_logger("audit", EngineLayer.WORKFLOW)
        self._events: List[AuditEvent] = []
        self._last_hash = GENESIS_HASH
        self._lock = threading.Lock()

    def record(
        self,
        actor: str,
        action: str,
        resource_type: str,
        resource_id: str,
        outcome: AuditOutcome,
        **details: Any,
    ) -> AuditEvent:
        with self._lock:
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
                previous_hash=self._last_hash,
            )
            event.event_hash = _chain_hash(event)
            self._last_hash = event.event_hash
            self._events.append(event)

        self._logger.info(
            f"AUDIT: {action} on {resource_type}/{resource_id} -> {outcome.value}",
            operation="audit",
            actor=actor,
            outcome=outcome.value,
            event_hash=event.event_hash,
            **details,
        )
        return event

    @property
    def events(self) -> List[AuditEvent]:
        with self._lock:
            return list(self._events)

    def events_for(self, resource_type: str, resource_id: str) -> List[AuditEvent]:
        return [
            e for e in self.events
            if e.resource_type == resource_type and e.resource_id == resource_id
        ]

    def verify_chain(self) -> Optional[int]:
        """Return the index of the first tampered entry, or None if intact."""
        previous = GENESIS_HASH
        for index, event in enumerate(self.events):
            if event.previous_hash != previous or _chain_hash(event) != event.event_hash:
                return index
            previous = event.event_hash
        return None
