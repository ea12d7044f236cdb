"""
AEGIS Observability Framework

Structured logging and a tamper-evident audit trail for the shielded pool.
Provides correlation IDs and context propagation through contextvars.

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                    Pool / Registry Code                  │
    │  logger.info("msg", set_id=x)     audit.record(...)      │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │               AegisLogger / AuditTrail                   │
    │  Correlation IDs, layer tags, hash-chained audit events │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                    StructuredHandler                     │
    │          one JSON object per line on stderr              │
    └─────────────────────────────────────────────────────────┘

Log events never carry note secrets. Commitments, nullifiers and roots are
public values and may be logged.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import contextvars
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
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, TypeVar

# Context variables for request-scoped data
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


class AegisLayer(Enum):
    """AEGIS components for categorization."""
    CRYPTO = "crypto"
    ACCUMULATOR = "accumulator"
    REGISTRY = "registry"
    ASSOCIATION = "association"
    POOL = "pool"
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
        """Convert to dictionary, excluding None values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)


class StructuredHandler(logging.Handler):
    """Logging handler that outputs structured JSON."""

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


def _configured_level() -> LogLevel:
    from shieldpool.aegis.config import get_config
    return LogLevel(get_config().observability.log_level.get())


def _configured_format() -> str:
    from shieldpool.aegis.config import get_config
    return get_config().observability.log_format.get()


class AegisLogger:
    """
    Structured logger for AEGIS components.

    Automatically includes correlation IDs and layer information
    in all log events.
    """

    def __init__(
        self,
        name: str,
        layer: AegisLayer,
        level: Optional[LogLevel] = None,
    ):
        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"aegis.{layer.value}.{name}")
        self._logger.setLevel(getattr(logging, (level or _configured_level()).value.upper()))

        if not self._logger.handlers:
            if _configured_format() == "json":
                self._logger.addHandler(StructuredHandler())
            else:
                handler = logging.StreamHandler()
                handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
                self._logger.addHandler(handler)

    @property
    def logger(self) -> logging.Logger:
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
        """Internal log method."""
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
        error_code: str = "",
        **context: Any,
    ) -> None:
        """Log an operation completion."""
        level = logging.INFO if success else logging.WARNING
        status = "completed" if success else "failed"
        self._log(
            level,
            f"Operation {name} {status}",
            operation=name,
            error_code=error_code,
            duration_ms=duration_ms,
            **context,
        )


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return f"corr-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    """Set the correlation ID for the current context."""
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    """Get the current correlation ID."""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


def get_logger(name: str, layer: AegisLayer) -> AegisLogger:
    """Get a logger for an AEGIS component."""
    return AegisLogger(name, layer)


T = TypeVar("T")


def timed_operation(
    logger: AegisLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for timing and logging operations."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            start = time.monotonic()
            error_code = ""
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                error_code = getattr(exc, "code", type(exc).__name__)
                raise
            finally:
                duration_ms = (time.monotonic() - start) * 1000
                logger.operation(
                    operation_name,
                    duration_ms,
                    success=not error_code,
                    error_code=error_code,
                )
        return wrapper
    return decorator


# =============================================================================
# AUDIT TRAIL
# =============================================================================

GENESIS_HASH = "genesis"


@dataclass
class AuditEvent:
    """Audit record of one committed pool mutation."""
    sequence: int
    timestamp: int
    actor: str
    action: str
    resource_type: str
    resource_id: str
    correlation_id: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    previous_hash: str = GENESIS_HASH
    event_hash: str = ""

    def body(self) -> Dict[str, Any]:
        d = asdict(self)
        d.pop("event_hash")
        return d

    def compute_hash(self) -> str:
        data = json.dumps(self.body(), sort_keys=True, default=str)
        return hashlib.sha256(data.encode()).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AuditTrail:
    """
    Append-only audit log with hash chaining.

    Each event commits to the hash of its predecessor, so editing or dropping
    any event breaks ``verify_chain``.
    """

    def __init__(self, logger: Optional[AegisLogger] = None, enabled: bool = True):
        self._logger = logger
        self.enabled = enabled
        self._events: List[AuditEvent] = []
        self._last_hash: str = GENESIS_HASH
        self._lock = threading.Lock()

    def record(
        self,
        actor: str,
        action: str,
        resource_type: str,
        resource_id: Any,
        timestamp: int = 0,
        **details: Any,
    ) -> Optional[AuditEvent]:
        if not self.enabled:
            return None

        with self._lock:
            event = AuditEvent(
                sequence=len(self._events),
                timestamp=timestamp,
                actor=actor,
                action=action,
                resource_type=resource_type,
                resource_id=str(resource_id),
                correlation_id=get_correlation_id(),
                details=details,
                previous_hash=self._last_hash,
            )
            event.event_hash = event.compute_hash()
            self._events.append(event)
            self._last_hash = event.event_hash

        if self._logger:
            self._logger.info(
                f"AUDIT: {action} on {resource_type}/{event.resource_id}",
                operation="audit",
                actor=actor,
                event_hash=event.event_hash,
            )
        return event

    @property
    def head(self) -> str:
        return self._last_hash

    def events(self) -> List[AuditEvent]:
        return list(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def verify_chain(self) -> bool:
        previous = GENESIS_HASH
        for i, event in enumerate(self._events):
            if event.sequence != i or event.previous_hash != previous:
                return False
            if event.compute_hash() != event.event_hash:
                return False
            previous = event.event_hash
        return previous == self._last_hash
