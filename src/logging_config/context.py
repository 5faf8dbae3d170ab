"""Log Context.

Binds a correlation id and extra fields (alert fingerprint, notification
channel, ...) to every log line emitted inside a ``with LogContext(...)``
block. Values live in contextvars, so concurrent deliveries running as
separate asyncio tasks never see each other's fields.
"""

import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any


_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
_fields_var: ContextVar[dict] = ContextVar("log_fields", default={})


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    return _correlation_id_var.get()


def get_context_dict() -> dict[str, Any]:
    """Fresh dict of the bound fields, correlation id first."""
    ctx: dict[str, Any] = {}
    corr_id = _correlation_id_var.get()
    if corr_id:
        ctx["correlation_id"] = corr_id
    ctx.update(_fields_var.get())
    return ctx


@dataclass
class LogContext:
    """Scoped logging fields.

    A nested context inherits the enclosing correlation id and fields; its
    own ``extra`` wins on key clashes. Everything is restored on exit.

    Example:
        with LogContext(extra={"channel": "webhook", "fingerprint": fp}):
            logger.warning("retrying")  # carries correlation_id, channel, fingerprint
    """

    correlation_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)
    _started: float = field(default_factory=time.perf_counter, repr=False)
    _tokens: list = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not self.correlation_id:
            self.correlation_id = get_correlation_id() or generate_correlation_id()

    def __enter__(self) -> "LogContext":
        self._tokens = [
            _correlation_id_var.set(self.correlation_id),
            _fields_var.set({**_fields_var.get(), **self.extra}),
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        corr_token, fields_token = self._tokens
        _fields_var.reset(fields_token)
        _correlation_id_var.reset(corr_token)
        self._tokens = []

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._started) * 1000

    def bind(self, **kwargs: Any) -> None:
        """Add fields for the rest of this context."""
        _fields_var.set({**_fields_var.get(), **kwargs})
        self.extra.update(kwargs)
