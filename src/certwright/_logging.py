"""Logging utilities for the certwright library."""

import logging
import sys
import time
from contextvars import ContextVar, Token
from typing import Any, Protocol, TextIO, runtime_checkable

# NullHandler on root logger (library best practice)
_root = logging.getLogger("certwright")
_root.addHandler(logging.NullHandler())

# Domains being issued for in the current context
_current_domains: ContextVar[list[str] | None] = ContextVar("current_domains", default=None)


def set_domains(domains: list[str] | None) -> Token[list[str] | None]:
    """Set current domains for logging context.

    Args:
        domains: List of domains being processed.

    Returns:
        Token to reset the context.
    """
    return _current_domains.set(domains)


def reset_domains(token: Token[list[str] | None]) -> None:
    """Reset domains context.

    Args:
        token: Token from set_domains() call.
    """
    _current_domains.reset(token)


def get_domain_extra() -> dict[str, list[str] | str]:
    """Get domain info for log extra fields.

    Returns:
        Dict with 'domain' (single) or 'domains' (multiple), or empty dict.
    """
    domains = _current_domains.get()
    if domains is None:
        return {}
    if len(domains) == 1:
        return {"domain": domains[0]}
    return {"domains": domains}


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the certwright namespace.

    Args:
        name: The module name (typically __name__).

    Returns:
        A logger instance for the module.
    """
    return logging.getLogger(name)


@runtime_checkable
class LogSink(Protocol):
    """Anything that accepts diagnostic text, one message at a time."""

    def log(self, message: str) -> None: ...


class StdoutSink:
    """Write each message to standard output."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    def log(self, message: str) -> None:
        print(message, file=self._stream or sys.stdout)


class StderrSink(StdoutSink):
    """Write each message to standard error."""

    def log(self, message: str) -> None:
        print(message, file=self._stream or sys.stderr)


class SinkHandler(logging.Handler):
    """Logging handler that forwards formatted records to a LogSink."""

    def __init__(self, sink: LogSink, level: int = logging.DEBUG) -> None:
        super().__init__(level)
        self.sink = sink
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.sink.log(self.format(record))
        except Exception:
            self.handleError(record)


class SessionLogger(logging.LoggerAdapter):
    """Logger adapter used by a session and its components.

    Merges the current domain context into every record's extra fields and,
    when a sink is configured, hands every record to it regardless of the
    logger's level. Without a sink the records only reach whatever handlers
    the application has attached to the ``certwright`` hierarchy.
    """

    def __init__(self, logger: logging.Logger, sink: LogSink | None = None) -> None:
        super().__init__(logger, {})
        self.sink_handler = SinkHandler(sink) if sink is not None else None

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**get_domain_extra(), **kwargs.get("extra", {})}
        return msg, kwargs

    def child(self, name: str) -> "SessionLogger":
        """Return an adapter for a child logger sharing this sink."""
        adapter = SessionLogger(self.logger.getChild(name))
        adapter.sink_handler = self.sink_handler
        return adapter

    def log(self, level: int, msg: Any, *args: Any, **kwargs: Any) -> None:
        msg, kwargs = self.process(msg, kwargs)
        if self.logger.isEnabledFor(level):
            self.logger.log(level, msg, *args, **kwargs)
        if self.sink_handler is not None and level >= self.sink_handler.level:
            record = self.logger.makeRecord(
                self.logger.name,
                level,
                "(sink)",
                0,
                msg,
                args,
                None,
                extra=kwargs.get("extra"),
            )
            self.sink_handler.handle(record)


class Timer:
    """Context manager for timing operations.

    Usage:
        with Timer() as t:
            # do work
        print(f"Elapsed: {t.elapsed_ms}ms")
    """

    def __init__(self) -> None:
        self.elapsed_ms: float = 0
        self._start: float = 0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000
