"""Cancellation and deadlines for in-flight issuance.

Network calls and poll waits are the only places a session blocks. Both
consult the scope installed in the current context, so a caller can abort an
issuance from another thread (for instance on shutdown)::

    scope = CancelScope(timeout=600)
    with scope:
        session.fetch_or_renew_cert("example.org")

    # elsewhere
    scope.cancel()

Cancellation raises :class:`~certwright.exceptions.CancelledError` at the next
suspension point; cleanup blocks still run.
"""

import threading
import time
from contextvars import ContextVar, Token

from certwright.exceptions import CancelledError


class CancelScope:
    """A cancellation flag with an optional monotonic deadline."""

    def __init__(self, timeout: float | None = None) -> None:
        self._event = threading.Event()
        self.deadline = time.monotonic() + timeout if timeout is not None else None
        self._tokens: list[Token["CancelScope | None"]] = []

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None when there is none."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        """Raise CancelledError if cancelled or past the deadline."""
        if self.cancelled:
            raise CancelledError("operation cancelled")
        if self.expired:
            raise CancelledError("deadline exceeded")

    def sleep(self, seconds: float) -> None:
        """Wait up to ``seconds``, waking early on cancellation."""
        self.check()
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self._event.wait(remaining)
        else:
            self._event.wait(seconds)
        self.check()

    def bound_timeout(self, timeout: float) -> float:
        """Clamp a network timeout so it never outlives the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        return min(timeout, remaining)

    def __enter__(self) -> "CancelScope":
        self._tokens.append(_current_scope.set(self))
        return self

    def __exit__(self, *args: object) -> None:
        _current_scope.reset(self._tokens.pop())


_current_scope: ContextVar[CancelScope | None] = ContextVar("current_scope", default=None)

# Scope used when the caller never installed one: never cancels, no deadline.
_UNBOUNDED = CancelScope()


def current_scope() -> CancelScope:
    """Return the scope installed in this context, or an unbounded one."""
    scope = _current_scope.get()
    return scope if scope is not None else _UNBOUNDED
