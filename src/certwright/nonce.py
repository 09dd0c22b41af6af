"""Replay-nonce bookkeeping for one session.

The server hands out a fresh ``Replay-Nonce`` with every response, including
error responses. The tracker holds at most one unspent nonce; signing a request
consumes it and the response replaces it.
"""

from collections import deque

from certwright._logging import SessionLogger, get_logger
from certwright.exceptions import NoNonceError


# Spent nonces remembered for reissue detection
SPENT_HISTORY = 256


class NonceTracker:
    """Holds the single unspent nonce and remembers the most recently used ones."""

    def __init__(self, log: SessionLogger | None = None, history: int = SPENT_HISTORY) -> None:
        self._nonce: str | None = None
        self._spent: deque[str] = deque(maxlen=history)
        self._log = log or SessionLogger(get_logger(__name__))

    @property
    def held(self) -> bool:
        return self._nonce is not None

    def current(self) -> str:
        """Return the held nonce without consuming it.

        Raises:
            NoNonceError: If no nonce is held.
        """
        if self._nonce is None:
            raise NoNonceError("no nonce held; fetch one from newNonce first")
        return self._nonce

    def consume(self) -> str:
        """Return the held nonce and forget it, so it is used exactly once."""
        nonce = self.current()
        self._nonce = None
        self._spent.append(nonce)
        return nonce

    def replace(self, nonce: str | None) -> None:
        """Hold ``nonce`` in place of whatever was held before.

        Empty values are ignored. A value that was already spent is dropped,
        leaving the tracker empty so the next request fetches a fresh one.
        """
        if not nonce:
            return
        if nonce in self._spent:
            self._log.warning("Server reissued a spent nonce, discarding it")
            self._nonce = None
            return
        self._nonce = nonce

    def clear(self) -> None:
        self._nonce = None
