"""Caller-supplied deadline and cancellation for blocking calls.

Every blocking operation in hybrid_e2e takes a CancelToken. Polling loops
call ``token.check()`` before each network call and sleep through
``token.sleep()``, so a cancel from another thread or an elapsed deadline
stops them promptly with an error instead of a zero result.

Example:
    token = CancelToken(timeout=600)
    provider.verify_uninstall(instance_id, token)

    # narrower budget for one step, same cancellation
    runner.run(instance_id, commands, token.with_timeout(120))
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from hybrid_e2e.exceptions import CancellationError, TimeoutError

type Clock = Callable[[], float]


class CancelToken:
    """Deadline plus cancellation flag, safe to share across threads."""

    __slots__ = ("_clock", "_deadline", "_event")

    def __init__(
        self,
        timeout: float | None = None,
        *,
        clock: Clock = time.monotonic,
        _deadline: float | None = None,
        _event: threading.Event | None = None,
    ) -> None:
        self._clock = clock
        self._event = _event or threading.Event()
        if timeout is not None:
            own = clock() + timeout
            self._deadline = own if _deadline is None else min(own, _deadline)
        else:
            self._deadline = _deadline

    def with_timeout(self, timeout: float | None) -> CancelToken:
        """Derive a token whose deadline is at most ``timeout`` seconds away.

        The child shares this token's cancellation flag; cancelling either
        cancels both.
        """
        return CancelToken(
            timeout,
            clock=self._clock,
            _deadline=self._deadline,
            _event=self._event,
        )

    @property
    def deadline(self) -> float | None:
        return self._deadline

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    def remaining(self) -> float | None:
        """Seconds until the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def check(self, operation: str = "operation") -> None:
        """Raise if the token is cancelled or past its deadline.

        Raises:
            CancellationError: If cancel() was called.
            TimeoutError: If the deadline has passed.
        """
        if self.cancelled:
            raise CancellationError(f"{operation} cancelled")
        if self.expired:
            raise TimeoutError(f"{operation} exceeded its deadline")

    def sleep(self, seconds: float) -> None:
        """Sleep up to ``seconds``, waking early on cancel or deadline."""
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        if seconds > 0:
            self._event.wait(seconds)

    def __repr__(self) -> str:
        return f"CancelToken(cancelled={self.cancelled}, remaining={self.remaining()})"
