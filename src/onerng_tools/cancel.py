"""Cooperative cancellation tokens shared between an operation and its readers.

A token is cancelled explicitly with ``cancel()``, implicitly when its parent
is cancelled, or when its optional deadline passes.  Nothing is interrupted
forcibly: every blocking loop in the package polls ``cancelled`` between
reads, writes and queue hand-offs.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from .exceptions import DeadlineExceededError, OperationCancelledError

logger = logging.getLogger("onerng_tools.cancel")


class CancelToken:
    """A cancellation signal derived from an optional parent token.

    Example::

        root = CancelToken()
        probe = root.child(timeout_s=0.05)
        ...
        if probe.cancelled:
            raise probe.error()
    """

    def __init__(
        self,
        parent: Optional[CancelToken] = None,
        timeout_s: Optional[float] = None,
        reason: str = "",
    ) -> None:
        self._parent = parent
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout_s if timeout_s is not None else None
        self._reason = reason

    def child(self, timeout_s: Optional[float] = None, reason: str = "") -> CancelToken:
        """Derive a token that is cancelled whenever this one is."""
        return CancelToken(parent=self, timeout_s=timeout_s, reason=reason)

    def cancel(self) -> None:
        if not self._event.is_set():
            logger.debug("[CANCEL] Token %s cancelled", self._reason or hex(id(self)))
        self._event.set()

    @property
    def expired(self) -> bool:
        """True if this token (or an ancestor) passed its deadline."""
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return True
        return self._parent is not None and self._parent.expired

    @property
    def cancelled(self) -> bool:
        if self._event.is_set() or self.expired:
            return True
        return self._parent is not None and self._parent.cancelled

    def remaining(self) -> Optional[float]:
        """Seconds until the nearest deadline in the chain, or ``None``."""
        candidates = []
        if self._deadline is not None:
            candidates.append(self._deadline - time.monotonic())
        if self._parent is not None:
            parent_remaining = self._parent.remaining()
            if parent_remaining is not None:
                candidates.append(parent_remaining)
        if not candidates:
            return None
        return max(0.0, min(candidates))

    def wait(self, timeout_s: float) -> bool:
        """Sleep up to *timeout_s* seconds, waking early on cancellation.

        Returns:
            ``True`` if the token is cancelled when the wait ends.
        """
        end = time.monotonic() + timeout_s
        while not self.cancelled:
            left = end - time.monotonic()
            if left <= 0:
                break
            self._event.wait(min(left, 0.01))
        return self.cancelled

    def error(self) -> OperationCancelledError:
        """Build the exception describing why this token is cancelled."""
        label = f" ({self._reason})" if self._reason else ""
        if self.expired:
            return DeadlineExceededError(f"Operation deadline exceeded{label}")
        return OperationCancelledError(f"Operation cancelled{label}")

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise self.error()
