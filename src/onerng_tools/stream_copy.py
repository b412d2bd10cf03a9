"""Bounded copy from a deadline-capable device to any writer.

The OneRNG occasionally stalls for a fraction of a second.  Rather than
block forever or give up on the first stall, each read is bounded by a
short deadline and a fixed number of deadline hits are forgiven.  With the
defaults that is ten 500 ms stalls, about five seconds in total, before the
copy reports a real timeout.
"""

from __future__ import annotations

import logging
from typing import BinaryIO

from . import COPY_ALLOWED_TIMEOUTS, COPY_CHUNK_SIZE, COPY_READ_DEADLINE_S
from .cancel import CancelToken
from .exceptions import DeviceTimeoutError, OneRNGError, ShortReadError
from .transport import DeviceHandle

logger = logging.getLogger("onerng_tools.stream_copy")


def copy_with_timeouts(
    token: CancelToken,
    dst: BinaryIO,
    src: DeviceHandle,
    n: int,
    read_deadline_s: float = COPY_READ_DEADLINE_S,
    allowed_timeouts: int = COPY_ALLOWED_TIMEOUTS,
    chunk_size: int = COPY_CHUNK_SIZE,
) -> int:
    """Copy *n* bytes from *src* to *dst*, or until end of stream if ``n < 0``.

    Before every read the token is checked and the read deadline re-armed.
    A read that hits its deadline counts against *allowed_timeouts* and is
    treated as a zero-byte read; once the budget is spent the next timeout
    propagates.

    Args:
        token: Cancellation token checked before each read.
        dst: Destination writer.
        src: Device handle to read from.
        n: Exact number of bytes to copy, or negative for unbounded.
        read_deadline_s: Deadline armed before each read.
        allowed_timeouts: Number of deadline hits to forgive.
        chunk_size: Largest single read.

    Returns:
        Number of bytes written to *dst*.

    Raises:
        OperationCancelledError: If the token fires.
        DeviceTimeoutError: If more than *allowed_timeouts* reads time out.
        ShortReadError: If *src* ends before *n* bytes were copied.
        DeviceTransportError: On device I/O failure.

        Every ``OneRNGError`` raised here has ``bytes_written`` set.
    """
    written = 0
    budget = allowed_timeouts
    bounded = n >= 0

    try:
        while not bounded or written < n:
            token.raise_if_cancelled()
            src.set_read_deadline(read_deadline_s)

            want = chunk_size if not bounded else min(chunk_size, n - written)
            try:
                data = src.read(want)
            except DeviceTimeoutError:
                if budget <= 0:
                    logger.warning(
                        "[COPY] Timeout budget of %d exhausted after %d bytes",
                        allowed_timeouts, written,
                    )
                    raise
                budget -= 1
                logger.debug("[COPY] Read timed out, %d timeouts left", budget)
                continue

            if not data:
                if bounded:
                    raise ShortReadError(
                        f"Device stream ended after {written} of {n} bytes",
                        wanted=n, got=written,
                    )
                break

            dst.write(data)
            written += len(data)
    except OneRNGError as exc:
        exc.bytes_written = written
        raise

    logger.debug("[COPY] Copied %d bytes", written)
    return written
