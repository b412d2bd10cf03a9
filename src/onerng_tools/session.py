"""Device session: handle lifecycle, ordered command writes and cancellable readers.

A ``DeviceSession`` owns at most one open ``DeviceHandle``.  Commands are
written strictly in the order given and stop as soon as the caller's token
is cancelled.  Responses are consumed through ``ReaderStream`` objects: each
one runs a reader thread that decodes the device byte stream into lines or
fixed-size chunks and hands them over one at a time through a bounded queue.

Example::

    session = DeviceSession("/dev/ttyACM0")
    token = CancelToken()
    with session.operation("version"):
        with session.scan_lines(token) as lines:
            session.send(token, "cmdv\\n", "cmdO\\n")
            for line in lines:
                if line.startswith("Version "):
                    break
"""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import queue
import threading
from typing import Callable, Iterator, List, Optional, Tuple

from typeguard import typechecked

from . import READER_JOIN_TIMEOUT_S
from .cancel import CancelToken
from .exceptions import (
    DeviceProtocolError,
    DeviceTimeoutError,
    DeviceTransportError,
    OneRNGError,
    ShortReadError,
)
from .transport import DeviceHandle, open_serial_device

logger = logging.getLogger("onerng_tools.session")

# Longest line the scanner accepts before giving up on the stream
MAX_LINE_BYTES = 64 * 1024

_SCAN_READ_SIZE = 64
_QUEUE_POLL_S = 0.01


@dataclasses.dataclass(frozen=True)
class CleanupAttempt:
    """Record of one fire-and-forget cleanup batch.

    Attributes:
        commands: The commands that were sent, in order.
        error: The error the send raised, or ``None`` if it succeeded.
            Cleanup errors are logged and recorded here, never raised.
    """
    commands: Tuple[str, ...]
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclasses.dataclass(frozen=True)
class _StreamEnd:
    """Terminal record placed on a reader queue after the last item."""
    error: Optional[BaseException] = None


Offer = Callable[[object], bool]


class ReaderStream:
    """Iterator over items produced by a background reader thread.

    The thread starts as soon as the stream is created so that no response
    is missed between starting the reader and sending commands.  Iteration
    ends cleanly at end of stream and raises the reader's error (or the
    caller token's cancellation error) otherwise.  ``close()`` cancels the
    reader and joins it; use the stream as a context manager to guarantee
    that no thread outlives the exchange.
    """

    def __init__(
        self,
        token: CancelToken,
        produce: Callable[[CancelToken, Offer], None],
        label: str,
        join_timeout_s: float = READER_JOIN_TIMEOUT_S,
    ) -> None:
        self.label = label
        self._token = token
        self._reader_token = token.child(reason=label)
        self._queue: queue.Queue = queue.Queue(maxsize=1)
        self._join_timeout_s = join_timeout_s
        self._finished = False
        self._thread = threading.Thread(
            target=self._run, args=(produce,), name=f"onerng-{label}", daemon=True,
        )
        logger.debug("[READER] Starting %s reader", label)
        self._thread.start()

    # ---- Reader side ----

    def _offer(self, item: object) -> bool:
        """Hand *item* to the consumer, giving up if the reader is cancelled."""
        while not self._reader_token.cancelled:
            try:
                self._queue.put(item, timeout=_QUEUE_POLL_S)
                return True
            except queue.Full:
                continue
        return False

    def _run(self, produce: Callable[[CancelToken, Offer], None]) -> None:
        try:
            produce(self._reader_token, self._offer)
        except Exception as exc:
            logger.debug("[READER] %s reader stopped with %s: %s", self.label, type(exc).__name__, exc)
            self._offer(_StreamEnd(exc))
            return
        self._offer(_StreamEnd())

    # ---- Consumer side ----

    def __iter__(self) -> ReaderStream:
        return self

    def __next__(self):  # type: ignore[no-untyped-def]
        if self._finished:
            raise StopIteration
        while True:
            if self._token.cancelled:
                self.close()
                raise self._token.error()
            try:
                item = self._queue.get(timeout=_QUEUE_POLL_S)
            except queue.Empty:
                continue
            if isinstance(item, _StreamEnd):
                self._finished = True
                if item.error is not None:
                    raise item.error
                raise StopIteration
            return item

    def close(self) -> None:
        """Cancel the reader and wait for its thread to exit."""
        self._finished = True
        self._reader_token.cancel()
        if self._thread is threading.current_thread():
            return
        self._thread.join(self._join_timeout_s)
        if self._thread.is_alive():
            logger.warning(
                "[READER] %s reader did not stop within %.1fs",
                self.label, self._join_timeout_s,
            )
        else:
            logger.debug("[READER] %s reader stopped", self.label)

    def __enter__(self) -> ReaderStream:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        self.close()


def _produce_lines(device: DeviceHandle) -> Callable[[CancelToken, Offer], None]:
    def produce(token: CancelToken, offer: Offer) -> None:
        pending = bytearray()
        while not token.cancelled:
            try:
                data = device.read(_SCAN_READ_SIZE)
            except DeviceTimeoutError:
                continue
            if not data:
                if pending:
                    offer(_decode_line(pending))
                return
            pending.extend(data)
            while True:
                idx = pending.find(b"\n")
                if idx < 0:
                    break
                line = pending[:idx]
                del pending[:idx + 1]
                if not offer(_decode_line(line)):
                    return
            if len(pending) > MAX_LINE_BYTES:
                raise DeviceProtocolError(
                    f"Response line exceeds {MAX_LINE_BYTES} bytes without a newline"
                )
    return produce


def _decode_line(raw: bytearray) -> str:
    if raw.endswith(b"\r"):
        raw = raw[:-1]
    return bytes(raw).decode("utf-8", errors="replace")


def _produce_chunks(device: DeviceHandle, chunk_size: int) -> Callable[[CancelToken, Offer], None]:
    def produce(token: CancelToken, offer: Offer) -> None:
        while not token.cancelled:
            chunk = bytearray()
            while len(chunk) < chunk_size:
                if token.cancelled:
                    return
                try:
                    data = device.read(chunk_size - len(chunk))
                except DeviceTimeoutError:
                    continue
                if not data:
                    if chunk:
                        raise ShortReadError(
                            f"unexpected short read - wanted {chunk_size}b, read {len(chunk)}b",
                            wanted=chunk_size, got=len(chunk),
                        )
                    return
                chunk.extend(data)
            if not offer(bytes(chunk)):
                return
    return produce


@typechecked
class DeviceSession:
    """Owns the open/close lifecycle of one OneRNG device handle.

    The handle is opened lazily and shared by the command writer and at
    most one reader thread at a time.  It is never shared across sessions.
    """

    def __init__(
        self,
        path: str,
        opener: Callable[[str], DeviceHandle] = open_serial_device,
        join_timeout_s: float = READER_JOIN_TIMEOUT_S,
    ) -> None:
        """Initialize a session.  The device is **not** opened here.

        Args:
            path: Device path, e.g. ``/dev/ttyACM0``.
            opener: Factory that opens *path* and returns a handle.
            join_timeout_s: How long ``ReaderStream.close`` waits for a reader.
        """
        self.path = path
        self._opener = opener
        self._join_timeout_s = join_timeout_s
        self._device: Optional[DeviceHandle] = None
        self._write_lock = threading.Lock()
        self.cleanup_log: List[CleanupAttempt] = []

    def is_open(self) -> bool:
        return self._device is not None

    def open(self) -> DeviceHandle:
        """Open the device if it is not open yet, and return the handle.

        Raises:
            DeviceTransportError: If the device cannot be opened.
        """
        if self._device is not None:
            return self._device
        logger.debug("[SESSION-OPEN] Opening %s", self.path)
        try:
            self._device = self._opener(self.path)
        except OSError as exc:
            raise DeviceTransportError(f"Failed to open OneRNG device {self.path}: {exc}") from exc
        return self._device

    def close(self) -> None:
        """Close the device if open.  Safe to call any number of times."""
        if self._device is None:
            logger.debug("[SESSION-CLOSE] close() on already-closed session for %s", self.path)
            return
        device, self._device = self._device, None
        try:
            device.close()
        except (OneRNGError, OSError) as exc:
            logger.warning("[SESSION-CLOSE] Error closing %s: %s", self.path, exc)

    @contextlib.contextmanager
    def operation(self, name: str) -> Iterator[DeviceHandle]:
        """Open the device for one high-level operation and always close it."""
        logger.debug("[SESSION-OP] Begin %s on %s", name, self.path)
        device = self.open()
        try:
            yield device
        finally:
            self.close()
            logger.debug("[SESSION-OP] End %s on %s", name, self.path)

    def send(self, token: CancelToken, *commands: str) -> int:
        """Write each command in order, stopping early once *token* is cancelled.

        Cancellation is checked before every write.  Commands already written
        are not rolled back and cancellation is not an error here.

        Returns:
            Number of bytes written.

        Raises:
            DeviceTransportError: If a write fails.
        """
        device = self.open()
        written = 0
        for index, command in enumerate(commands):
            if token.cancelled:
                logger.debug(
                    "[SESSION-SEND] Cancelled, skipping %d remaining command(s)",
                    len(commands) - index,
                )
                return written
            data = command.encode("ascii")
            try:
                with self._write_lock:
                    device.write(data)
            except DeviceTransportError as exc:
                raise DeviceTransportError(f"Errored on command {command!r}: {exc}") from exc
            written += len(data)
            logger.debug("[SESSION-SEND] Sent %r to %s", command, self.path)
        return written

    def cleanup(self, *commands: str) -> CleanupAttempt:
        """Send best-effort cleanup commands, logging (not raising) failures.

        Uses a fresh token so that cleanup still reaches the device after the
        operation itself was cancelled.
        """
        try:
            self.send(CancelToken(reason="cleanup"), *commands)
        except OneRNGError as exc:
            logger.warning(
                "[SESSION-CLEANUP] Best-effort %r failed on %s: %s",
                commands, self.path, exc,
            )
            attempt = CleanupAttempt(commands=tuple(commands), error=exc)
        else:
            attempt = CleanupAttempt(commands=tuple(commands))
        self.cleanup_log.append(attempt)
        return attempt

    def scan_lines(self, token: CancelToken) -> ReaderStream:
        """Start a reader that yields decoded response lines (without EOL)."""
        device = self.open()
        return ReaderStream(token, _produce_lines(device), "scan", self._join_timeout_s)

    def stream_chunks(self, token: CancelToken, chunk_size: int) -> ReaderStream:
        """Start a reader that yields ``bytes`` chunks of exactly *chunk_size*.

        Raises:
            ValueError: If *chunk_size* is not positive.
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        device = self.open()
        return ReaderStream(token, _produce_chunks(device, chunk_size), "stream", self._join_timeout_s)

