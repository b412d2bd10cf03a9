"""OneRNG command protocol.

Maps the device's operations onto command byte sequences and response
matching, on top of ``DeviceSession``.  The protocol is stateless: every
public operation opens the device, runs one exchange and closes it again,
and there are no retries at this layer.

Commands are ASCII strings ``"cmd" + token + "\\n"``.  Tokens are single
letters for control (``v`` version, ``w`` flush, ``X`` image, ``I`` id,
``O`` run, ``o`` pause) or the noise mode digit ``0``..``7``.

Example::

    rng = OneRNG("/dev/ttyACM0")
    token = CancelToken()
    print(rng.version(token))
    with open("random.bin", "wb") as out:
        rng.read(token, out, 1024, NoiseMode(enable_rf=True))
"""

from __future__ import annotations

import contextlib
import dataclasses
import io
import logging
import re
from typing import BinaryIO, Iterator, Optional

from typeguard import typechecked

from . import (
    COPY_ALLOWED_TIMEOUTS,
    COPY_READ_DEADLINE_S,
    DEFAULT_DEVICE,
    IMAGE_CHUNK_SIZE,
    IMAGE_END_ZERO_RUN,
    IMAGE_SETTLE_S,
    INIT_ATTEMPTS,
    INIT_PROBE_TIMEOUT_S,
    WHITENER_KEY_SIZE,
)
from .cancel import CancelToken
from .exceptions import DeadlineExceededError, DeviceProtocolError, OneRNGError
from .session import DeviceSession, ReaderStream
from .stream_copy import copy_with_timeouts
from .transport import DeviceHandle
from .whitener import AESWhitener

logger = logging.getLogger("onerng_tools.protocol")

# print firmware version (as "Version n")
CMD_VERSION = "cmdv\n"
# flush entropy pool
CMD_FLUSH = "cmdw\n"
# extract the signed firmware image for verification
CMD_IMAGE = "cmdX\n"
# print hardware ID
CMD_ID = "cmdI\n"
# start the task
CMD_RUN = "cmdO\n"
# stop/pause the task
CMD_PAUSE = "cmdo\n"

VERSION_PREFIX = "Version "
# decimal only, no surrounding whitespace or digit separators
_VERSION_NUMBER = re.compile(r"[+-]?[0-9]+")
ID_MARKER = "___"


@dataclasses.dataclass(frozen=True)
class NoiseMode:
    """Noise-generation settings: three independent toggles.

    Attributes:
        disable_whitener: Disable the on-board CRC16 generator (no effect if
            both noise sources are disabled).
        enable_rf: Enable noise generation from RF.
        disable_avalanche: Disable noise generation from the avalanche diode.
    """
    disable_whitener: bool = False
    enable_rf: bool = False
    disable_avalanche: bool = False

    @property
    def value(self) -> int:
        return (
            (1 if self.disable_whitener else 0)
            | (2 if self.enable_rf else 0)
            | (4 if self.disable_avalanche else 0)
        )

    @classmethod
    def from_value(cls, value: int) -> NoiseMode:
        if not 0 <= value <= 7:
            raise ValueError(f"Noise mode must be 0-7, got {value}")
        return cls(
            disable_whitener=bool(value & 1),
            enable_rf=bool(value & 2),
            disable_avalanche=bool(value & 4),
        )

    def describe(self) -> str:
        """Human-readable summary, e.g. ``"avalanche+RF, whitened"``."""
        sources = []
        if not self.disable_avalanche:
            sources.append("avalanche")
        if self.enable_rf:
            sources.append("RF")
        if not sources:
            return "silent"
        return "+".join(sources) + (", raw" if self.disable_whitener else ", whitened")


# Avalanche enabled, RF disabled, whitener enabled
DEFAULT_MODE = NoiseMode()
# Everything off; required for image extraction
SILENT_MODE = NoiseMode(disable_avalanche=True)


def noise_command(mode: NoiseMode) -> str:
    """Convert a noise mode to the command that selects it."""
    return f"cmd{mode.value}\n"


@typechecked
class OneRNG:
    """A OneRNG device reachable at a serial device path.

    All communication goes through the ``DeviceSession``; callers pass a
    ``CancelToken`` to every operation so it can be stopped cooperatively.
    """

    def __init__(
        self,
        path: str = DEFAULT_DEVICE,
        session: Optional[DeviceSession] = None,
        settle_s: float = IMAGE_SETTLE_S,
        init_attempts: int = INIT_ATTEMPTS,
        probe_timeout_s: float = INIT_PROBE_TIMEOUT_S,
        copy_read_deadline_s: float = COPY_READ_DEADLINE_S,
        copy_allowed_timeouts: int = COPY_ALLOWED_TIMEOUTS,
    ) -> None:
        """Initialize the driver.  The device is not opened until needed.

        Args:
            path: Device path, e.g. ``/dev/ttyACM0``.
            session: Session to use; one is created for *path* if omitted.
            settle_s: Pause after silencing the device before an image dump.
            init_attempts: Number of probes ``init`` makes before giving up.
            probe_timeout_s: How long each ``init`` probe waits for data.
            copy_read_deadline_s: Per-read deadline for bulk reads.
            copy_allowed_timeouts: Read timeouts tolerated per bulk read.
        """
        self.path = path
        self.session = session if session is not None else DeviceSession(path)
        self.settle_s = settle_s
        self.init_attempts = init_attempts
        self.probe_timeout_s = probe_timeout_s
        self.copy_read_deadline_s = copy_read_deadline_s
        self.copy_allowed_timeouts = copy_allowed_timeouts

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def _operation(self, name: str) -> Iterator[DeviceHandle]:
        """Run one exchange with the device open, attaching cleanup records to errors."""
        first_cleanup = len(self.session.cleanup_log)
        try:
            with self.session.operation(name) as device:
                yield device
        except OneRNGError as exc:
            exc.cleanup.extend(self.session.cleanup_log[first_cleanup:])
            logger.error("[PROTO-%s] Failed on %s: %s", name.upper(), self.path, exc)
            raise

    def _await_line(self, lines: ReaderStream, prefix: str, what: str) -> str:
        for line in lines:
            logger.debug("[PROTO] <- %r", line)
            if line.startswith(prefix):
                return line
        raise DeviceProtocolError(f"Device stream ended before the {what} reply arrived")

    def _collect_image(self, chunks: ReaderStream) -> bytes:
        image = bytearray()
        zeros = 0
        for chunk in chunks:
            image.extend(chunk)
            for value in chunk:
                zeros = zeros + 1 if value == 0 else 0
                if zeros > IMAGE_END_ZERO_RUN:
                    return bytes(image)
        raise DeviceProtocolError(
            f"Device stream ended after {len(image)} image bytes, before the end-of-image marker"
        )

    def _probe(self, token: CancelToken) -> int:
        """Try to read one byte of random data within the probe timeout."""
        probe_token = token.child(timeout_s=self.probe_timeout_s, reason="init probe")
        with self._operation("probe"):
            try:
                with self.session.stream_chunks(probe_token, 1) as chunks:
                    self.session.send(token, noise_command(DEFAULT_MODE), CMD_RUN)
                    try:
                        chunk = next(chunks, b"")
                    except DeadlineExceededError:
                        token.raise_if_cancelled()
                        return 0
                    return len(chunk)
            finally:
                self.session.cleanup(CMD_PAUSE, noise_command(SILENT_MODE), CMD_FLUSH)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def version(self, token: CancelToken) -> int:
        """Query the hardware/firmware version.

        Sequence: pause, silent, version, run, then pause once the
        ``"Version n"`` line has been seen.

        Raises:
            DeviceProtocolError: If the version text is not numeric or the
                stream ends without a version line.
            DeviceTransportError: On I/O failure.
            OperationCancelledError: If *token* fires first.
        """
        with self._operation("version"):
            try:
                self.session.send(token, CMD_PAUSE)
                with self.session.scan_lines(token) as lines:
                    self.session.send(token, noise_command(SILENT_MODE), CMD_VERSION, CMD_RUN)
                    line = self._await_line(lines, VERSION_PREFIX, "version")
            finally:
                self.session.cleanup(CMD_PAUSE)

        text = line.replace(VERSION_PREFIX, "", 1)
        if not _VERSION_NUMBER.fullmatch(text):
            raise DeviceProtocolError(f"Non-numeric version reply from {self.path}: {line!r}")
        version = int(text)
        logger.info("[PROTO-VERSION] %s reports version %d", self.path, version)
        return version

    def identify(self, token: CancelToken) -> str:
        """Query the hardware ID.

        Returns:
            The matched line, unmodified, e.g. ``"___abc123___"``.
        """
        with self._operation("identify"):
            try:
                with self.session.scan_lines(token) as lines:
                    self.session.send(token, noise_command(SILENT_MODE), CMD_ID, CMD_RUN)
                    line = self._await_line(lines, ID_MARKER, "hardware ID")
            finally:
                self.session.cleanup(CMD_PAUSE)
        logger.info("[PROTO-ID] %s hardware ID %s", self.path, line)
        return line

    def flush(self, token: CancelToken) -> None:
        """Flush the device's entropy pool.  No response is awaited."""
        with self._operation("flush"):
            self.session.send(token, CMD_FLUSH)
        logger.info("[PROTO-FLUSH] Flushed entropy pool on %s", self.path)

    def image(self, token: CancelToken) -> bytes:
        """Extract the signed firmware image.

        The image is padded with random data to 128 KiB or 256 KiB depending
        on the hardware.  The returned bytes include the terminating run of
        zeros; ``firmware.parse_image`` ignores it as trailing padding.

        Raises:
            DeviceProtocolError: If the stream ends before the zero run, or a
                chunk is cut short (``ShortReadError``).
            OperationCancelledError: If *token* fires first.
        """
        with self._operation("image"):
            try:
                self.session.send(token, CMD_PAUSE, noise_command(SILENT_MODE))
                logger.info("[PROTO-IMAGE] Letting %s settle for %.1fs", self.path, self.settle_s)
                if token.wait(self.settle_s):
                    raise token.error()
                with self.session.stream_chunks(token, IMAGE_CHUNK_SIZE) as chunks:
                    self.session.send(token, noise_command(SILENT_MODE), CMD_IMAGE, CMD_RUN)
                    image = self._collect_image(chunks)
            finally:
                self.session.cleanup(CMD_PAUSE)
        logger.info("[PROTO-IMAGE] Extracted %d bytes from %s", len(image), self.path)
        return image

    def init(self, token: CancelToken) -> bool:
        """Wait for the device to finish initializing and start returning data.

        Probes up to ``init_attempts`` times.  Running out of attempts is not
        an error: warm-up is best effort.

        Returns:
            ``True`` if a probe saw data, ``False`` if attempts ran out.
        """
        for attempt in range(1, self.init_attempts + 1):
            if self._probe(token) > 0:
                logger.info("[PROTO-INIT] %s initialized after %d probe(s)", self.path, attempt)
                return True
        logger.warning(
            "[PROTO-INIT] No data from %s after %d probes, continuing anyway",
            self.path, self.init_attempts,
        )
        return False

    def read(
        self,
        token: CancelToken,
        out: BinaryIO,
        n: int = -1,
        mode: NoiseMode = DEFAULT_MODE,
    ) -> int:
        """Copy *n* bytes of random data to *out* (``n < 0`` for unbounded).

        The pause command is always sent afterwards as best-effort cleanup.

        Returns:
            Number of bytes written to *out*.

        Raises:
            DeviceTimeoutError: If the device stalls past the timeout budget.
            OperationCancelledError: If *token* fires; ``bytes_written`` on
                the exception reports progress so far.
        """
        logger.info(
            "[PROTO-READ] Reading %s bytes from %s (mode %d: %s)",
            n if n >= 0 else "unlimited", self.path, mode.value, mode.describe(),
        )
        with self._operation("read") as device:
            try:
                self.session.send(token, noise_command(mode), CMD_RUN)
                written = copy_with_timeouts(
                    token, out, device, n,
                    read_deadline_s=self.copy_read_deadline_s,
                    allowed_timeouts=self.copy_allowed_timeouts,
                )
            finally:
                self.session.cleanup(CMD_PAUSE)
        return written

    def key(self, token: CancelToken) -> bytes:
        """Draw a 16-byte AES-128 key from the device in default noise mode."""
        buf = io.BytesIO()
        with self._operation("key") as device:
            try:
                self.session.send(token, noise_command(DEFAULT_MODE), CMD_RUN)
                copy_with_timeouts(
                    token, buf, device, WHITENER_KEY_SIZE,
                    read_deadline_s=self.copy_read_deadline_s,
                    allowed_timeouts=self.copy_allowed_timeouts,
                )
            finally:
                self.session.cleanup(CMD_PAUSE)
        return buf.getvalue()

    def aes_whitener(self, token: CancelToken, out: BinaryIO, closefd: bool = True) -> AESWhitener:
        """Wrap *out* so everything written to it is AES-whitened.

        The key is drawn from the device with ``key()``.
        """
        return AESWhitener(self.key(token), out, closefd=closefd)
