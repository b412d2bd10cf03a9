"""Byte-duplex device handles for the OneRNG serial interface.

``DeviceHandle`` is the minimal contract the rest of the package relies on:
read, write, close and an independent read deadline.  ``SerialDeviceHandle``
implements it with pyserial.  A read that reaches its deadline with no data
raises ``DeviceTimeoutError``; an empty read without a timeout means the
stream has ended.

Cross-platform: works on Linux (/dev/ttyACM*), macOS (/dev/cu.usbmodem*)
and Windows (COMx).
"""

from __future__ import annotations

import abc
import logging
import platform
from typing import Optional

import serial
import serial.tools.list_ports

from . import SERIAL_BAUD_RATE, SERIAL_POLL_INTERVAL_S, SERIAL_WRITE_TIMEOUT
from .exceptions import DeviceTimeoutError, DeviceTransportError

logger = logging.getLogger("onerng_tools.transport")

_IS_WINDOWS = platform.system() == "Windows"


class DeviceHandle(abc.ABC):
    """One open byte-duplex connection to a device path."""

    @abc.abstractmethod
    def read(self, size: int) -> bytes:
        """Read up to *size* bytes.

        Returns ``b""`` only at end of stream.

        Raises:
            DeviceTimeoutError: If the read deadline passed with no data.
            DeviceTransportError: On any other I/O failure.
        """

    @abc.abstractmethod
    def write(self, data: bytes) -> int:
        """Write all of *data*, returning the number of bytes written."""

    @abc.abstractmethod
    def set_read_deadline(self, seconds: Optional[float]) -> None:
        """Bound subsequent reads to *seconds*; ``None`` restores the default."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the handle.  Must tolerate being called more than once."""


def _platform_hint() -> str:
    """Return a platform-specific troubleshooting hint."""
    available = ", ".join(p.device for p in serial.tools.list_ports.comports()) or "none"
    if _IS_WINDOWS:
        return (
            "On Windows: verify the COM port number in Device Manager "
            "(Ports → COM & LPT) and that no other application has it open. "
            f"Available ports: {available}."
        )
    return (
        "On Linux: verify the device path exists (ls /dev/ttyACM*), that the "
        "cdc_acm module is loaded, and that your user is in the 'dialout' group "
        "(sudo usermod -aG dialout $USER). "
        f"Available ports: {available}."
    )


class SerialDeviceHandle(DeviceHandle):
    """pyserial-backed device handle.

    The default read timeout is a short poll interval so reader threads can
    re-check their cancellation token between reads.  ``set_read_deadline``
    replaces it for callers that want a longer (or shorter) bound.
    """

    def __init__(
        self,
        path: str,
        baud_rate: int = SERIAL_BAUD_RATE,
        poll_interval_s: float = SERIAL_POLL_INTERVAL_S,
        write_timeout: Optional[float] = SERIAL_WRITE_TIMEOUT,
    ) -> None:
        """Open *path* for reading and writing.

        Raises:
            DeviceTransportError: If the port cannot be opened.  The message
                includes the OS-level reason and a platform hint.
        """
        self.path = path
        self.poll_interval_s = poll_interval_s
        logger.info("[SERIAL-OPEN] Opening %s ...", path)
        try:
            self._serial: Optional[serial.Serial] = serial.Serial(
                port=path,
                baudrate=baud_rate,
                timeout=poll_interval_s,
                write_timeout=write_timeout,
            )
        except (serial.SerialException, OSError) as exc:
            msg = f"Failed to open OneRNG device {path}: {exc}. {_platform_hint()}"
            logger.error("[SERIAL-OPEN] FAILED — %s", msg)
            raise DeviceTransportError(msg) from exc
        logger.info("[SERIAL-OPEN] Successfully opened %s", path)

    def _port(self) -> serial.Serial:
        if self._serial is None:
            raise DeviceTransportError(f"OneRNG device {self.path} is closed")
        return self._serial

    def read(self, size: int) -> bytes:
        ser = self._port()
        try:
            data = ser.read(size)
        except (serial.SerialException, OSError) as exc:
            msg = (
                f"Read error on {self.path}: {exc}. "
                f"The device may have been unplugged."
            )
            logger.error("[SERIAL-READ] ERROR — %s", msg)
            raise DeviceTransportError(msg) from exc
        if size > 0 and not data:
            raise DeviceTimeoutError(
                f"Read on {self.path} timed out after {ser.timeout}s with no data"
            )
        return data

    def write(self, data: bytes) -> int:
        ser = self._port()
        try:
            n = ser.write(data)
            ser.flush()
        except (serial.SerialException, OSError) as exc:
            msg = f"Write error on {self.path} while sending {data!r}: {exc}"
            logger.error("[SERIAL-WRITE] ERROR — %s", msg)
            raise DeviceTransportError(msg) from exc
        if n != len(data):
            raise DeviceTransportError(
                f"Short write on {self.path}: wrote {n}/{len(data)} bytes of {data!r}"
            )
        return n

    def set_read_deadline(self, seconds: Optional[float]) -> None:
        ser = self._port()
        try:
            ser.timeout = self.poll_interval_s if seconds is None else seconds
        except (serial.SerialException, ValueError) as exc:
            raise DeviceTransportError(
                f"Cannot set read deadline on {self.path}: {exc}"
            ) from exc

    def close(self) -> None:
        if self._serial is None:
            return
        try:
            self._serial.close()
        except (serial.SerialException, OSError) as exc:
            logger.warning("[SERIAL-CLOSE] Error closing %s: %s", self.path, exc)
        finally:
            self._serial = None
        logger.info("[SERIAL-CLOSE] Closed %s", self.path)


def open_serial_device(path: str) -> DeviceHandle:
    """Default opener used by ``DeviceSession``."""
    return SerialDeviceHandle(path)
