"""In-memory stand-ins for OneRNG hardware, shared by the test modules."""

from __future__ import annotations

import io
import threading
import time
from typing import Callable, List, Optional, Sequence, Union

from onerng_tools.exceptions import DeviceTimeoutError, DeviceTransportError
from onerng_tools.firmware import build_image
from onerng_tools.session import DeviceSession
from onerng_tools.transport import DeviceHandle
from onerng_tools.verify import SignatureBackend, SignerIdentity


class FakeDevice(DeviceHandle):
    """Device handle backed by two byte buffers.

    ``rbuf`` is what the device "says"; everything written lands in
    ``wbuf``.  When ``rbuf`` runs dry the device either reports end of
    stream or, with ``timeout_when_empty``, times out on every read like an
    idle OneRNG.
    """

    def __init__(
        self,
        rbuf: bytes = b"",
        timeout_when_empty: bool = False,
        on_write: Optional[Callable[[bytes], None]] = None,
        fail_on: Optional[bytes] = None,
    ) -> None:
        self.rbuf = io.BytesIO(rbuf)
        self.wbuf = io.BytesIO()
        self.timeout_when_empty = timeout_when_empty
        self.on_write = on_write
        self.fail_on = fail_on
        self.closed = False
        self.open_count = 0
        self.close_count = 0
        self.deadlines = []  # type: List[Optional[float]]
        self._lock = threading.Lock()

    def opener(self, path):
        # type: (str) -> DeviceHandle
        self.closed = False
        self.open_count += 1
        return self

    def read(self, size: int) -> bytes:
        if self.closed:
            raise DeviceTransportError("fake device is closed")
        with self._lock:
            data = self.rbuf.read(size)
        if not data and size > 0 and self.timeout_when_empty:
            time.sleep(0.005)
            raise DeviceTimeoutError("fake device idle")
        return data

    def write(self, data: bytes) -> int:
        if self.closed:
            raise DeviceTransportError("fake device is closed")
        if self.fail_on is not None and data == self.fail_on:
            raise DeviceTransportError("fake write failure on {!r}".format(data))
        with self._lock:
            self.wbuf.write(data)
        if self.on_write is not None:
            self.on_write(data)
        return len(data)

    def set_read_deadline(self, seconds: Optional[float]) -> None:
        self.deadlines.append(seconds)

    def close(self) -> None:
        if not self.closed:
            self.close_count += 1
        self.closed = True

    @property
    def written(self):
        # type: () -> bytes
        return self.wbuf.getvalue()


class ScriptedDevice(DeviceHandle):
    """Device handle that replays a script of reads.

    Each script entry is either ``bytes`` (returned by one read) or an
    exception instance (raised by one read).  After the script the device
    reports end of stream.
    """

    def __init__(self, script: Sequence[Union[bytes, Exception]]) -> None:
        self.script = list(script)
        self.requested = []  # type: List[int]
        self.deadlines = []  # type: List[Optional[float]]

    def read(self, size: int) -> bytes:
        self.requested.append(size)
        if not self.script:
            return b""
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item[:size]

    def write(self, data: bytes) -> int:
        return len(data)

    def set_read_deadline(self, seconds: Optional[float]) -> None:
        self.deadlines.append(seconds)

    def close(self) -> None:
        pass


def make_session(device, join_timeout_s=1.0):
    # type: (FakeDevice, float) -> DeviceSession
    return DeviceSession("/dev/fake-onerng", opener=device.opener, join_timeout_s=join_timeout_s)


class FakeBackend(SignatureBackend):
    """Signature backend that accepts exactly one (signed, signature) pair."""

    def __init__(self, signed: bytes, signature: bytes, signer: Optional[SignerIdentity] = None) -> None:
        self.signed = signed
        self.signature = signature
        self.signer = signer or SignerIdentity(
            name="Moonbase Otago (OneRNG) (For OneRNG) <paul@taniwha.com>",
            created=None,
            fingerprint="0123456789ABCDEF",
        )
        self.calls = []  # type: List[tuple]

    def verify(self, signed: bytes, signature: bytes, public_key: str) -> SignerIdentity:
        from onerng_tools.exceptions import SignatureVerificationError

        self.calls.append((signed, signature, public_key))
        if signed != self.signed or signature != self.signature:
            raise SignatureVerificationError("failed to verify firmware signature: BAD signature")
        return self.signer


def sample_image(version=3, signed=None, signature=b"\x89\x02\x1c\x04\x00" + b"\x5a" * 50):
    # type: (int, Optional[bytes], bytes) -> bytes
    """A firmware container with no long zero runs, like a real dump."""
    if signed is None:
        signed = bytes((i % 251) + 1 for i in range(2048))
    return build_image(signed, signature, version, code_size=0x0102, padding=b"\xa5\x3c")
