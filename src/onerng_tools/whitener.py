"""AES-128 whitening of the OneRNG output stream.

The raw OneRNG output is sometimes a little *too* random for consumers such
as rngd.  Passing it through AES-128 in CFB mode, keyed with 16 bytes drawn
from the device itself, mangles it further.  This is decorrelation, not
confidentiality: the IV comes from the non-cryptographic ``random`` module.
"""

from __future__ import annotations

import io
import logging
import random
from typing import BinaryIO, Optional

from Crypto.Cipher import AES

logger = logging.getLogger("onerng_tools.whitener")

KEY_SIZE = 16


class AESWhitener(io.RawIOBase):
    """Writer that encrypts everything written to it before passing it on.

    Uses full-block CFB (128-bit segments), so ciphertext length always
    equals plaintext length and writes of any size are accepted.
    """

    def __init__(
        self,
        key: bytes,
        out: BinaryIO,
        iv: Optional[bytes] = None,
        closefd: bool = True,
    ) -> None:
        """Wrap *out* with an AES-128 CFB keystream.

        Args:
            key: 16 bytes of key material.
            out: Destination writer for the ciphertext.
            iv: Initialization vector; a pseudo-random one is generated if omitted.
            closefd: Whether ``close()`` also closes *out*.

        Raises:
            ValueError: If *key* or *iv* has the wrong length.
        """
        super().__init__()
        if len(key) != KEY_SIZE:
            raise ValueError(f"AES-128 whitener needs a {KEY_SIZE}-byte key, got {len(key)} bytes")
        if iv is None:
            iv = random.getrandbits(AES.block_size * 8).to_bytes(AES.block_size, "big")
        if len(iv) != AES.block_size:
            raise ValueError(f"IV must be {AES.block_size} bytes, got {len(iv)}")
        self.iv = iv
        self._out = out
        self._closefd = closefd
        self._cipher = AES.new(key, AES.MODE_CFB, iv=iv, segment_size=AES.block_size * 8)
        logger.debug("[WHITENER] AES-128 CFB whitener ready")

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:  # type: ignore[override]
        if self.closed:
            raise ValueError("write to closed AESWhitener")
        data = bytes(b)
        if data:
            self._out.write(self._cipher.encrypt(data))
        return len(data)

    def flush(self) -> None:
        if not self.closed:
            self._out.flush()

    def close(self) -> None:
        if self.closed:
            return
        try:
            self.flush()
        finally:
            super().close()
            if self._closefd:
                self._out.close()
