"""OneRNG firmware image container parsing.

The image the device dumps with ``cmdX`` looks like::

    fe ed be ef 20 14   magic
    xx xx xx            payload length (little endian)
    xx xx               firmware version (little endian)
    xx xx               reserved / code size (ignored)
    ...                 payload: signed code, then the signature trailer

The trailer occupies the last 600 bytes of the payload (680 from version 3
onward).  It starts with a little-endian signature length ``k`` followed by
``k`` bytes of detached OpenPGP signature; the rest is padding.  Anything
after the payload, such as the run of zeros that ends a device dump, is
ignored.
"""

from __future__ import annotations

import dataclasses
import io
import logging
from typing import BinaryIO, Tuple, Union

from .exceptions import MagicNotFoundError, MalformedImageError

logger = logging.getLogger("onerng_tools.firmware")

MAGIC = bytes.fromhex("feedbeef2014")
HEADER_SIZE = 7
SIGNATURE_LENGTH_SIZE = 2

TRAILER_OFFSET_V3 = 680
TRAILER_OFFSET_LEGACY = 600


@dataclasses.dataclass(frozen=True)
class FirmwareImage:
    """A parsed firmware container."""
    version: int
    length: int
    signed: bytes
    signature: bytes

    def __repr__(self) -> str:
        return (
            f"FirmwareImage(version={self.version}, length={self.length}, "
            f"signed={len(self.signed)}b, signature={len(self.signature)}b)"
        )


def trailer_offset(version: int) -> int:
    """Distance from the end of the payload to the signature-length field."""
    return TRAILER_OFFSET_V3 if version >= 3 else TRAILER_OFFSET_LEGACY


def read_magic(stream: BinaryIO) -> None:
    """Consume *stream* up to and including the magic marker.

    Scans one byte at a time.  On a mismatch the match position resets to
    zero and scanning continues with the *next* byte; the mismatching byte
    is not re-examined, so ``fe fe ed be ef 20 14`` is not recognised.

    Raises:
        MagicNotFoundError: If the stream ends before the full marker is seen.
    """
    matched = 0
    consumed = 0
    while matched < len(MAGIC):
        c = stream.read(1)
        if not c:
            raise MagicNotFoundError(
                f"Firmware magic {MAGIC.hex()} not found in {consumed} bytes"
            )
        consumed += 1
        if c[0] == MAGIC[matched]:
            matched += 1
        else:
            matched = 0
    logger.debug("[FIRMWARE] Magic found after %d bytes", consumed)


def _read_exact(stream: BinaryIO, n: int) -> bytes:
    """Read up to *n* bytes, stopping early only at end of stream."""
    chunks = []
    remaining = n
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_header(stream: BinaryIO) -> Tuple[int, int]:
    """Read the header that follows the magic.

    Returns:
        ``(length, version)``.

    Raises:
        MalformedImageError: If fewer than 7 header bytes are available.
    """
    header = _read_exact(stream, HEADER_SIZE)
    if len(header) < HEADER_SIZE:
        raise MalformedImageError(
            f"Truncated firmware header: wanted {HEADER_SIZE} bytes, got {len(header)}"
        )
    length = int.from_bytes(header[0:3], "little")
    version = int.from_bytes(header[3:5], "little")
    return length, version


def split_payload(payload: bytes, version: int) -> Tuple[bytes, bytes]:
    """Split a payload into its signed region and detached signature.

    Raises:
        MalformedImageError: If the trailer offsets fall outside the payload.
    """
    length = len(payload)
    offset = trailer_offset(version)
    if length < offset + SIGNATURE_LENGTH_SIZE:
        raise MalformedImageError(
            f"Bad image: payload of {length} bytes is shorter than the "
            f"{offset}-byte trailer for version {version}"
        )
    sig_len_offset = length - offset
    k = int.from_bytes(payload[sig_len_offset:sig_len_offset + SIGNATURE_LENGTH_SIZE], "little")
    sig_end = sig_len_offset + SIGNATURE_LENGTH_SIZE + k
    if sig_end > length or offset + SIGNATURE_LENGTH_SIZE + k > length:
        raise MalformedImageError(
            f"Bad image: {k}-byte signature at offset {sig_len_offset} "
            f"overruns the {length}-byte payload"
        )
    return payload[:sig_len_offset], payload[sig_len_offset + SIGNATURE_LENGTH_SIZE:sig_end]


def parse_image(source: Union[bytes, BinaryIO]) -> FirmwareImage:
    """Parse a firmware container from bytes or a binary stream.

    Leading garbage before the magic and trailing bytes after the payload
    are both tolerated.

    Raises:
        MagicNotFoundError: If no magic marker is found.
        MalformedImageError: If the header or payload is truncated, or the
            signature trailer is inconsistent.
    """
    stream = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else source
    read_magic(stream)
    length, version = read_header(stream)
    payload = _read_exact(stream, length)
    if len(payload) != length:
        raise MalformedImageError(
            f"Bad image: wrong length - header says {length} bytes, got {len(payload)}"
        )
    signed, signature = split_payload(payload, version)
    image = FirmwareImage(version=version, length=length, signed=signed, signature=signature)
    logger.info("[FIRMWARE] Parsed %r", image)
    return image


def build_image(
    signed: bytes,
    signature: bytes,
    version: int,
    code_size: int = 0,
    padding: bytes = b"\x00",
) -> bytes:
    """Assemble a firmware container around *signed* and *signature*.

    The trailer is filled out to its full size by repeating *padding*.

    Raises:
        ValueError: If the signature does not fit in the trailer, or the
            result would not parse back.
    """
    offset = trailer_offset(version)
    k = len(signature)
    if SIGNATURE_LENGTH_SIZE + k > offset:
        raise ValueError(f"{k}-byte signature does not fit in a {offset}-byte trailer")
    length = len(signed) + offset
    if offset + SIGNATURE_LENGTH_SIZE + k > length:
        raise ValueError(f"Signed region of {len(signed)} bytes is too short for a {k}-byte signature")
    if length >= 1 << 24 or not 0 <= version < 1 << 16 or not 0 <= code_size < 1 << 16:
        raise ValueError("length, version or code size out of range for the header")
    if not padding:
        raise ValueError("padding must not be empty")

    fill = offset - SIGNATURE_LENGTH_SIZE - k
    trailer = k.to_bytes(2, "little") + signature + (padding * fill)[:fill]
    return (
        MAGIC
        + length.to_bytes(3, "little")
        + version.to_bytes(2, "little")
        + code_size.to_bytes(2, "little")
        + signed
        + trailer
    )
