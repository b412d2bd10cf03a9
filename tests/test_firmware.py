"""
Firmware container parser test suite.

Run with full visibility:
    pytest tests/test_firmware.py -v -s
"""

from __future__ import annotations

import io

import pytest

from onerng_tools.exceptions import MagicNotFoundError, MalformedImageError
from onerng_tools.firmware import (
    MAGIC,
    build_image,
    parse_image,
    read_header,
    read_magic,
    split_payload,
    trailer_offset,
)

from fakes import sample_image


def _report(label, detail=""):
    # type: (str, str) -> None
    if detail:
        print("  [{}] {}".format(label, detail))
    else:
        print("  [{}]".format(label))


class _TrickleStream(io.RawIOBase):
    """Raw stream that hands out at most *chunk* bytes per read."""

    def __init__(self, data, chunk=100):
        # type: (bytes, int) -> None
        self._data = data
        self._pos = 0
        self._chunk = chunk

    def readable(self):
        # type: () -> bool
        return True

    def readinto(self, b):
        # type: (bytearray) -> int
        n = min(len(b), self._chunk, len(self._data) - self._pos)
        b[:n] = self._data[self._pos:self._pos + n]
        self._pos += n
        return n


def _container(payload, version, code_size=b"\x00\x00"):
    # type: (bytes, int, bytes) -> bytes
    return (
        MAGIC
        + len(payload).to_bytes(3, "little")
        + version.to_bytes(2, "little")
        + code_size
        + payload
    )


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Magic Scan
# ═══════════════════════════════════════════════════════════════════════════

class TestReadMagic:
    """Byte-at-a-time resynchronising scan."""

    def test_empty_input(self):
        # type: () -> None
        with pytest.raises(MagicNotFoundError):
            read_magic(io.BytesIO(b""))

    def test_text_input(self):
        # type: () -> None
        with pytest.raises(MagicNotFoundError):
            read_magic(io.BytesIO(b"abcdefg"))

    def test_broken_sequence(self):
        # type: () -> None
        with pytest.raises(MagicNotFoundError):
            read_magic(io.BytesIO(bytes([0x00, 0x01, 0x02, 0xfe, 0xed, 0xbe, 0xee, 0xff])))

    def test_found_after_garbage(self):
        # type: () -> None
        stream = io.BytesIO(bytes([0x00, 0x01, 0x02, 0xfe, 0xed, 0xbe, 0xef, 0x20, 0x14, 0x99]))
        read_magic(stream)
        assert stream.read() == b"\x99"
        _report("PASS", "Stream positioned right after the magic")

    def test_recovers_after_partial_match(self):
        # type: () -> None
        stream = io.BytesIO(b"\xfe\xed\xbe\x00" + MAGIC + b"rest")
        read_magic(stream)
        assert stream.read() == b"rest"

    def test_mismatching_byte_is_not_rescanned(self):
        # type: () -> None
        # the second 0xfe resets the match instead of starting a new one
        with pytest.raises(MagicNotFoundError):
            read_magic(io.BytesIO(b"\xfe" + MAGIC))
        _report("PASS", "Forward-only scan keeps its known limitation")


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Header
# ═══════════════════════════════════════════════════════════════════════════

class TestReadHeader:
    """Little-endian length and version, two ignored bytes."""

    @pytest.mark.parametrize("data", [b"", b"\x00\x00\x00", b"\x00\x00\x00\x00"])
    def test_truncated(self, data):
        # type: (bytes) -> None
        with pytest.raises(MalformedImageError):
            read_header(io.BytesIO(data))

    def test_small_values(self):
        # type: () -> None
        length, version = read_header(io.BytesIO(bytes([0x0f, 0x00, 0x00, 0x07, 0x00, 0xff, 0xee])))
        assert (length, version) == (15, 7)

    def test_multibyte_values(self):
        # type: () -> None
        stream = io.BytesIO(bytes([0x0f, 0xf0, 0x01, 0x07, 0x70, 0xff, 0xee, 0x11, 0x42]))
        length, version = read_header(stream)
        assert length == 0x01f00f
        assert version == 0x7007
        assert stream.read() == b"\x11\x42"


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Trailer Split and Full Parse
# ═══════════════════════════════════════════════════════════════════════════

class TestParseImage:
    """Signed region and signature recovery."""

    def test_trailer_offset_by_version(self):
        # type: () -> None
        assert trailer_offset(0) == 600
        assert trailer_offset(2) == 600
        assert trailer_offset(3) == 680
        assert trailer_offset(7) == 680

    @pytest.mark.parametrize("version", [2, 3])
    def test_build_then_parse(self, version):
        # type: (int) -> None
        signed = bytes(range(256)) * 3
        signature = b"\x89\x01\x1c\x04" + b"\x33" * 283
        image = parse_image(build_image(signed, signature, version))
        assert image.version == version
        assert image.length == len(signed) + trailer_offset(version)
        assert image.signed == signed
        assert image.signature == signature
        _report("PASS", repr(image))

    def test_leading_garbage_and_trailing_zeros(self):
        # type: () -> None
        container = sample_image(version=3)
        image = parse_image(b"\x13\x37" * 50 + container + b"\x00" * 300)
        assert image.version == 3
        assert image.signed == bytes((i % 251) + 1 for i in range(2048))

    def test_accepts_stream(self):
        # type: () -> None
        image = parse_image(io.BytesIO(sample_image(version=2)))
        assert image.version == 2

    def test_short_reads_from_raw_stream(self):
        # type: () -> None
        container = sample_image(version=3)
        image = parse_image(_TrickleStream(container))
        assert image == parse_image(container)
        assert len(image.signed) == 2048
        _report("PASS", "Parsed through 100-byte reads: {!r}".format(image))

    def test_header_split_across_reads(self):
        # type: () -> None
        stream = _TrickleStream(bytes([0x0f, 0xf0, 0x01, 0x07, 0x70, 0xff, 0xee]), chunk=2)
        assert read_header(stream) == (0x01f00f, 0x7007)

    def test_truncated_raw_stream(self):
        # type: () -> None
        with pytest.raises(MalformedImageError) as exc_info:
            parse_image(_TrickleStream(sample_image()[:-10]))
        assert "wrong length" in str(exc_info.value)

    def test_truncated_payload(self):
        # type: () -> None
        container = sample_image()
        with pytest.raises(MalformedImageError) as exc_info:
            parse_image(container[:-10])
        assert "wrong length" in str(exc_info.value)
        _report("CAUGHT", str(exc_info.value))

    def test_no_magic(self):
        # type: () -> None
        with pytest.raises(MagicNotFoundError):
            parse_image(b"\x00" * 1024)

    def test_payload_shorter_than_trailer(self):
        # type: () -> None
        with pytest.raises(MalformedImageError):
            parse_image(_container(b"\x01" * 100, 3))

    def test_signature_overruns_payload(self):
        # type: () -> None
        payload = bytearray(b"\x01" * 700)
        payload[20:22] = (1000).to_bytes(2, "little")
        with pytest.raises(MalformedImageError) as exc_info:
            parse_image(_container(bytes(payload), 3))
        assert "overruns" in str(exc_info.value)

    def test_signature_longer_than_signed_region(self):
        # type: () -> None
        # sig_len_offset + 2 + k fits, but trailer + 2 + k exceeds the payload
        payload = bytearray(b"\x01" * 700)
        payload[20:22] = (100).to_bytes(2, "little")
        with pytest.raises(MalformedImageError):
            split_payload(bytes(payload), 3)

    def test_malformed_is_not_magic_error(self):
        # type: () -> None
        with pytest.raises(MalformedImageError) as exc_info:
            parse_image(_container(b"\x01" * 10, 2))
        assert not isinstance(exc_info.value, MagicNotFoundError)


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — build_image Validation
# ═══════════════════════════════════════════════════════════════════════════

class TestBuildImage:
    """Containers that could not parse back are refused."""

    def test_signature_too_large_for_trailer(self):
        # type: () -> None
        with pytest.raises(ValueError):
            build_image(b"\x01" * 4096, b"\x02" * 679, 3)

    def test_signed_region_too_short(self):
        # type: () -> None
        with pytest.raises(ValueError):
            build_image(b"\x01" * 10, b"\x02" * 100, 3)

    def test_header_fields(self):
        # type: () -> None
        data = build_image(b"\x01" * 64, b"\x02" * 8, 2, code_size=0x1234)
        assert data[:6] == MAGIC
        assert int.from_bytes(data[6:9], "little") == 64 + 600
        assert data[9:11] == b"\x02\x00"
        assert data[11:13] == b"\x34\x12"
        assert len(data) == 6 + 7 + 64 + 600
