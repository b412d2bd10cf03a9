"""
AES whitening stream test suite.

Run with full visibility:
    pytest tests/test_whitener.py -v -s
"""

from __future__ import annotations

import io

import pytest
from Crypto.Cipher import AES

from onerng_tools.whitener import AESWhitener

KEY = bytes.fromhex("000102030405060708090a0b0c0d0e0f")


def _report(label, detail=""):
    # type: (str, str) -> None
    if detail:
        print("  [{}] {}".format(label, detail))
    else:
        print("  [{}]".format(label))


class TestAESWhitener:
    """AES-128 CFB wrapping of a writer."""

    def test_uneven_writes_decrypt(self):
        # type: () -> None
        out = io.BytesIO()
        plaintext = bytes(range(256)) * 3
        w = AESWhitener(KEY, out, closefd=False)
        for start, end in ((0, 1), (1, 17), (17, 100), (100, len(plaintext))):
            assert w.write(plaintext[start:end]) == end - start
        w.flush()
        ciphertext = out.getvalue()
        assert len(ciphertext) == len(plaintext)
        assert ciphertext != plaintext
        cipher = AES.new(KEY, AES.MODE_CFB, iv=w.iv, segment_size=128)
        assert cipher.decrypt(ciphertext) == plaintext
        _report("PASS", "{} bytes whitened in uneven writes".format(len(plaintext)))

    def test_fixed_iv_is_deterministic(self):
        # type: () -> None
        iv = b"\x42" * 16
        a, b = io.BytesIO(), io.BytesIO()
        AESWhitener(KEY, a, iv=iv, closefd=False).write(b"same input")
        AESWhitener(KEY, b, iv=iv, closefd=False).write(b"same input")
        assert a.getvalue() == b.getvalue()

    def test_generated_iv(self):
        # type: () -> None
        w = AESWhitener(KEY, io.BytesIO())
        assert len(w.iv) == 16

    def test_bad_key_length(self):
        # type: () -> None
        with pytest.raises(ValueError):
            AESWhitener(b"short", io.BytesIO())

    def test_bad_iv_length(self):
        # type: () -> None
        with pytest.raises(ValueError):
            AESWhitener(KEY, io.BytesIO(), iv=b"\x00" * 8)

    def test_close_closes_underlying(self):
        # type: () -> None
        out = io.BytesIO()
        w = AESWhitener(KEY, out)
        w.close()
        w.close()
        assert w.closed
        assert out.closed

    def test_closefd_false_leaves_underlying_open(self):
        # type: () -> None
        out = io.BytesIO()
        with AESWhitener(KEY, out, closefd=False) as w:
            w.write(b"abc")
        assert not out.closed
        assert len(out.getvalue()) == 3

    def test_write_after_close(self):
        # type: () -> None
        w = AESWhitener(KEY, io.BytesIO())
        w.close()
        with pytest.raises(ValueError):
            w.write(b"x")
