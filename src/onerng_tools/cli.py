"""Command-line interface for the OneRNG tools."""

from __future__ import annotations

import argparse
import contextlib
import io
import logging
import os
import signal
import sys
import time
from typing import BinaryIO, ContextManager, List, Optional

from tqdm import tqdm

from . import DEFAULT_DEVICE, DEFAULT_PUBLIC_KEY_FILE, ENTROPY_WASTE_BYTES, __version__
from .cancel import CancelToken
from .exceptions import OneRNGError
from .keys import load_public_key
from .protocol import NoiseMode, OneRNG
from .verify import FirmwareVerifier

logger = logging.getLogger("onerng_tools.cli")


class _ProgressWriter(io.RawIOBase):
    """Pass-through writer that advances a tqdm bar.  Does not close *out*."""

    def __init__(self, out: BinaryIO, bar: tqdm) -> None:
        super().__init__()
        self._out = out
        self._bar = bar

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:  # type: ignore[override]
        n = self._out.write(b)
        self._bar.update(len(b) if n is None else n)
        return len(b) if n is None else n

    def flush(self) -> None:
        if not self.closed:
            self._out.flush()

    def close(self) -> None:
        if not self.closed:
            self._bar.close()
        super().close()


def _format_size(size: float) -> str:
    """Format a byte count with IEC units."""
    for unit in ("B", "KiB", "MiB", "GiB"):
        if size < 1024 or unit == "GiB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GiB"


def _format_speed(speed: float) -> str:
    """Format speed for display."""
    return f"{_format_size(speed)}/s"


def _open_output(path: str) -> ContextManager[BinaryIO]:
    """Open *path* for binary writing; ``-`` means stdout (left open)."""
    if path == "-":
        return contextlib.nullcontext(sys.stdout.buffer)
    return open(path, "wb")


def create_onerng(args) -> OneRNG:
    """Create the device driver for the selected device path."""
    return OneRNG(args.device)


def command_flush(args) -> int:
    """Flush the entropy pool."""
    try:
        create_onerng(args).flush(args.token)
        return 0
    except OneRNGError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def command_id(args) -> int:
    """Display the hardware ID."""
    try:
        hardware_id = create_onerng(args).identify(args.token)
    except OneRNGError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"OneRNG Hardware ID: {hardware_id}")
    return 0


def command_version(args) -> int:
    """Display the hardware version."""
    try:
        version = create_onerng(args).version(args.token)
    except OneRNGError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"OneRNG Hardware Version: {version}")
    return 0


def command_init(args) -> int:
    """Initialize the RNG."""
    try:
        create_onerng(args).init(args.token)
        return 0
    except OneRNGError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def command_image(args) -> int:
    """Dump the firmware image."""
    rng = create_onerng(args)
    try:
        rng.init(args.token)
    except OneRNGError as e:
        print(f"Error: init failed before image extraction: {e}", file=sys.stderr)
        return 1

    try:
        image = rng.image(args.token)
        with _open_output(args.out) as out:
            out.write(image)
            out.flush()
    except (OneRNGError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Wrote {len(image)}b to {args.out}", file=sys.stderr)
    return 0


def command_verify(args) -> int:
    """Verify that the firmware has not been tampered with."""
    try:
        verifier = FirmwareVerifier(load_public_key(args.public_key or None))
    except OneRNGError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.image:
        try:
            with open(args.image, "rb") as f:
                image = f.read()
        except OSError as e:
            print(f"Error: cannot read image {args.image}: {e}", file=sys.stderr)
            return 1
    else:
        rng = create_onerng(args)
        try:
            rng.init(args.token)
        except OneRNGError as e:
            print(f"Error: init failed before image verification: {e}", file=sys.stderr)
            return 1
        try:
            image = rng.image(args.token)
        except OneRNGError as e:
            print(f"Error: image extraction failed before verification: {e}", file=sys.stderr)
            return 1

    try:
        result = verifier.verify(image)
    except OneRNGError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"firmware verification passed OK - version={result.version}", file=sys.stderr)
    print(f"signed by: {result.signer.name!r}", file=sys.stderr)
    print(f"\tcreated: {result.signer.created}", file=sys.stderr)
    print(f"\tfingerprint: {result.signer.fingerprint}", file=sys.stderr)
    return 0


def command_read(args) -> int:
    """Read random data from the device."""
    rng = create_onerng(args)
    mode = NoiseMode(
        disable_whitener=args.disable_whitener,
        enable_rf=args.enable_rf,
        disable_avalanche=args.disable_avalanche,
    )

    try:
        rng.init(args.token)
    except OneRNGError as e:
        print(f"Error: init failed before read: {e}", file=sys.stderr)
        return 1

    # waste some entropy so the generator settles
    try:
        with open(os.devnull, "wb") as devnull:
            rng.read(args.token, devnull, ENTROPY_WASTE_BYTES, mode)
    except (OneRNGError, OSError) as e:
        logger.debug("[CLI-READ] Entropy wastage failed: %s", e)
        print("warning: entropy wastage failed or incomplete, continuing anyway", file=sys.stderr)

    written = 0
    error = None  # type: Optional[Exception]
    start = time.monotonic()
    try:
        with _open_output(args.out) as out:
            with contextlib.ExitStack() as stack:
                sink = out  # type: BinaryIO
                if args.aes_whitener:
                    sink = stack.enter_context(rng.aes_whitener(args.token, sink, closefd=False))
                if args.progress:
                    bar = tqdm(
                        total=args.count if args.count >= 0 else None,
                        unit="B",
                        unit_scale=True,
                        unit_divisor=1024,
                        desc=f"Reading from {args.device}",
                        file=sys.stderr,
                    )
                    sink = stack.enter_context(_ProgressWriter(sink, bar))
                start = time.monotonic()
                written = rng.read(args.token, sink, args.count, mode)
    except OneRNGError as e:
        written = e.bytes_written or 0
        error = e
    except OSError as e:
        error = e

    elapsed = time.monotonic() - start
    rate = written / elapsed if elapsed > 0 else 0.0
    print(
        f"{_format_size(written)} written in {elapsed:.3f}s ({_format_speed(rate)})",
        file=sys.stderr,
    )
    if error is not None:
        print(f"Error: {error}", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="onerng",
        description=(
            "Tool for the OneRNG open source hardware entropy generator. "
            "Verifies that the device operates correctly and that its "
            "firmware has not been tampered with."
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-d", "--device",
        default=DEFAULT_DEVICE,
        help=f"The OneRNG device (default: {DEFAULT_DEVICE})",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=False,
        help="Log protocol traffic to stderr",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    flush_parser = subparsers.add_parser("flush", help="Flush the OneRNG's entropy pool")
    flush_parser.set_defaults(func=command_flush)

    id_parser = subparsers.add_parser("id", help="Display the OneRNG's hardware id")
    id_parser.set_defaults(func=command_id)

    init_parser = subparsers.add_parser("init", help="Initialize the RNG")
    init_parser.set_defaults(func=command_init)

    image_parser = subparsers.add_parser("image", help="Dump the OneRNG's firmware image")
    image_parser.add_argument(
        "-o", "--out", default="onerng.img",
        help="Output file for image (use - for stdout, default: onerng.img)",
    )
    image_parser.set_defaults(func=command_image)

    read_parser = subparsers.add_parser("read", help="Read some random data from the OneRNG")
    read_parser.add_argument(
        "-o", "--out", default="-",
        help="Output file for data (use - for stdout, the default)",
    )
    read_parser.add_argument(
        "-n", "--count", type=int, default=-1,
        help="Read only N bytes (use -1 for unlimited)",
    )
    read_parser.add_argument(
        "--disable-avalanche", action="store_true", default=False,
        help="Disable noise generation from the Avalanche Diode",
    )
    read_parser.add_argument(
        "--enable-rf", action="store_true", default=False,
        help="Enable noise generation from RF",
    )
    read_parser.add_argument(
        "--disable-whitener", action="store_true", default=False,
        help="Disable the on-board CRC16 generator",
    )
    read_parser.add_argument(
        "--aes-whitener", action=argparse.BooleanOptionalAction, default=True,
        help="Encrypt with AES-128 to 'whiten' the stream with a random key "
             "obtained from the OneRNG (default: on)",
    )
    read_parser.add_argument(
        "--progress", action="store_true", default=False,
        help="Show a progress bar on stderr",
    )
    read_parser.set_defaults(func=command_read)

    verify_parser = subparsers.add_parser(
        "verify", help="Verify that OneRNG's firmware has not been tampered with",
    )
    verify_parser.add_argument(
        "--public-key", default=DEFAULT_PUBLIC_KEY_FILE,
        help="Armored public key file (default: the bundled OneRNG signing key)",
    )
    verify_parser.add_argument(
        "--image", default=None,
        help="Verify a previously dumped image file instead of reading the device",
    )
    verify_parser.set_defaults(func=command_verify)

    version_parser = subparsers.add_parser("version", help="Display the OneRNG's hardware version")
    version_parser.set_defaults(func=command_version)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    token = CancelToken(reason="interrupted")
    args.token = token

    def _on_interrupt(signum, frame) -> None:  # type: ignore[no-untyped-def]
        logger.info("[CLI] Interrupt received, cancelling")
        token.cancel()

    previous = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        return args.func(args)
    finally:
        signal.signal(signal.SIGINT, previous)


if __name__ == "__main__":
    sys.exit(main())
