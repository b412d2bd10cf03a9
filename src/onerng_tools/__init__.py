"""
OneRNG Tools - device driver and firmware verification for the OneRNG

This package talks to the OneRNG open source hardware entropy generator over its
USB serial interface and checks that the firmware it runs has not been tampered
with. It includes:

- **Device session** with lazy open, guaranteed close and cancellable readers
- **Command protocol** for version, hardware ID, flush, init, image dump and bulk reads
- **Timeout-tolerant copy** for streaming random data to any writer
- **Firmware image parser** that locates and splits the signed container
- **Signature verification** against an armored OpenPGP public key
- **AES whitening** of the output stream with a key drawn from the device

Every high-level operation opens the device, runs its exchange and closes the
device again, including on cancellation and error paths.
"""

import logging
import os

logging.getLogger("onerng_tools").addHandler(logging.NullHandler())

__version__ = "0.1.0"

# Device path. Override via the ONERNG_DEVICE environment variable.
# On Linux the OneRNG enumerates as a CDC ACM modem (load cdc_acm if needed).
DEFAULT_DEVICE = os.environ.get("ONERNG_DEVICE", "/dev/ttyACM0")

# Optional path to an armored public key used instead of the bundled signing key.
DEFAULT_PUBLIC_KEY_FILE = os.environ.get("ONERNG_PUBLIC_KEY_FILE", "")

# Serial line settings (CDC ACM ignores the baud rate, but pyserial needs one)
SERIAL_BAUD_RATE = 9600
SERIAL_WRITE_TIMEOUT = 10  # seconds, blocking with failsafe
SERIAL_POLL_INTERVAL_S = 0.1  # read timeout used by reader threads between token checks

# Timeout-tolerant copy
COPY_READ_DEADLINE_S = 0.5
COPY_ALLOWED_TIMEOUTS = 10
COPY_CHUNK_SIZE = 4096

# Command protocol timing
IMAGE_SETTLE_S = 2.0
IMAGE_CHUNK_SIZE = 4
IMAGE_END_ZERO_RUN = 200  # consecutive zero bytes that terminate an image dump
INIT_ATTEMPTS = 200
INIT_PROBE_TIMEOUT_S = 0.05
READER_JOIN_TIMEOUT_S = 2.0

# Whitener key length (AES-128)
WHITENER_KEY_SIZE = 16

# Bytes discarded before a bulk read so the generator settles
ENTROPY_WASTE_BYTES = 10240
