"""Custom exceptions for device, protocol and firmware operations."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .session import CleanupAttempt


class OneRNGError(Exception):
    """Common base exception for all onerng_tools errors.

    Attributes:
        cleanup: Best-effort cleanup attempts made while the operation that
            raised this error was unwinding.  Empty when none were needed.
        bytes_written: Bytes delivered to the destination before a streaming
            copy failed, or ``None`` for non-streaming operations.
    """

    def __init__(
        self,
        message: str,
        *,
        cleanup: Optional[List[CleanupAttempt]] = None,
        bytes_written: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.cleanup = list(cleanup) if cleanup else []
        self.bytes_written = bytes_written


class DeviceTransportError(OneRNGError):
    """Exception for open, read and write failures on the device handle."""
    pass


class DeviceTimeoutError(DeviceTransportError):
    """Exception for a read that hit its deadline without receiving any data.

    Tolerated a bounded number of times by the timeout-tolerant copy;
    fatal everywhere else.
    """
    pass


class DeviceProtocolError(OneRNGError):
    """Exception for responses that do not follow the command protocol.

    Raised for non-numeric version text, over-long lines, or a response
    stream that ends before the expected reply arrives.
    """
    pass


class ShortReadError(DeviceProtocolError):
    """Exception for a stream that ended in the middle of a fixed-size chunk."""

    def __init__(self, message: str, *, wanted: int, got: int) -> None:
        super().__init__(message)
        self.wanted = wanted
        self.got = got


class OperationCancelledError(OneRNGError):
    """Exception for an operation whose cancellation token fired."""
    pass


class DeadlineExceededError(OperationCancelledError):
    """Exception for an operation whose cancellation token passed its deadline."""
    pass


class MalformedImageError(OneRNGError):
    """Exception for firmware images that cannot be decoded.

    Covers truncated headers and payloads and signature length/offset
    values that point outside the payload.
    """
    pass


class MagicNotFoundError(MalformedImageError):
    """Exception for input exhausted before the container magic was found."""
    pass


class SignatureVerificationError(OneRNGError):
    """Exception for a well-formed image whose signature does not verify."""
    pass


class SignatureBackendError(OneRNGError):
    """Exception for a verification backend that could not run at all.

    Raised when the public key cannot be imported or the ``gpg`` binary
    is unavailable.  Distinct from ``SignatureVerificationError`` so that
    "cannot check" is never reported as "not authentic".
    """
    pass
