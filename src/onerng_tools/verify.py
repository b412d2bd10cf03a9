"""Firmware signature verification.

``FirmwareVerifier`` parses a firmware container and checks its detached
OpenPGP signature against a trusted public key.  The OpenPGP work itself is
delegated to a ``SignatureBackend``; the default ``GnuPGBackend`` drives the
system ``gpg`` binary through python-gnupg inside a throwaway keyring so the
user's own keyring is never touched.
"""

from __future__ import annotations

import abc
import dataclasses
import datetime
import logging
import os
import tempfile
from typing import Optional, Union

import gnupg
from typeguard import typechecked

from .exceptions import SignatureBackendError, SignatureVerificationError
from .firmware import FirmwareImage, parse_image

logger = logging.getLogger("onerng_tools.verify")


@dataclasses.dataclass(frozen=True)
class SignerIdentity:
    """Who signed an image that verified successfully.

    ``created`` is the creation time of the signing primary key as gpg lists
    it, not the self-signature time of the matched user ID.
    """
    name: str
    created: Optional[datetime.datetime]
    fingerprint: str


@dataclasses.dataclass(frozen=True)
class VerificationResult:
    version: int
    signer: SignerIdentity


class SignatureBackend(abc.ABC):
    """Something that can check a detached signature against an armored key."""

    @abc.abstractmethod
    def verify(self, signed: bytes, signature: bytes, public_key: str) -> SignerIdentity:
        """Verify *signature* over *signed* using the keys in *public_key*.

        Raises:
            SignatureVerificationError: If the signature does not verify.
            SignatureBackendError: If the backend itself cannot do the check.
        """


def _timestamp(value: Optional[str]) -> Optional[datetime.datetime]:
    if not value:
        return None
    try:
        return datetime.datetime.fromtimestamp(int(value), tz=datetime.timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


class GnuPGBackend(SignatureBackend):
    """python-gnupg backed verification using a temporary GNUPGHOME."""

    def __init__(self, gpgbinary: str = "gpg") -> None:
        self.gpgbinary = gpgbinary

    def verify(self, signed: bytes, signature: bytes, public_key: str) -> SignerIdentity:
        with tempfile.TemporaryDirectory(prefix="onerng-gpg-") as home:
            try:
                gpg = gnupg.GPG(gpgbinary=self.gpgbinary, gnupghome=home)
            except (OSError, ValueError) as exc:
                raise SignatureBackendError(f"Cannot run {self.gpgbinary}: {exc}") from exc

            imported = gpg.import_keys(public_key)
            if not imported.fingerprints:
                raise SignatureBackendError(
                    f"Public key could not be imported: {imported.stderr.strip() or 'no keys found'}"
                )
            logger.debug("[VERIFY] Imported %d key(s): %s", len(imported.fingerprints), imported.fingerprints)

            sig_path = os.path.join(home, "firmware.sig")
            with open(sig_path, "wb") as f:
                f.write(signature)

            verified = gpg.verify_data(sig_path, signed)
            if not verified.valid:
                raise SignatureVerificationError(
                    f"failed to verify firmware signature: {verified.status or 'no valid signature'}"
                )

            fingerprint = verified.pubkey_fingerprint or verified.fingerprint or ""
            created = None
            for key in gpg.list_keys():
                if key.get("fingerprint") == fingerprint:
                    created = _timestamp(key.get("date"))
                    break
            return SignerIdentity(
                name=verified.username or "",
                created=created,
                fingerprint=fingerprint.upper(),
            )


@typechecked
class FirmwareVerifier:
    """Checks firmware images against one trusted public key.

    The key is configuration, not a global: pass ``keys.ONERNG_PUBLIC_KEY``
    for genuine OneRNG hardware.
    """

    def __init__(self, public_key: str, backend: Optional[SignatureBackend] = None) -> None:
        self.public_key = public_key
        self.backend = backend if backend is not None else GnuPGBackend()

    def verify_image(self, image: FirmwareImage) -> VerificationResult:
        """Verify an already-parsed image."""
        signer = self.backend.verify(image.signed, image.signature, self.public_key)
        logger.info("[VERIFY] firmware verification passed OK - version=%d", image.version)
        logger.info("[VERIFY] signed by: %s", signer.name)
        logger.info("[VERIFY]     created: %s", signer.created)
        logger.info("[VERIFY]     fingerprint: %s", signer.fingerprint)
        return VerificationResult(version=image.version, signer=signer)

    def verify(self, image: Union[bytes, bytearray]) -> VerificationResult:
        """Parse a raw device dump and verify its signature.

        Raises:
            MagicNotFoundError: If the dump holds no firmware container.
            MalformedImageError: If the container is truncated or inconsistent.
            SignatureVerificationError: If the signature does not verify.
            SignatureBackendError: If verification could not be attempted.
        """
        return self.verify_image(parse_image(bytes(image)))
