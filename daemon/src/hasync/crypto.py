"""Cryptographic helpers for pairing.

This module provides:
- Uniform six digit PIN generation
- Certificate (opaque trust token) derivation
- Constant-time certificate comparison

Security notes:
- Randomness comes from the `secrets` module
- Hashing uses the `cryptography` library primitives
- The certificate is a hash-derived shared secret bound to one pairing
  event, not a signature over the client's public key
"""

import hmac
import secrets
import time

from cryptography.hazmat.primitives import hashes

__all__ = [
    "PIN_LENGTH",
    "CERTIFICATE_ENTROPY_BYTES",
    "generate_pin",
    "generate_certificate",
    "certificates_equal",
    "key_fingerprint",
]

PIN_LENGTH = 6
CERTIFICATE_ENTROPY_BYTES = 32


def generate_pin() -> str:
    """Generate a uniformly random six digit PIN.

    Leading zeros are preserved, so every value in 000000-999999 is
    equally likely.
    """
    return f"{secrets.randbelow(10 ** PIN_LENGTH):0{PIN_LENGTH}d}"


def generate_certificate(public_key: str, server_time_ms: int | None = None) -> str:
    """Derive a certificate for a newly paired client.

    certificate = SHA256(public_key || server_time_ms || 32 random bytes)

    Args:
        public_key: The client's public key as submitted.
        server_time_ms: Pairing time in epoch ms (defaults to now).

    Returns:
        64 lowercase hex characters.
    """
    if server_time_ms is None:
        server_time_ms = int(time.time() * 1000)

    digest = hashes.Hash(hashes.SHA256())
    digest.update(public_key.encode("utf-8"))
    digest.update(str(server_time_ms).encode("ascii"))
    digest.update(secrets.token_bytes(CERTIFICATE_ENTROPY_BYTES))
    return digest.finalize().hex()


def certificates_equal(stored: str, supplied: str) -> bool:
    """Compare two certificates in constant time.

    Uses `hmac.compare_digest`, whose running time does not depend on the
    position of the first differing byte. Inputs of different length are a
    non-match.
    """
    return hmac.compare_digest(stored.encode("utf-8"), supplied.encode("utf-8"))


def key_fingerprint(public_key: str) -> str:
    """Short SHA256 fingerprint of a public key, safe to log."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(public_key.encode("utf-8"))
    return digest.finalize().hex()[:16]
