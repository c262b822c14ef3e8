"""
Security module: secret fingerprints for the password gate.

The digest travels inside the offer token, so the receiver can check a
typed secret without the secret itself ever leaving the sender.
"""

from cryptography.hazmat.primitives import constant_time, hashes


def fingerprint(secret: str) -> str:
    """
    Compute the one-way digest of a secret.

    Returns the SHA-256 of the UTF-8 encoded secret as lowercase hex.
    """
    digest = hashes.Hash(hashes.SHA256())
    digest.update(secret.encode("utf-8"))
    return digest.finalize().hex()


def matches(digest_a: str | None, digest_b: str | None) -> bool:
    """Constant-time exact comparison of two digests. Missing never matches."""
    if digest_a is None or digest_b is None:
        return False
    return constant_time.bytes_eq(
        digest_a.encode("utf-8"),
        digest_b.encode("utf-8"),
    )
