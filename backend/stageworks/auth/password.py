"""
Password hashing using Argon2id.

Hashes carry their own parameters and salt, so the hasher settings can be
raised later; ``needs_rehash`` reports hashes made with older settings.
"""

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

_hasher = PasswordHasher(
    time_cost=2,
    memory_cost=19456,  # 19 MiB
    parallelism=1,
)


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return _hasher.hash(password)


def verify_password(password: str, hash_str: str) -> bool:
    """
    Verify a password against an Argon2id hash.

    Returns:
        True if the password matches. Malformed hashes count as a mismatch.
    """
    try:
        _hasher.verify(hash_str, password)
        return True
    except (VerificationError, InvalidHashError):
        return False


def needs_rehash(hash_str: str) -> bool:
    return _hasher.check_needs_rehash(hash_str)
