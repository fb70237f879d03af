"""Password hashing utilities.

Learn: Uses bcrypt for secure password hashing. bcrypt automatically
handles salting and is resistant to rainbow table attacks. The work
factor comes from KEYWARD_BCRYPT_ROUNDS (12 ≈ 100ms per hash on modern
hardware); hashes made with a different cost are re-hashed on the next
successful login.
"""

from functools import lru_cache
from typing import Optional

import bcrypt

from keyward.config import settings


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    """Hash a password with bcrypt.

    Learn: bcrypt includes a random salt automatically and produces
    hashes starting with "$2b$". Passwords are truncated to 72 bytes
    (bcrypt's limit).
    """
    pw_bytes = password.encode("utf-8")[:72]
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    return bcrypt.hashpw(pw_bytes, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its bcrypt hash."""
    try:
        pw_bytes = password.encode("utf-8")[:72]
        hash_bytes = password_hash.encode("utf-8")
        return bcrypt.checkpw(pw_bytes, hash_bytes)
    except (ValueError, TypeError):
        return False


def hash_cost(password_hash: str) -> Optional[int]:
    """Extract the cost factor from a "$2b$12$..." hash."""
    try:
        return int(password_hash.split("$")[2])
    except (IndexError, ValueError):
        return None


def needs_rehash(password_hash: str, rounds: Optional[int] = None) -> bool:
    """Check if a hash was made with a cost other than the configured one."""
    return hash_cost(password_hash) != (rounds or settings.bcrypt_rounds)


@lru_cache(maxsize=8)
def dummy_hash(rounds: int) -> str:
    """A throwaway hash used to burn the same bcrypt time for unknown emails."""
    return hash_password("keyward-dummy-password", rounds=rounds)
