"""Peppered HMAC-bcrypt password hashing.

The password is run through HMAC-SHA512 keyed with a server-wide pepper
before bcrypt, and the bcrypt output is run through the same HMAC again. The
stored value is the bcrypt settings prefix followed by the final HMAC, so a
leaked database alone is not enough to brute force passwords.

Stored format::

    $2a$<cost>$<22 char salt><base64 HMAC-SHA512, padding stripped>
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging

import bcrypt

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

MIN_BCRYPT_COST = 10
MAX_BCRYPT_COST = 16
DEFAULT_BCRYPT_COST = 10

_SETTINGS_LENGTH = 29
_BCRYPT_MAX_KEY_BYTES = 72


def valid_bcrypt_cost(cost: int) -> bool:
    """Check whether a bcrypt cost may be configured."""
    return MIN_BCRYPT_COST <= cost <= MAX_BCRYPT_COST


def _hmac_b64(pepper: str, message: bytes) -> str:
    digest = hmac.new(pepper.encode(), message, hashlib.sha512).digest()
    return base64.b64encode(digest).decode()


def _hash_with_settings(password: str, settings: bytes, pepper: str) -> str:
    pre_hash = _hmac_b64(pepper, password.encode())
    # bcrypt only consumes the first 72 bytes of its key
    mid_hash = bcrypt.hashpw(pre_hash.encode()[:_BCRYPT_MAX_KEY_BYTES], settings)
    post_hash = _hmac_b64(pepper, mid_hash).replace("=", "")
    return settings.decode() + post_hash


def hash_password(password: str, pepper: str, cost: int = DEFAULT_BCRYPT_COST) -> str:
    """Hash a password with a freshly generated salt.

    :param password: The plaintext password
    :param pepper: The server-wide secret pepper
    :param cost: The bcrypt cost factor
    :return: The stored hash string
    :raises ValueError: If the cost is outside the allowed range
    """
    if not valid_bcrypt_cost(cost):
        msg = f"bcrypt cost must be between {MIN_BCRYPT_COST} and {MAX_BCRYPT_COST}"
        raise ValueError(msg)
    settings = bcrypt.gensalt(rounds=cost, prefix=b"2a")
    return _hash_with_settings(password, settings, pepper)


def verify_password(password: str, stored_hash: str, pepper: str) -> bool:
    """Verify a password against a stored hash.

    The salt and cost are read from the stored hash's settings prefix. A
    malformed stored hash never verifies.

    :param password: The plaintext password to check
    :param stored_hash: A value previously returned by :func:`hash_password`
    :param pepper: The server-wide secret pepper
    :return: True if the password matches, False otherwise
    """
    if len(stored_hash) <= _SETTINGS_LENGTH or not stored_hash.startswith("$2"):
        return False

    settings = stored_hash[:_SETTINGS_LENGTH].encode()
    try:
        candidate = _hash_with_settings(password, settings, pepper)
    except ValueError:
        LOGGER.warning("Stored password hash has invalid bcrypt settings")
        return False

    return hmac.compare_digest(candidate.encode(), stored_hash.encode())


class PasswordHasher:
    """Hashes and verifies passwords with a fixed pepper and cost.

    :param pepper: The server-wide secret pepper, never derived from user data
    :param cost: The bcrypt cost factor, between 10 and 16
    :raises ValueError: If the pepper is empty or the cost is out of range
    """

    def __init__(self, pepper: str, cost: int = DEFAULT_BCRYPT_COST) -> None:
        if not pepper:
            msg = "Password pepper must not be empty"
            raise ValueError(msg)
        if not valid_bcrypt_cost(cost):
            msg = f"bcrypt cost must be between {MIN_BCRYPT_COST} and {MAX_BCRYPT_COST}"
            raise ValueError(msg)
        self._pepper = pepper
        self.cost = cost

    def hash(self, password: str) -> str:
        """Hash a password for storage."""
        return hash_password(password, self._pepper, self.cost)

    def verify(self, password: str, stored_hash: str) -> bool:
        """Check a password against a stored hash."""
        return verify_password(password, stored_hash, self._pepper)
