"""Time-based one-time passwords (RFC 6238) with replay protection.

Codes are 6 digits over a 30 second time step using HMAC-SHA512, accepted
within one step either side of the current time. A matched time step is
recorded per user in a replay cache so each code can be used only once.

Secrets are stored encrypted with Fernet and only decrypted in memory while
a code is being checked or provisioned.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
import struct
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING
from urllib.parse import quote, urlencode

from cryptography.fernet import Fernet, InvalidToken

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from facility_auth.permissions.cache import TtlCache

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

TOTP_PERIOD_SECONDS = 30
TOTP_DIGITS = 6
TOTP_HASH_FUNCTION = "SHA512"
VERIFICATION_WINDOW_STEPS = 1
# covers the matched step plus the window on both sides
REPLAY_TTL_SECONDS = 91
DEFAULT_SECRET_LENGTH_BYTES = 20


class VerifyTotpCodeResult(Enum):
    OK = "ok"
    CODE_INVALID = "code_invalid"
    CODE_ALREADY_USED = "code_already_used"


@dataclass(frozen=True)
class TwoFactorSetup:
    """Data a client needs to add the account to an authenticator app.

    This is the only place a plaintext secret leaves the server.
    """

    provisioning_uri: str
    secret: str
    hash_function: str = TOTP_HASH_FUNCTION
    period: int = TOTP_PERIOD_SECONDS
    digits: int = TOTP_DIGITS


class TotpSecretCipher:
    """Encrypts TOTP secrets for storage with a server-held Fernet key.

    :param key: A urlsafe base64 encoded 32-byte key, see
        :meth:`cryptography.fernet.Fernet.generate_key`
    """

    def __init__(self, key: str | bytes) -> None:
        self._fernet = Fernet(key)

    def encrypt(self, secret: str) -> str:
        return self._fernet.encrypt(secret.encode()).decode()

    def decrypt(self, encrypted_secret: str) -> str:
        """Decrypt a stored secret.

        :raises cryptography.fernet.InvalidToken: If the value was not
            encrypted with this key or was tampered with
        """
        return self._fernet.decrypt(encrypted_secret.encode()).decode()


def _decode_secret(secret: str) -> bytes:
    padded = secret.upper() + "=" * (-len(secret) % 8)
    return base64.b32decode(padded)


def totp_code(secret: bytes, time_step: int) -> str:
    """Compute the code for a raw secret at a given time step.

    :param secret: The raw shared secret
    :param time_step: Seconds since the epoch divided by the period
    :return: The zero-padded code
    """
    digest = hmac.new(secret, struct.pack(">Q", time_step), hashlib.sha512).digest()
    offset = digest[-1] & 0x0F
    binary = int.from_bytes(digest[offset : offset + 4], "big") & 0x7FFFFFFF
    return str(binary % 10**TOTP_DIGITS).zfill(TOTP_DIGITS)


def _well_formed(code: str | None) -> bool:
    return (
        code is not None
        and len(code) == TOTP_DIGITS
        and code.isascii()
        and code.isdigit()
    )


class TotpVerifier:
    """Generates TOTP secrets and verifies codes exactly once.

    :param cipher: Cipher for secrets at rest
    :param replay_cache: Shared cache recording used time steps
    :param application_name: Issuer shown in authenticator apps
    :param secret_length_bytes: Default length of generated secrets
    :param clock: Wall clock returning seconds since the epoch
    """

    def __init__(  # noqa: PLR0913
        self,
        cipher: TotpSecretCipher,
        replay_cache: TtlCache,
        application_name: str,
        secret_length_bytes: int = DEFAULT_SECRET_LENGTH_BYTES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cipher = cipher
        self.replay_cache = replay_cache
        self.application_name = application_name
        self.secret_length_bytes = secret_length_bytes
        self._clock = clock

    def generate_secret(self, length_bytes: int | None = None) -> str:
        """Generate a new base32 encoded secret."""
        length = length_bytes or self.secret_length_bytes
        return base64.b32encode(secrets.token_bytes(length)).decode().rstrip("=")

    def generate_encrypted_secret(self, length_bytes: int | None = None) -> str:
        """Generate a new secret, encrypted for storage."""
        return self.cipher.encrypt(self.generate_secret(length_bytes))

    def _provisioning_uri(self, email: str, secret: str) -> str:
        label = quote(f"{self.application_name}:{email}")
        query = urlencode(
            {
                "secret": secret,
                "issuer": self.application_name,
                "algorithm": TOTP_HASH_FUNCTION,
                "digits": TOTP_DIGITS,
                "period": TOTP_PERIOD_SECONDS,
            },
            quote_via=quote,
        )
        return f"otpauth://totp/{label}?{query}"

    def generate_provisioning_uri(self, email: str, encrypted_secret: str) -> str:
        """Build the ``otpauth://`` URI an authenticator app scans.

        :param email: The account name shown in the app
        :param encrypted_secret: The stored, encrypted secret
        """
        return self._provisioning_uri(email, self.cipher.decrypt(encrypted_secret))

    def init_two_factor(self, email: str, encrypted_secret: str) -> TwoFactorSetup:
        """Return everything needed to set up an authenticator app."""
        secret = self.cipher.decrypt(encrypted_secret)
        return TwoFactorSetup(
            provisioning_uri=self._provisioning_uri(email, secret),
            secret=secret,
        )

    def _matched_time_step(self, secret: bytes, code: str) -> int | None:
        current_step = int(self._clock() // TOTP_PERIOD_SECONDS)
        for offset in range(-VERIFICATION_WINDOW_STEPS, VERIFICATION_WINDOW_STEPS + 1):
            step = current_step + offset
            if hmac.compare_digest(totp_code(secret, step), code):
                return step
        return None

    def verify_code(
        self,
        user_id: UUID,
        code: str | None,
        encrypted_secret: str,
    ) -> VerifyTotpCodeResult:
        """Verify a code and mark its time step as used for this user.

        A malformed code is rejected without touching the replay cache.

        :param user_id: The user the code belongs to
        :param code: The code the user entered
        :param encrypted_secret: The user's stored, encrypted secret
        :return: OK, CODE_INVALID, or CODE_ALREADY_USED if the matched time
            step was already used by this user
        """
        if not _well_formed(code):
            return VerifyTotpCodeResult.CODE_INVALID

        try:
            secret = _decode_secret(self.cipher.decrypt(encrypted_secret))
        except (InvalidToken, ValueError):
            LOGGER.warning("Stored TOTP secret for user %s could not be read", user_id)
            return VerifyTotpCodeResult.CODE_INVALID

        step = self._matched_time_step(secret, code)
        if step is None:
            return VerifyTotpCodeResult.CODE_INVALID

        if not self.replay_cache.add(("totp", user_id, step), True, REPLAY_TTL_SECONDS):
            LOGGER.debug("TOTP code reuse for user %s", user_id)
            return VerifyTotpCodeResult.CODE_ALREADY_USED

        return VerifyTotpCodeResult.OK
