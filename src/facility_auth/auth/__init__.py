"""All authentication-related modules and routes."""

from .auth_routes import configure_auth_router
from .credentials import CredentialVerifier, LoginType, VerifyCredentialsResult
from .password_hasher import PasswordHasher
from .queries import AuthQueries
from .token_issuer import TokenIssuer, TokenVariant
from .totp import TotpSecretCipher, TotpVerifier, VerifyTotpCodeResult
from .validation import Validate

__all__ = [
    "AuthQueries",
    "CredentialVerifier",
    "LoginType",
    "PasswordHasher",
    "TokenIssuer",
    "TokenVariant",
    "TotpSecretCipher",
    "TotpVerifier",
    "Validate",
    "VerifyCredentialsResult",
    "VerifyTotpCodeResult",
    "configure_auth_router",
]
