"""Configuration management for the facility auth API.

This module provides utilities for loading and validating configuration
from environment variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from dotenv import load_dotenv
from jwt.algorithms import get_default_algorithms

from facility_auth.auth.password_hasher import (
    DEFAULT_BCRYPT_COST,
    PasswordHasher,
    valid_bcrypt_cost,
)
from facility_auth.auth.totp import DEFAULT_SECRET_LENGTH_BYTES, TotpSecretCipher

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

_DEFAULT_ACCESS_TOKEN_MINUTES = 15
_DEFAULT_SESSION_TIMEOUT_MINUTES = 60 * 24 * 14
_DEFAULT_PERMISSION_CACHE_TTL_SECONDS = 300
_DEFAULT_MAX_FAILED_LOGIN_ATTEMPTS = 5
_DEFAULT_LOCKOUT_MINUTES = 5
_MIN_TOTP_SECRET_LENGTH_BYTES = 10


def configure_logging(app_config: AppConfig) -> None:
    """Configure logging based on the application configuration.

    :param app_config: The application configuration instance
    """
    if not app_config.logging_level:
        logging.basicConfig(level=logging.INFO)
        return

    numeric_level = getattr(logging, app_config.logging_level.upper(), None)
    if not isinstance(numeric_level, int):
        LOGGER.warning("Invalid log level: %s, using INFO", app_config.logging_level)
        numeric_level = logging.INFO
    logging.basicConfig(level=numeric_level)


@dataclass
class AppConfig:
    """Holds application configuration loaded from environment variables."""

    database_path: str
    logging_level: str | None
    root_path: str

    jwt_signing_key: str = field(repr=False)
    jwt_algorithm: str
    access_token_expire_minutes: int
    user_session_timeout_minutes: int

    password_pepper: str = field(repr=False)
    bcrypt_cost: int

    totp_application_name: str
    totp_secret_length_bytes: int
    totp_secret_encryption_key: str = field(repr=False)

    permission_cache_ttl_seconds: int
    max_failed_login_attempts: int
    lockout_minutes: int

    def __post_init__(self) -> None:
        """Initialize derived configuration attributes.

        :raises ValueError: If the pepper is empty, the bcrypt cost is out of
            range or the TOTP encryption key is not a valid Fernet key
        """
        self.password_hasher = PasswordHasher(self.password_pepper, self.bcrypt_cost)
        self.totp_cipher = TotpSecretCipher(self.totp_secret_encryption_key)


def get_env_str(
    var_name: str,
    default: str | None,
    value_checker: Callable[[str], bool] | None = None,
) -> str:
    """Get an environment variable as a string with optional constraints.

    :param var_name: Name of the environment variable
    :param default: Default value if the variable is not set
    :param value_checker: Optional function to validate the value
    :return: The environment variable value
    :raises ValueError: If the value does not meet the constraints
    """
    value = os.getenv(var_name, default)
    if value is None:
        msg = f"Environment variable {var_name} is required"
        raise ValueError(msg)

    if value_checker and not value_checker(value):
        # may be a secret, never echo the value
        msg = f"Environment variable {var_name} has an invalid value"
        raise ValueError(msg)

    return value


def get_env_int(
    var_name: str,
    default: int,
    value_checker: Callable[[int], bool] | None = None,
) -> int:
    """Get an environment variable as an integer with optional constraints.

    :param var_name: Name of the environment variable
    :param default: Default value if the variable is not set
    :param value_checker: Optional function to validate the value
    :return: The environment variable value as an integer
    :raises ValueError: If the value does not meet the constraints or is not an integer
    """
    value_str = os.getenv(var_name)
    if value_str is None or value_str == "":
        return default

    if not value_str.isnumeric():
        msg = f"Environment variable {var_name} must be an integer, got: {value_str}"
        raise ValueError(msg)

    value = int(value_str)

    if value_checker and not value_checker(value):
        msg = f"Environment variable {var_name} has invalid value: {value}"
        raise ValueError(msg)

    return value


def load_config_from_env(env_file: str | Path | None) -> AppConfig:
    """Load application configuration from environment variables.

    :param env_file: Optional .env file loaded before reading the environment
    :return: An AppConfig instance populated with environment variable values
    """
    if env_file:
        load_dotenv(dotenv_path=env_file)

    return AppConfig(
        database_path=get_env_str("DATABASE_PATH", "./facility_auth_sqlite.db"),
        logging_level=get_env_str("LOGGING_LEVEL", "INFO"),
        root_path=get_env_str("ROOT_PATH", ""),
        jwt_signing_key=get_env_str("JWT_SIGNING_KEY", os.urandom(32).hex()),
        jwt_algorithm=get_env_str(
            "JWT_ALGORITHM",
            "HS512",
            lambda algorithm: algorithm in get_default_algorithms(),
        ),
        access_token_expire_minutes=get_env_int(
            "ACCESS_TOKEN_EXPIRE_MINUTES",
            _DEFAULT_ACCESS_TOKEN_MINUTES,
            lambda minutes: minutes > 0,
        ),
        user_session_timeout_minutes=get_env_int(
            "USER_SESSION_TIMEOUT_MINUTES",
            _DEFAULT_SESSION_TIMEOUT_MINUTES,
            lambda minutes: minutes > 0,
        ),
        password_pepper=get_env_str(
            "PASSWORD_PEPPER",
            None,
            lambda pepper: len(pepper) > 0,
        ),
        bcrypt_cost=get_env_int("BCRYPT_COST", DEFAULT_BCRYPT_COST, valid_bcrypt_cost),
        totp_application_name=get_env_str("TOTP_APPLICATION_NAME", "Facility Auth"),
        totp_secret_length_bytes=get_env_int(
            "TOTP_SECRET_LENGTH_BYTES",
            DEFAULT_SECRET_LENGTH_BYTES,
            lambda length: length >= _MIN_TOTP_SECRET_LENGTH_BYTES,
        ),
        totp_secret_encryption_key=get_env_str("TOTP_SECRET_ENCRYPTION_KEY", None),
        permission_cache_ttl_seconds=get_env_int(
            "PERMISSION_CACHE_TTL_SECONDS",
            _DEFAULT_PERMISSION_CACHE_TTL_SECONDS,
            lambda seconds: seconds > 0,
        ),
        max_failed_login_attempts=get_env_int(
            "MAX_FAILED_LOGIN_ATTEMPTS",
            _DEFAULT_MAX_FAILED_LOGIN_ATTEMPTS,
            lambda attempts: attempts > 0,
        ),
        lockout_minutes=get_env_int(
            "LOCKOUT_MINUTES",
            _DEFAULT_LOCKOUT_MINUTES,
            lambda minutes: minutes > 0,
        ),
    )
