import pytest
from cryptography.fernet import Fernet

from facility_auth.config import get_env_int, get_env_str, load_config_from_env


@pytest.fixture
def required_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PASSWORD_PEPPER", "pepper")
    monkeypatch.setenv("TOTP_SECRET_ENCRYPTION_KEY", Fernet.generate_key().decode())


def test_defaults(required_env: None, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test the configuration defaults."""
    for name in (
        "DATABASE_PATH",
        "JWT_SIGNING_KEY",
        "JWT_ALGORITHM",
        "ACCESS_TOKEN_EXPIRE_MINUTES",
        "USER_SESSION_TIMEOUT_MINUTES",
        "BCRYPT_COST",
        "PERMISSION_CACHE_TTL_SECONDS",
        "MAX_FAILED_LOGIN_ATTEMPTS",
        "LOCKOUT_MINUTES",
    ):
        monkeypatch.delenv(name, raising=False)

    config = load_config_from_env(None)

    assert config.jwt_algorithm == "HS512"
    assert config.access_token_expire_minutes == 15
    assert config.user_session_timeout_minutes == 20160
    assert config.bcrypt_cost == 10
    assert config.permission_cache_ttl_seconds == 300
    assert config.max_failed_login_attempts == 5
    assert config.lockout_minutes == 5
    assert len(config.jwt_signing_key) == 64
    assert config.password_hasher.cost == 10


def test_secrets_not_in_repr(required_env: None) -> None:
    """Test that secrets are kept out of the config's repr."""
    config = load_config_from_env(None)

    assert "pepper" not in repr(config)
    assert config.jwt_signing_key not in repr(config)


def test_missing_pepper(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that the password pepper is required."""
    monkeypatch.delenv("PASSWORD_PEPPER", raising=False)
    monkeypatch.setenv("TOTP_SECRET_ENCRYPTION_KEY", Fernet.generate_key().decode())

    with pytest.raises(ValueError, match="PASSWORD_PEPPER"):
        load_config_from_env(None)


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("BCRYPT_COST", "9"),
        ("BCRYPT_COST", "17"),
        ("JWT_ALGORITHM", "none-such"),
        ("TOTP_SECRET_LENGTH_BYTES", "8"),
        ("LOCKOUT_MINUTES", "0"),
    ],
)
def test_invalid_values(
    required_env: None,
    monkeypatch: pytest.MonkeyPatch,
    name: str,
    value: str,
) -> None:
    """Test that out of range settings fail at startup."""
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=name):
        load_config_from_env(None)


def test_invalid_encryption_key(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that a malformed Fernet key is rejected."""
    monkeypatch.setenv("PASSWORD_PEPPER", "pepper")
    monkeypatch.setenv("TOTP_SECRET_ENCRYPTION_KEY", "not-a-key")

    with pytest.raises(ValueError):
        load_config_from_env(None)


def test_env_file(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test loading settings from a .env file."""
    # set then unset so teardown also drops what the .env file loads
    for name in ("PASSWORD_PEPPER", "TOTP_SECRET_ENCRYPTION_KEY", "LOCKOUT_MINUTES"):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    env_file = tmp_path / ".env"
    env_file.write_text(
        "PASSWORD_PEPPER=file-pepper\n"
        f"TOTP_SECRET_ENCRYPTION_KEY={Fernet.generate_key().decode()}\n"
        "LOCKOUT_MINUTES=15\n",
    )

    config = load_config_from_env(env_file)

    assert config.password_pepper == "file-pepper"
    assert config.lockout_minutes == 15


def test_get_env_helpers(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test the typed environment helpers."""
    monkeypatch.setenv("SOME_INT", "12")
    monkeypatch.setenv("NOT_INT", "twelve")

    assert get_env_int("SOME_INT", 1, lambda value: value > 10) == 12
    assert get_env_int("MISSING_INT", 7) == 7
    assert get_env_str("MISSING_STR", "fallback") == "fallback"
    with pytest.raises(ValueError, match="must be an integer"):
        get_env_int("NOT_INT", 1)
    with pytest.raises(ValueError, match="SOME_INT"):
        get_env_int("SOME_INT", 1, lambda value: value > 20)
