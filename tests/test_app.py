"""End-to-end tests of the HTTP API against a temporary database."""

import base64
import time
from collections.abc import Iterator
from uuid import uuid4

import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

from facility_auth import AppConfig, configure_fastapi_app, load_config_from_env
from facility_auth.auth.totp import TOTP_PERIOD_SECONDS, totp_code
from facility_auth.common import OrganizationRole, SystemRole, UserData

PASSWORD = "Str0ng!Password-With_Length>=20"


@pytest.fixture
def config(tmp_path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "app.db"))
    monkeypatch.setenv("PASSWORD_PEPPER", "app-test-pepper")
    monkeypatch.setenv("TOTP_SECRET_ENCRYPTION_KEY", Fernet.generate_key().decode())
    monkeypatch.setenv("JWT_SIGNING_KEY", "s" * 64)
    monkeypatch.setenv("TOTP_APPLICATION_NAME", "Facility Test")
    return load_config_from_env(None)


@pytest.fixture
def client(config: AppConfig) -> Iterator[TestClient]:
    with TestClient(configure_fastapi_app(config)) as test_client:
        yield test_client


def _seed_user(
    client: TestClient,
    email: str = "jane@example.com",
    system_role: SystemRole = SystemRole.USER,
) -> UserData:
    state = client.app.state
    user = UserData(
        user_id=uuid4(),
        email=email,
        system_role=system_role,
        display_name="Jane",
    )
    error = client.portal.call(
        state.auth_queries.create_user,
        user,
        state.password_hasher.hash(PASSWORD),
    )
    assert error is None
    return user


def _seed_building(client: TestClient, timezone: str = "Australia/Sydney"):
    assignments = client.app.state.assignment_queries
    organization_id, building_id = uuid4(), uuid4()
    assert client.portal.call(assignments.create_organization, organization_id, "Org")
    assert client.portal.call(
        assignments.create_building,
        building_id,
        organization_id,
        "HQ",
        timezone,
    )
    return organization_id, building_id


def _login(client: TestClient, email: str = "jane@example.com", **fields) -> dict:
    response = client.post(
        "/auth/login",
        data={"email": email, "password": PASSWORD, **fields},
    )
    assert response.status_code == 200, response.text
    return response.json()


def _bearer(tokens: dict) -> dict:
    return {"Authorization": f"Bearer {tokens['access_token']}"}


def test_read_root(client: TestClient) -> None:
    """Test the root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == "Facility Auth API"


def test_login_and_account(client: TestClient) -> None:
    """Test logging in and reading the account behind the token."""
    user = _seed_user(client)

    tokens = _login(client, email="  Jane@Example.com ")
    response = client.get("/auth/account", headers=_bearer(tokens))

    assert response.status_code == 200
    assert response.json() == {
        "user_id": str(user.user_id),
        "email": "jane@example.com",
        "display_name": "Jane",
        "system_role": 1,
    }


def test_login_wrong_password(client: TestClient) -> None:
    """Test that a bad password gives the generic credential error."""
    _seed_user(client)

    response = client.post(
        "/auth/login",
        data={"email": "jane@example.com", "password": "wrong"},
    )
    unknown = client.post(
        "/auth/login",
        data={"email": "nobody@example.com", "password": "wrong"},
    )

    assert response.status_code == 400
    assert unknown.status_code == 400
    assert response.json() == unknown.json()
    messages = response.json()["detail"]["error_messages"]["generalErrors"]
    assert messages[0]["error_code"] == "error.login.invalidEmailOrPassword"


def test_login_input_validation(client: TestClient) -> None:
    """Test field errors for a malformed email and a short code."""
    response = client.post(
        "/auth/login",
        data={"email": "not-an-email", "password": "pw", "totp_code": "123"},
    )

    assert response.status_code == 400
    errors = response.json()["detail"]["error_messages"]
    assert errors["email"][0]["error_code"] == "error.login.emailIsInvalidFormat"
    assert errors["totpCode"][0]["error_code"].startswith("error.login.totpLength")


def test_refresh_and_replay(client: TestClient) -> None:
    """Test that a refresh token works once."""
    user = _seed_user(client)
    tokens = _login(client)
    form = {"user_id": str(user.user_id), "refresh_token": tokens["refresh_token"]}

    refreshed = client.post("/auth/refresh", data=form)
    replayed = client.post("/auth/refresh", data=form)

    assert refreshed.status_code == 200
    assert refreshed.json()["refresh_token"] != tokens["refresh_token"]
    assert replayed.status_code == 400
    assert (
        replayed.json()["detail"]["error_messages"]["generalErrors"][0]["error_code"]
        == "error.auth.refreshTokenIsInvalid"
    )


def test_refresh_malformed_token(client: TestClient) -> None:
    """Test that a refresh token that is not hex is rejected cleanly."""
    response = client.post(
        "/auth/refresh",
        data={"user_id": "not-a-uuid", "refresh_token": "zz"},
    )
    assert response.status_code == 400


def test_logout_revokes_refresh_tokens(client: TestClient) -> None:
    """Test that logging out ends the session's refresh token."""
    user = _seed_user(client)
    tokens = _login(client)

    logout = client.post("/auth/logout", headers=_bearer(tokens))
    refresh = client.post(
        "/auth/refresh",
        data={"user_id": str(user.user_id), "refresh_token": tokens["refresh_token"]},
    )

    assert logout.status_code == 200
    assert refresh.status_code == 400


def test_tablet_login(client: TestClient) -> None:
    """Test that tablet logins return a long-lived token without refresh."""
    _seed_user(client)

    response = client.post(
        "/auth/login/tablet",
        data={"email": "jane@example.com", "password": PASSWORD},
    )

    assert response.status_code == 200
    assert response.json()["refresh_token"] == ""
    assert response.json()["expires_in"] > 60 * 60 * 24 * 365 * 9


def test_invalid_bearer_token(client: TestClient) -> None:
    """Test that requests without a valid token are refused."""
    missing = client.get("/auth/account")
    invalid = client.get("/auth/account", headers={"Authorization": "Bearer nope"})

    assert missing.status_code in (401, 403)
    assert invalid.status_code == 401


def test_two_factor_setup(client: TestClient) -> None:
    """Test enabling two-factor login and then logging in with a code."""
    _seed_user(client)
    tokens = _login(client)

    setup = client.post("/auth/totp/init", headers=_bearer(tokens))
    assert setup.status_code == 200
    body = setup.json()
    assert body["provisioning_uri"].startswith("otpauth://totp/Facility%20Test")
    assert body["hash_function"] == "SHA512"

    secret = body["secret"]
    raw = base64.b32decode(secret + "=" * (-len(secret) % 8))
    step = int(time.time() // TOTP_PERIOD_SECONDS)

    enabled = client.post(
        "/auth/totp/enable",
        data={"totp_code": totp_code(raw, step)},
        headers=_bearer(tokens),
    )
    assert enabled.status_code == 200

    without_code = client.post(
        "/auth/login",
        data={"email": "jane@example.com", "password": PASSWORD},
    )
    assert without_code.status_code == 400
    assert "totpCode" in without_code.json()["detail"]["error_messages"]

    _login(client, totp_code=totp_code(raw, step + 1))


def test_organization_permission_route(client: TestClient) -> None:
    """Test reading a permission snapshot through the API."""
    user = _seed_user(client)
    organization_id, building_id = _seed_building(client)
    assignments = client.app.state.assignment_queries
    client.portal.call(
        assignments.set_organization_role,
        user.user_id,
        organization_id,
        OrganizationRole.ADMIN,
    )
    tokens = _login(client)

    allowed = client.get(
        f"/permissions/organizations/{organization_id}",
        params={"minimum_role": int(OrganizationRole.ADMIN)},
        headers=_bearer(tokens),
    )
    denied = client.get(
        f"/permissions/organizations/{organization_id}",
        params={"minimum_role": int(OrganizationRole.SUPER_ADMIN)},
        headers=_bearer(tokens),
    )
    other = client.get(
        f"/permissions/organizations/{uuid4()}",
        headers=_bearer(tokens),
    )

    assert allowed.status_code == 200
    assert allowed.json()["organization_role"] == int(OrganizationRole.ADMIN)
    assert allowed.json()["buildings"] == []
    assert denied.status_code == 403
    assert denied.json()["detail"]["fatal_error"] is True
    assert other.status_code == 403


def test_building_permission_routes(client: TestClient) -> None:
    """Test assigned and super admin building access through the API."""
    user = _seed_user(client)
    organization_id, building_id = _seed_building(client, "Pacific/Auckland")
    assignments = client.app.state.assignment_queries
    client.portal.call(
        assignments.set_organization_role,
        user.user_id,
        organization_id,
        OrganizationRole.SUPER_ADMIN,
    )
    tokens = _login(client)
    path = f"/permissions/organizations/{organization_id}/buildings/{building_id}"

    unassigned = client.get(path, headers=_bearer(tokens))
    assert unassigned.status_code == 200
    assert unassigned.json()["assigned"] is False
    assert unassigned.json()["building_timezone"] == "Pacific/Auckland"

    assignment = client.get(f"{path}/assignment", headers=_bearer(tokens))
    assert assignment.status_code == 403

    function_id = uuid4()
    client.portal.call(
        assignments.assign_building,
        user.user_id,
        organization_id,
        building_id,
        function_id,
    )

    assigned = client.get(f"{path}/assignment", headers=_bearer(tokens))
    assert assigned.status_code == 200
    assert assigned.json()["assigned"] is True
    assert assigned.json()["function_id"] == str(function_id)


@pytest.mark.parametrize("role", [OrganizationRole.TABLET, OrganizationRole.NO_ACCESS])
def test_building_permission_route_below_user(
    client: TestClient,
    role: OrganizationRole,
) -> None:
    """Test that tablet and no-access members are refused building access."""
    user = _seed_user(client)
    organization_id, building_id = _seed_building(client)
    assignments = client.app.state.assignment_queries
    client.portal.call(
        assignments.set_organization_role,
        user.user_id,
        organization_id,
        role,
    )
    tokens = _login(client)

    response = client.get(
        f"/permissions/organizations/{organization_id}/buildings/{building_id}",
        headers=_bearer(tokens),
    )
    member = client.get(
        f"/permissions/organizations/{organization_id}",
        headers=_bearer(tokens),
    )

    assert response.status_code == 403
    assert response.json()["detail"]["fatal_error"] is True
    assert member.status_code == 200
    assert member.json()["organization_role"] == int(role)


def test_master_organization_route(client: TestClient) -> None:
    """Test that Master users may read any organization, even unknown ones."""
    _seed_user(client, "master@example.com", SystemRole.MASTER)
    _seed_user(client, "jane@example.com")
    master_tokens = _login(client, email="master@example.com")
    user_tokens = _login(client)
    organization_id = uuid4()

    master = client.get(
        f"/permissions/master/organizations/{organization_id}",
        headers=_bearer(master_tokens),
    )
    user = client.get(
        f"/permissions/master/organizations/{organization_id}",
        headers=_bearer(user_tokens),
    )

    assert master.status_code == 200
    assert master.json()["system_role"] == int(SystemRole.MASTER)
    assert master.json()["organization_role"] == int(OrganizationRole.NO_ACCESS)
    assert user.status_code == 403
