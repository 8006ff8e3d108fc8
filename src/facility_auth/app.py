"""FastAPI application factory for the facility auth API."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from aiosqlite import connect as aiosqlite_connect
from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from facility_auth.auth import (
    AuthQueries,
    CredentialVerifier,
    TokenIssuer,
    TokenVariant,
    TotpVerifier,
    Validate,
    configure_auth_router,
)
from facility_auth.auth.totp import REPLAY_TTL_SECONDS
from facility_auth.config import configure_logging, load_config_from_env
from facility_auth.permissions import (
    AssignmentQueries,
    PermissionCache,
    PermissionQueries,
    TtlCache,
    configure_permission_router,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from facility_auth.config import AppConfig

LOGGER = logging.getLogger(__name__)


def configure_fastapi_app(config: AppConfig) -> FastAPI:
    """Configure and return the FastAPI application.

    Services are created once per process in the lifespan and exposed on
    ``app.state`` for code that manages users and assignments.

    :param config: Application configuration
    :return: Configured FastAPI application
    """
    if not Path(config.database_path).parent.exists():
        Path(config.database_path).parent.mkdir(parents=True, exist_ok=True)
        LOGGER.info(
            "Created directory for database at %s",
            Path(config.database_path).parent,
        )

    if not Path(config.database_path).exists():
        LOGGER.info("Database file does not exist at %s", config.database_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[Any, Any]:
        """Application lifespan manager.

        Opens the database and builds the shared caches and services.
        """
        LOGGER.info("Facility Auth API is starting")

        async with aiosqlite_connect(config.database_path) as db_connection:
            await db_connection.execute("PRAGMA foreign_keys = ON")

            auth_queries = AuthQueries(db_connection)
            await auth_queries.initialize_tables()
            permission_queries = PermissionQueries(db_connection)
            await permission_queries.initialize_tables()

            permission_cache = PermissionCache(
                permission_queries,
                TtlCache(config.permission_cache_ttl_seconds),
            )
            totp_verifier = TotpVerifier(
                config.totp_cipher,
                TtlCache(REPLAY_TTL_SECONDS),
                config.totp_application_name,
                config.totp_secret_length_bytes,
            )
            session_issuer = TokenIssuer(
                auth_queries,
                config.jwt_signing_key,
                config.jwt_algorithm,
                config.access_token_expire_minutes,
                config.user_session_timeout_minutes,
                TokenVariant.SESSION,
            )
            tablet_issuer = TokenIssuer(
                auth_queries,
                config.jwt_signing_key,
                config.jwt_algorithm,
                variant=TokenVariant.TABLET,
            )
            credential_verifier = CredentialVerifier(
                auth_queries,
                config.password_hasher,
                totp_verifier,
                config.max_failed_login_attempts,
                config.lockout_minutes,
            )
            validate = Validate(session_issuer)

            app.state.auth_queries = auth_queries
            app.state.assignment_queries = AssignmentQueries(
                db_connection,
                permission_cache,
            )
            app.state.permission_cache = permission_cache
            app.state.password_hasher = config.password_hasher
            app.state.totp_verifier = totp_verifier

            auth_router = configure_auth_router(
                APIRouter(),
                validate,
                auth_queries,
                credential_verifier,
                session_issuer,
                tablet_issuer,
                totp_verifier,
            )
            permission_router = configure_permission_router(
                APIRouter(),
                validate,
                permission_cache,
            )

            app.include_router(auth_router, prefix="/auth", tags=["auth"])
            app.include_router(
                permission_router,
                prefix="/permissions",
                tags=["permissions"],
            )

            removed = await auth_queries.delete_expired_refresh_tokens()
            LOGGER.debug("Removed %d expired refresh tokens", removed)

            yield

            LOGGER.info("Facility Auth API is shutting down")

    app = FastAPI(
        title="Facility Auth API",
        version="0.1.0",
        lifespan=lifespan,
        root_path=config.root_path,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def read_root() -> str:
        return "Facility Auth API"

    return app


def create_app(env_file: str | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Uvicorn calls this as a factory, in which case the ENV_FILE environment
    variable selects the configuration file.

    :param env_file: Optional path to the environment configuration file
    :return: Configured FastAPI application
    """
    if env_file is None:
        env_file = os.environ.get("ENV_FILE", ".env")
    config = load_config_from_env(env_file)
    configure_logging(config)
    return configure_fastapi_app(config)
