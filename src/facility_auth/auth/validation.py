"""FastAPI dependency validators for authentication and authorization."""

import logging
from collections.abc import Callable

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from facility_auth.common import Principal, SystemRole

from .token_issuer import TokenIssuer

bearer_scheme = HTTPBearer(auto_error=True)

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)


class Validate:
    """Holds validator dependencies for FastAPI authentication/authorization."""

    def __init__(self, token_issuer: TokenIssuer) -> None:
        """Create a new validator instance.

        :param token_issuer: Issuer whose signing key verifies access tokens
        """
        self.token_issuer = token_issuer

    def jwt_token(
        self,
        credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),  # noqa: B008
    ) -> Principal:
        """Validate a bearer access token and return its principal."""
        principal = self.token_issuer.verify_access_token(credentials.credentials)

        if principal is None:
            LOGGER.debug("JWT token validation failed")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Could not validate credentials",
                headers={"WWW-Authenticate": "Bearer"},
            )

        return principal

    def system_role(self, required_role: SystemRole) -> Callable[..., Principal]:
        """Return a dependency requiring a system role claimed by the token."""

        def validator(principal: Principal = Depends(self.jwt_token)) -> Principal:  # noqa: B008
            if principal.system_role < required_role:
                LOGGER.debug("System role check failed for user %s", principal.user_id)
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="Forbidden",
                )
            return principal

        return validator
