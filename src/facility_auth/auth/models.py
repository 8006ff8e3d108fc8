from __future__ import annotations

from pydantic import BaseModel

from facility_auth.common import Principal


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    # hex encoded; empty for tablet tokens
    refresh_token: str = ""
    user_id: str


class AccountInfo(BaseModel):
    user_id: str
    email: str
    display_name: str | None
    system_role: int

    @classmethod
    def from_principal(cls, principal: Principal) -> AccountInfo:
        return cls(
            user_id=str(principal.user_id),
            email=principal.email,
            display_name=principal.display_name,
            system_role=int(principal.system_role),
        )


class TwoFactorSetupResponse(BaseModel):
    provisioning_uri: str
    secret: str
    hash_function: str
    period: int
    digits: int


class MessageResponse(BaseModel):
    message: str
