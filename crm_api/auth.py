"""
Authentication: login/logout, token refresh and JWT claim inspection.

Access-token claims carry the user (`sub`), tenant (`tenantId`), role,
session id, `exp` and `iat`. Claims are read without verifying the
signature; the API verifies tokens, this module only inspects them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import jwt

from crm_api.adapters.response import unwrap
from crm_api.endpoints import USER
from crm_api.errors import ApiError
from crm_api.http_client import ApiClient
from crm_api.token_storage import TokenStore

logger = logging.getLogger(__name__)

# Seconds subtracted from `exp` to absorb clock skew.
EXPIRY_LEEWAY_SECONDS = 30


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass
class LoginResult:
    user_id: Optional[str]
    email: str
    tenant_id: Optional[str]
    role: Optional[str]
    tokens: TokenPair

    def as_dict(self) -> dict:
        return {
            "user": {
                "id": self.user_id,
                "email": self.email,
                "tenantId": self.tenant_id,
                "role": self.role,
            },
            "tokens": {
                "accessToken": self.tokens.access_token,
                "refreshToken": self.tokens.refresh_token,
            },
        }


def parse_token(token: Optional[str]) -> Optional[dict]:
    if not token:
        return None
    try:
        return jwt.decode(
            token, options={"verify_signature": False, "verify_exp": False}
        )
    except jwt.PyJWTError as exc:
        logger.warning("Failed to decode JWT: %s", exc)
        return None


def is_token_expired(
    token: Optional[str], leeway: int = EXPIRY_LEEWAY_SECONDS
) -> bool:
    """True when the token is invalid, has no `exp`, or expires within `leeway`."""
    claims = parse_token(token)
    if not claims or not claims.get("exp"):
        return True
    return time.time() + leeway >= float(claims["exp"])


class AuthService:
    def __init__(self, client: ApiClient, token_store: TokenStore):
        self.client = client
        self.token_store = token_store

    # Claims

    def current_claims(self) -> Optional[dict]:
        return parse_token(self.token_store.get_access_token())

    def current_user_id(self) -> Optional[str]:
        claims = self.current_claims() or {}
        return claims.get("sub") or claims.get("userId") or claims.get("nameid")

    def current_tenant_id(self) -> Optional[str]:
        return (self.current_claims() or {}).get("tenantId")

    def current_role(self) -> Optional[str]:
        return (self.current_claims() or {}).get("role")

    def is_authenticated(self) -> bool:
        token = self.token_store.get_access_token()
        if not token:
            return False
        return not is_token_expired(token)

    # Session

    def login(self, email: str, password: str, remember_me: bool = False) -> LoginResult:
        result = unwrap(
            self.client.post(USER["LOGIN"], {"email": email, "password": password})
        )
        if (
            not isinstance(result, dict)
            or not result.get("accessToken")
            or not result.get("refreshToken")
        ):
            raise ApiError("Invalid login response - missing tokens", 500)

        self.token_store.set_tokens(
            result["accessToken"], result["refreshToken"], remember_me
        )
        logger.info("Logged in as %s", email)
        return LoginResult(
            user_id=self.current_user_id(),
            email=email,
            tenant_id=self.current_tenant_id(),
            role=self.current_role(),
            tokens=TokenPair(result["accessToken"], result["refreshToken"]),
        )

    def logout(self) -> None:
        """Tell the API the session ended; local tokens are cleared regardless."""
        try:
            if self.token_store.has_tokens():
                self.client.get(USER["LOGOUT"])
        except ApiError as exc:
            logger.warning("Logout API call failed: %s", exc)
        finally:
            self.token_store.clear_tokens()

    def refresh(self) -> TokenPair:
        """Exchange the stored refresh token for a new pair explicitly."""
        refresh_token = self.token_store.get_refresh_token()
        if not refresh_token:
            raise ApiError("No refresh token available", 401)
        result = unwrap(
            self.client.post(USER["REFRESH_TOKEN"], {"refreshToken": refresh_token})
        )
        if not isinstance(result, dict) or not result.get("accessToken"):
            raise ApiError("Invalid refresh response - missing tokens", 500)
        pair = TokenPair(
            result["accessToken"], result.get("refreshToken") or refresh_token
        )
        self.token_store.set_tokens(
            pair.access_token,
            pair.refresh_token,
            remember=self.token_store.is_remembered(),
        )
        return pair

    # Account

    def get_user_detail(self) -> Any:
        return unwrap(self.client.get(USER["USER_DETAIL"]))

    def register(self, user_data: dict) -> Any:
        return unwrap(self.client.post(USER["REGISTER"], user_data))

    def validate_register(self, user_data: dict) -> Any:
        return unwrap(self.client.post(USER["VALIDATE_REGISTER"], user_data))

    def forgot_password(self, email: str) -> Any:
        return unwrap(self.client.post(USER["FORGET_PASSWORD"], {"email": email}))

    def change_password(self, current_password: str, new_password: str) -> Any:
        return unwrap(
            self.client.post(
                USER["CHANGE_PASSWORD"],
                {"currentPassword": current_password, "newPassword": new_password},
            )
        )

    def send_otp(self, email: str) -> Any:
        return unwrap(self.client.post(USER["SEND_OTP"], {"email": email}))

    def validate_otp(self, email: str, otp: str) -> Any:
        return unwrap(self.client.post(USER["VALIDATE_OTP"], {"email": email, "otp": otp}))

    def get_user_permissions(self) -> Any:
        return unwrap(self.client.get(USER["GET_PERMISSIONS"]))

    def update_user_profile(self, profile_data: dict) -> Any:
        return unwrap(self.client.put(USER["UPDATE_PROFILE"], profile_data))

    def validate_invite(self, token: str) -> Any:
        return unwrap(self.client.post(USER["VALIDATE_INVITE"], {"token": token}))
