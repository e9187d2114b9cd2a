import logging
from functools import lru_cache
from typing import Any, Dict, Mapping, NamedTuple, Optional

import requests
from fastapi import Depends, Header, HTTPException, Request

from config import Settings, get_settings

logger = logging.getLogger(__name__)

IDENTITY_TIMEOUT_SECONDS = 10


class AuthContext(NamedTuple):
    token: str
    user: Dict[str, Any]


class IdentityClient:
    """Looks up the user behind an access token on the identity service (GoTrue API)."""

    def __init__(self, base_url: str, api_key: str, timeout: float = IDENTITY_TIMEOUT_SECONDS):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def get_user(self, token: str) -> Optional[Dict[str, Any]]:
        if not self.base_url:
            logger.warning("Identity service URL is not configured")
            return None
        try:
            resp = requests.get(
                f"{self.base_url}/auth/v1/user",
                headers={"apikey": self.api_key, "Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("Identity lookup failed: %s", e)
            return None
        if resp.status_code != 200:
            logger.info("Identity service rejected token", extra={"extra": {"status": resp.status_code}})
            return None
        try:
            data = resp.json()
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        user = data.get("user", data)
        if not isinstance(user, dict) or not user.get("id"):
            return None
        return user


@lru_cache(maxsize=1)
def get_identity_client() -> IdentityClient:
    settings = get_settings()
    return IdentityClient(settings.identity_url, settings.identity_key)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[7:] or None


def get_user_from_auth_header(authorization: Optional[str], client: IdentityClient) -> Optional[AuthContext]:
    token = bearer_token(authorization)
    if not token:
        return None
    user = client.get_user(token)
    if not user:
        return None
    return AuthContext(token=token, user=user)


# Admin guard
def client_ip(headers: Mapping[str, str]) -> str:
    forwarded = headers.get("x-forwarded-for") or ""
    return forwarded.split(",")[0].strip()


def is_admin_allowed(user: Optional[Mapping[str, Any]], headers: Mapping[str, str], settings: Settings) -> bool:
    if not user or not user.get("email"):
        return False
    if not settings.admin_policy_configured and settings.admin_default_deny:
        return False
    if settings.allowed_admin_email and str(user["email"]).lower() != settings.allowed_admin_email.lower():
        return False
    if settings.admin_device_fp and (headers.get("x-device-fp") or "") != settings.admin_device_fp:
        return False
    if settings.admin_ip_allowlist and client_ip(headers) not in settings.admin_ip_allowlist:
        return False
    return True


# Dependencies
def get_auth(
    authorization: Optional[str] = Header(None),
    client: IdentityClient = Depends(get_identity_client),
) -> Optional[AuthContext]:
    return get_user_from_auth_header(authorization, client)


def require_user(auth: Optional[AuthContext] = Depends(get_auth)) -> AuthContext:
    if auth is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return auth


def require_login(auth: Optional[AuthContext] = Depends(get_auth)) -> AuthContext:
    if auth is None:
        raise HTTPException(status_code=401, detail="Login required")
    return auth


def require_admin(
    request: Request,
    auth: Optional[AuthContext] = Depends(get_auth),
    settings: Settings = Depends(get_settings),
) -> AuthContext:
    if auth is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not is_admin_allowed(auth.user, request.headers, settings):
        logger.warning(
            "Admin access denied",
            extra={"user_id": auth.user.get("id"), "extra": {"path": request.url.path, "ip": client_ip(request.headers)}},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")
    return auth
