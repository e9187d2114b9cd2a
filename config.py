import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env(*names: str, default: str = "") -> str:
    for name in names:
        value = os.getenv(name)
        if value:
            return value.strip()
    return default


def _env_flag(name: str) -> bool:
    return _env(name).lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> List[str]:
    return [s.strip() for s in _env(name).split(",") if s.strip()]


@dataclass(frozen=True)
class Settings:
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "ms_store"
    identity_url: str = ""
    identity_key: str = ""
    # Admin hardening; every empty value skips its check
    allowed_admin_email: str = ""
    admin_device_fp: str = ""
    admin_ip_allowlist: List[str] = field(default_factory=list)
    admin_default_deny: bool = False
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    seed_demo_products: bool = False
    log_level: str = "INFO"

    @property
    def admin_policy_configured(self) -> bool:
        return bool(self.allowed_admin_email or self.admin_device_fp or self.admin_ip_allowlist)


def load_settings() -> Settings:
    return Settings(
        mongodb_uri=_env("MONGODB_URI", default="mongodb://localhost:27017"),
        mongodb_db=_env("MONGODB_DB", default="ms_store"),
        identity_url=_env("IDENTITY_URL", "SUPABASE_URL").rstrip("/"),
        identity_key=_env("IDENTITY_KEY", "SUPABASE_ANON_KEY"),
        allowed_admin_email=_env("ALLOWED_ADMIN_EMAIL"),
        admin_device_fp=_env("ADMIN_DEVICE_FP"),
        admin_ip_allowlist=_env_list("ADMIN_IP_ALLOWLIST"),
        admin_default_deny=_env_flag("ADMIN_DEFAULT_DENY"),
        cors_allow_origins=_env_list("CORS_ALLOW_ORIGINS") or ["*"],
        seed_demo_products=_env_flag("SEED_DEMO_PRODUCTS"),
        log_level=_env("LOG_LEVEL", default="INFO").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
