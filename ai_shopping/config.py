"""
Configuration management for the AI shopping gateway.

Defaults live on the Settings dataclass; an optional YAML file
(AIS_CONFIG_FILE) overrides them, and environment variables override both.
"""
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()


_TRUE_VALUES = ("1", "true", "yes", "on")


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


@dataclass
class Settings:
    """Runtime settings for the gateway."""

    # Storage
    database_url: str = "sqlite:///./ai_shopping.db"

    # Transport / gate
    allow_http: bool = True                 # accept plain-HTTP requests
    trust_forwarded_proto: bool = False     # honour X-Forwarded-Proto from a proxy
    trusted_proxies: List[str] = field(default_factory=list)   # empty = any peer, when trusted
    rate_limit_read: int = 60               # requests per minute, 0 = unlimited
    rate_limit_write: int = 30

    # Sessions
    cart_ttl_seconds: int = 86400

    # Protocols
    enable_acp: bool = True
    enable_ucp: bool = True
    enable_mcp: bool = True
    api_prefix: str = "/ai-shopping/v1"

    # Store identity
    store_name: str = "AI Shopping Store"
    store_description: str = ""
    store_url: str = "http://localhost:8000"
    store_logo: str = ""
    currency: str = "USD"
    supported_locales: List[str] = field(default_factory=lambda: ["en_US"])
    version: str = "1.0.0"

    # Commerce engine
    engine_url: str = ""                    # empty = bundled SQL engine
    engine_api_key: str = ""
    engine_timeout_seconds: float = 10.0    # 0 = unbounded

    # Housekeeping
    maintenance_interval_seconds: int = 3600
    bucket_idle_seconds: int = 86400

    log_level: str = "INFO"

    @classmethod
    def from_yaml(cls, config_path: Optional[Path] = None) -> "Settings":
        """Load settings from a YAML file; missing file means defaults."""
        if config_path is None:
            return cls()
        path = Path(config_path)
        if not path.exists():
            return cls()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        # Accept either a flat mapping or one nested under "ai_shopping"
        data = data.get("ai_shopping", data)
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_env(cls) -> "Settings":
        """YAML file (if AIS_CONFIG_FILE is set) overlaid with environment variables."""
        config_file = os.getenv("AIS_CONFIG_FILE")
        settings = cls.from_yaml(Path(config_file) if config_file else None)
        settings.apply_overrides(_env_overrides())
        return settings

    def apply_overrides(self, overrides: Dict[str, Any]) -> None:
        """Coerce and apply overrides onto this instance, by field type."""
        for f in fields(self):
            if f.name not in overrides:
                continue
            raw = overrides[f.name]
            current = getattr(self, f.name)
            if isinstance(current, bool):
                value = _as_bool(raw)
            elif isinstance(current, int):
                value = int(raw)
            elif isinstance(current, float):
                value = float(raw)
            elif isinstance(current, list):
                value = [s.strip() for s in raw.split(",") if s.strip()] if isinstance(raw, str) else list(raw)
            else:
                value = raw
            setattr(self, f.name, value)

    def rate_limit_for(self, operation: str) -> int:
        return self.rate_limit_write if operation == "write" else self.rate_limit_read

    def enabled_protocols(self) -> Dict[str, bool]:
        return {"acp": self.enable_acp, "ucp": self.enable_ucp, "mcp": self.enable_mcp}


_ENV_KEYS = {
    "database_url": "DATABASE_URL",
    "allow_http": "AIS_ALLOW_HTTP",
    "trust_forwarded_proto": "AIS_TRUST_FORWARDED_PROTO",
    "trusted_proxies": "AIS_TRUSTED_PROXIES",
    "rate_limit_read": "AIS_RATE_LIMIT_READ",
    "rate_limit_write": "AIS_RATE_LIMIT_WRITE",
    "cart_ttl_seconds": "AIS_CART_TTL_SECONDS",
    "enable_acp": "AIS_ENABLE_ACP",
    "enable_ucp": "AIS_ENABLE_UCP",
    "enable_mcp": "AIS_ENABLE_MCP",
    "api_prefix": "AIS_API_PREFIX",
    "store_name": "AIS_STORE_NAME",
    "store_description": "AIS_STORE_DESCRIPTION",
    "store_url": "AIS_STORE_URL",
    "store_logo": "AIS_STORE_LOGO",
    "currency": "AIS_CURRENCY",
    "supported_locales": "AIS_LOCALES",
    "engine_url": "AIS_ENGINE_URL",
    "engine_api_key": "AIS_ENGINE_API_KEY",
    "engine_timeout_seconds": "AIS_ENGINE_TIMEOUT_SECONDS",
    "maintenance_interval_seconds": "AIS_MAINTENANCE_INTERVAL_SECONDS",
    "bucket_idle_seconds": "AIS_BUCKET_IDLE_SECONDS",
    "log_level": "LOG_LEVEL",
}


def _env_overrides() -> Dict[str, str]:
    overrides = {}
    for name, env_key in _ENV_KEYS.items():
        value = os.getenv(env_key)
        if value is not None and value != "":
            overrides[name] = value
    return overrides


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings; also used as a FastAPI dependency."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (tests)."""
    global _settings
    _settings = None
