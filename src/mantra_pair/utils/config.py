from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from mantra_pair.errors import ConfigError


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 3000
    api_key: Optional[str] = None
    cors_origins: List[str] = dataclasses.field(default_factory=list)
    max_body_bytes: int = 128 * 1024


@dataclass
class RateLimitConfig:
    window_seconds: float = 60.0
    max_requests: int = 30


@dataclass
class SessionConfig:
    ttl_seconds: float = 300.0
    idle_ttl_seconds: float = 120.0
    cleanup_interval_seconds: float = 30.0
    temp_dir: str = "temp"
    stale_dir_max_age_seconds: float = 3600.0
    keepalive_seconds: float = 15.0
    code_settle_seconds: float = 4.5
    connect_settle_seconds: float = 1.2
    message_gap_seconds: float = 0.4
    cleanup_grace_seconds: float = 2.5
    code_expires_in_seconds: int = 60


@dataclass
class RetryConfig:
    max_retries: int = 3
    base_delay_seconds: float = 5.0
    max_delay_seconds: float = 30.0


@dataclass
class ExportConfig:
    encrypted: bool = False
    secret: Optional[str] = None
    log_exports: bool = False


@dataclass
class ProtocolConfig:
    bridge_url: str = "http://127.0.0.1:3001"
    timeout_seconds: float = 90.0


@dataclass
class Settings:
    server: ServerConfig = dataclasses.field(default_factory=ServerConfig)
    rate_limit: RateLimitConfig = dataclasses.field(default_factory=RateLimitConfig)
    session: SessionConfig = dataclasses.field(default_factory=SessionConfig)
    retry: RetryConfig = dataclasses.field(default_factory=RetryConfig)
    export: ExportConfig = dataclasses.field(default_factory=ExportConfig)
    protocol: ProtocolConfig = dataclasses.field(default_factory=ProtocolConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        def build(dc_cls, key):
            values = data.get(key, {})
            return dc_cls(**values)

        return cls(
            server=build(ServerConfig, "server"),
            rate_limit=build(RateLimitConfig, "rate_limit"),
            session=build(SessionConfig, "session"),
            retry=build(RetryConfig, "retry"),
            export=build(ExportConfig, "export"),
            protocol=build(ProtocolConfig, "protocol"),
        ).validate()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables (millisecond values are converted to seconds)."""
        env = os.environ if environ is None else environ

        def ms(name: str, default: float) -> float:
            return _number(env, name, default * 1000.0) / 1000.0

        api_key = (env.get("API_KEY") or "").strip() or None
        secret = (env.get("SESSION_SECRET") or "").strip() or None
        origins = [o.strip() for o in (env.get("CORS_ORIGINS") or "").split(",") if o.strip()]

        return cls(
            server=ServerConfig(
                host=env.get("HOST", "0.0.0.0"),
                port=int(_number(env, "PORT", 3000)),
                api_key=api_key,
                cors_origins=origins,
            ),
            rate_limit=RateLimitConfig(
                window_seconds=ms("RATE_LIMIT_WINDOW_MS", 60.0),
                max_requests=int(_number(env, "RATE_LIMIT_MAX", 30)),
            ),
            session=SessionConfig(
                ttl_seconds=ms("SESSION_TTL_MS", 300.0),
                idle_ttl_seconds=ms("SESSION_IDLE_TTL_MS", 120.0),
                cleanup_interval_seconds=ms("SESSION_CLEANUP_INTERVAL_MS", 30.0),
                temp_dir=env.get("SESSION_TEMP_DIR", "temp"),
            ),
            retry=RetryConfig(
                max_retries=int(_number(env, "MAX_RETRIES", 3)),
                base_delay_seconds=ms("RETRY_DELAY_MS", 5.0),
                max_delay_seconds=ms("RETRY_MAX_DELAY_MS", 30.0),
            ),
            export=ExportConfig(
                encrypted=_flag(env, "EXPORT_ENCRYPTED"),
                secret=secret,
                log_exports=_flag(env, "LOG_SESSION_EXPORTS"),
            ),
            protocol=ProtocolConfig(bridge_url=env.get("BRIDGE_URL", "http://127.0.0.1:3001")),
        ).validate()

    def validate(self) -> "Settings":
        if self.export.encrypted and not self.export.secret:
            raise ConfigError("SESSION_SECRET is required when EXPORT_ENCRYPTED=true")
        if self.retry.max_retries < 0:
            raise ConfigError("MAX_RETRIES must not be negative")
        if self.session.ttl_seconds <= 0 or self.session.idle_ttl_seconds <= 0:
            raise ConfigError("session TTLs must be positive")
        return self


def _number(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return float(default)
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


def _flag(env: Mapping[str, str], name: str) -> bool:
    return (env.get(name) or "false").strip().lower() == "true"
