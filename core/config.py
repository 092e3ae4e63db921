"""Configuration models and loading."""

import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

CONFIG_DIR = Path.home() / ".config" / "gemini-edge-proxy"
CONFIG_FILE = CONFIG_DIR / "config.json"

GEMINI_HEADERS = [
    "content-type",
    "authorization",
    "x-goog-api-client",
    "x-goog-api-key",
    "accept-encoding",
]

IDENTITY_HEADERS = [
    "cookie",
    "set-cookie",
    "host",
    "referer",
    "user-agent",
    "x-forwarded-for",
    "x-real-ip",
    "x-forwarded-host",
    "x-forwarded-proto",
]

BROWSER_HEADERS = {
    "user-agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "accept": "*/*",
    "accept-language": "en-US,en;q=0.9",
    "accept-encoding": "gzip, deflate, br",
    "cache-control": "no-cache",
    "pragma": "no-cache",
}


class _Settings(BaseModel):
    model_config = ConfigDict(frozen=True)


class ProxySettings(_Settings):
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = True


class UpstreamSettings(_Settings):
    base_url: str = "https://generativelanguage.googleapis.com"
    reserved_query_param: str = "_path"
    # "stream" sends the body chunked as it arrives, "buffer" reads it first
    body_mode: Literal["stream", "buffer"] = "stream"
    max_connections: int = 100
    max_keepalive_connections: int = 20


class RetrySettings(_Settings):
    timeout_ms: int = Field(default=20000, gt=0)
    max_retries: int = Field(default=2, ge=0)
    retry_delay_ms: int = Field(default=1000, ge=0)


class HeaderSettings(_Settings):
    policy: Literal["allow", "deny"] = "allow"
    allow: list[str] = Field(default_factory=lambda: list(GEMINI_HEADERS))
    allow_patterns: list[str] = Field(default_factory=list)
    deny: list[str] = Field(default_factory=lambda: list(IDENTITY_HEADERS))
    synthetic: dict[str, str] = Field(default_factory=lambda: dict(BROWSER_HEADERS))


class CorsSettings(_Settings):
    allow_origin: str = "*"
    allow_methods: str = "*"
    allow_headers: str = "*"


class Config(_Settings):
    proxy: ProxySettings = Field(default_factory=ProxySettings)
    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    headers: HeaderSettings = Field(default_factory=HeaderSettings)
    cors: CorsSettings = Field(default_factory=CorsSettings)


def load_config(config_file: Path = CONFIG_FILE) -> Config:
    """Load configuration from JSON file, creating default if needed."""
    if not config_file.exists():
        config_file.parent.mkdir(parents=True, exist_ok=True)
        default = Config()
        config_file.write_text(default.model_dump_json(indent=2))
        return default

    try:
        data = json.loads(config_file.read_text())
        return Config.model_validate(data)
    except (json.JSONDecodeError, ValidationError):
        # Backup corrupted config and recreate default
        backup = config_file.with_suffix(".json.bak")
        config_file.rename(backup)
        default = Config()
        config_file.write_text(default.model_dump_json(indent=2))
        return default
