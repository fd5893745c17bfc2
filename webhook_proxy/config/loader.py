"""Environment-driven settings with pydantic-settings."""

from __future__ import annotations

import signal
import threading

import structlog
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()

# Path prefixes served by externally triggered webhook and form handlers.
DEFAULT_WEBHOOK_PREFIXES = [
    "/webhook",
    "/webhook-test",
    "/webhook-waiting",
    "/form",
    "/form-test",
    "/form-waiting",
]


class WebhookProxySettings(BaseSettings):
    """Proxy configuration; ``WEBHOOK_PROXY_*`` env vars override the defaults."""

    model_config = SettingsConfigDict(
        env_prefix="WEBHOOK_PROXY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    upstream_url: str = "http://localhost:5678"
    listen_port: int = 8080
    log_level: str = "info"
    log_json: bool = True

    proxy_timeout: float = 30.0
    max_body_bytes: int = 16 * 1024 * 1024

    # Requests under these prefixes have the session cookie stripped
    webhook_path_prefixes: list[str] = list(DEFAULT_WEBHOOK_PREFIXES)

    upstream_max_connections: int = 100
    upstream_max_keepalive: int = 20
    upstream_follow_redirects: bool = False


_settings: WebhookProxySettings | None = None


def get_settings() -> WebhookProxySettings:
    """Get or create the singleton settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def load_settings() -> WebhookProxySettings:
    """(Re)build settings from the environment and replace the singleton."""
    global _settings
    _settings = WebhookProxySettings()
    logger.info(
        "config_loaded",
        upstream_url=_settings.upstream_url,
        port=_settings.listen_port,
        webhook_prefixes=_settings.webhook_path_prefixes,
    )
    return _settings


def register_reload_handler() -> None:
    """Reload settings on SIGHUP. Only possible from the main thread."""
    if threading.current_thread() is not threading.main_thread():
        logger.debug("skipping_sighup_handler", reason="not main thread")
        return

    def _reload(signum, frame):
        logger.info("config_reload_triggered")
        load_settings()

    try:
        signal.signal(signal.SIGHUP, _reload)
    except (ValueError, AttributeError):
        # AttributeError: no SIGHUP on Windows
        logger.debug("skipping_sighup_handler", reason="signal not supported")
