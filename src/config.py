from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # API
    api_host: str = "127.0.0.1"
    api_port: int = 8765

    # Persistence (services + interval + icon set)
    state_file: str = "data/labwatch.yaml"

    # Scheduling
    default_interval_seconds: int = 10
    cycle_safety_margin_seconds: float = 1.0  # cycle deadline = interval - margin
    max_concurrent_probes: int = 8

    # Probes
    probe_timeout_seconds: float = 2.0
    http_strict: bool = True  # False = any completed HTTP response counts as Up
    http_method: str = "HEAD"
    # HTTP services on these ports are probed over https, everything else over
    # plain http, e.g. HTTPS_PORTS='[443, 8443]'.
    https_ports: list[int] = [443]

    # Logging
    log_level: str = "INFO"


settings = Settings()
