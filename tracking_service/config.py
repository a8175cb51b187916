"""
Configuration for the tracking service.

Settings come from environment variables (optionally a .env file).
Sensor code mappings are loaded from YAML files shipped with the package.
"""
import os
from dataclasses import dataclass, field
from typing import List, Optional

import yaml
from dotenv import load_dotenv

load_dotenv()

SERVICES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "services")

DEFAULT_WIALON_API_URL = "https://hst-api.wialon.eu/wialon/ajax.html"


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _list_env(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass
class Settings:
    """Runtime settings gathered from the environment."""
    wialon_api_url: str = DEFAULT_WIALON_API_URL
    wialon_token: str = ""
    telemetry_timeout: float = 10.0

    influx_host: str = "http://localhost:8181"
    influx_token: str = ""
    influx_database: str = "tracking"
    store_timeout: float = 10.0

    database_url: str = "postgresql+asyncpg://postgres:postgres@db:5432/logistics"

    default_interval_seconds: float = 300.0
    shutdown_drain_seconds: float = 15.0

    host: str = "0.0.0.0"
    port: int = 8000

    jwt_public_key_path: str = "/app/public.pem"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    log_level: str = "INFO"
    log_format: str = "console"

    @classmethod
    def from_env(cls) -> "Settings":
        db_user = os.getenv("DB_USER", "postgres")
        db_password = os.getenv("DB_PASSWORD", "postgres")
        db_host = os.getenv("DB_HOST", "db")
        db_port = os.getenv("DB_PORT", "5432")
        db_name = os.getenv("DB_NAME", "logistics")
        return cls(
            wialon_api_url=os.getenv("WIALON_API_URL", DEFAULT_WIALON_API_URL),
            wialon_token=os.getenv("WIALON_TOKEN", ""),
            telemetry_timeout=_float_env("TELEMETRY_TIMEOUT_SECONDS", 10.0),
            influx_host=os.getenv("INFLUX_HOST", "http://localhost:8181").rstrip("/"),
            influx_token=os.getenv("INFLUX_TOKEN", ""),
            influx_database=os.getenv("INFLUX_DATABASE", "tracking"),
            store_timeout=_float_env("STORE_TIMEOUT_SECONDS", 10.0),
            database_url=os.getenv(
                "DATABASE_URL",
                f"postgresql+asyncpg://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}",
            ),
            default_interval_seconds=_float_env("TRACKING_DEFAULT_INTERVAL_SECONDS", 300.0),
            shutdown_drain_seconds=_float_env("SHUTDOWN_DRAIN_SECONDS", 15.0),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            jwt_public_key_path=os.getenv("JWT_PUBLIC_KEY_PATH", "/app/public.pem"),
            cors_origins=_list_env("CORS_ORIGINS", "*"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "console"),
        )


def load_yaml_config(filename: str, required_key: Optional[str] = None) -> dict:
    """Load a YAML configuration file from the services directory."""
    filepath = os.path.join(SERVICES_DIR, filename)
    with open(filepath, "r", encoding="utf-8") as file:
        config = yaml.safe_load(file)
    if config is None:
        raise ValueError(f"Empty configuration file: {filename}")
    if required_key and required_key not in config:
        raise ValueError(f"Missing required key '{required_key}' in {filename}")
    return config[required_key] if required_key else config


settings = Settings.from_env()
