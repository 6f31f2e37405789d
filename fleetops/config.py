from pydantic_settings import BaseSettings
from pathlib import Path
from typing import List
import yaml


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://postgres@localhost:5432/postgres"
    REDIS_URL: str = "redis://localhost:6379/0"

    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = -1
    DB_ECHO: bool = False
    # the schema belongs to the backend; only local sandboxes create it
    DB_CREATE_SCHEMA: bool = False

    BACKEND_URL: str = "http://localhost:54321"
    BACKEND_SERVICE_KEY: str = ""
    HTTP_TIMEOUT_SEC: float = 10.0

    MAPS_API_KEY: str = ""
    MAPS_DIRECTIONS_URL: str = "https://maps.googleapis.com/maps/api/directions/json"

    TRACKING_POLL_INTERVAL_SEC: int = 10
    ONBOARDING_TTL_SEC: int = 900

    CORS_ORIGINS: List[str] = ["http://127.0.0.1:5173", "http://localhost:5173"]

    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "fleetops.log"

    # Load .env located next to this file (fleetops/.env) so defaults are overridden
    model_config = {"env_file": str(Path(__file__).resolve().parent / ".env")}


def load_settings() -> Settings:
    """Load settings from application.yaml and merge with environment variables."""
    config_path = Path(__file__).resolve().parent / "application.yaml"

    config_dict = {}

    if config_path.exists():
        with open(config_path, "r") as f:
            yaml_config = yaml.safe_load(f)
            if yaml_config:
                # Map YAML structure to Settings fields
                if "database" in yaml_config:
                    db = yaml_config["database"]
                    config_dict["DATABASE_URL"] = db.get("url")
                    config_dict["DB_POOL_SIZE"] = db.get("pool_size")
                    config_dict["DB_MAX_OVERFLOW"] = db.get("max_overflow")
                    config_dict["DB_POOL_TIMEOUT"] = db.get("pool_timeout")
                    config_dict["DB_POOL_RECYCLE"] = db.get("pool_recycle")
                    config_dict["DB_ECHO"] = db.get("echo")
                    config_dict["DB_CREATE_SCHEMA"] = db.get("create_schema")

                if "redis" in yaml_config:
                    config_dict["REDIS_URL"] = yaml_config["redis"].get("url")

                if "backend" in yaml_config:
                    backend = yaml_config["backend"]
                    config_dict["BACKEND_URL"] = backend.get("url")
                    config_dict["BACKEND_SERVICE_KEY"] = backend.get("service_key")
                    config_dict["HTTP_TIMEOUT_SEC"] = backend.get("timeout_sec")

                if "maps" in yaml_config:
                    maps = yaml_config["maps"]
                    config_dict["MAPS_API_KEY"] = maps.get("api_key")
                    config_dict["MAPS_DIRECTIONS_URL"] = maps.get("directions_url")

                if "tracking" in yaml_config:
                    config_dict["TRACKING_POLL_INTERVAL_SEC"] = yaml_config["tracking"].get("poll_interval_sec")

                if "onboarding" in yaml_config:
                    config_dict["ONBOARDING_TTL_SEC"] = yaml_config["onboarding"].get("session_ttl_sec")

                if "cors" in yaml_config:
                    config_dict["CORS_ORIGINS"] = yaml_config["cors"].get("origins")

                if "logging" in yaml_config:
                    config_dict["LOG_LEVEL"] = yaml_config["logging"].get("level")
                    config_dict["LOG_FILE"] = yaml_config["logging"].get("file")

    # keys missing from the YAML fall back to env vars, then defaults
    return Settings(**{k: v for k, v in config_dict.items() if v is not None})


settings = load_settings()
