import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load .env from the package directory first, then the project root
ENV_PATH = os.path.abspath(os.path.join(os.path.dirname(__file__), '.env'))
load_dotenv(ENV_PATH)

ENV_PATH_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '.env'))
load_dotenv(ENV_PATH_ROOT)

DEFAULT_RELAY_PORT = 8080
DEFAULT_PRESENCE_PORT = 8088


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str) -> Optional[float]:
    """Unset, empty, unparseable or non-positive values all mean "no value"."""
    raw = os.getenv(name)
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if value > 0 else None


@dataclass
class RelaySettings:
    relay_host: str = "0.0.0.0"
    relay_port: int = DEFAULT_RELAY_PORT
    presence_host: str = "127.0.0.1"
    presence_port: int = DEFAULT_PRESENCE_PORT  # 0 disables the presence app

    db_backend: str = "sqlite"  # 'sqlite' or 'mysql'
    db_path: str = "db.sqlite"
    db_host: str = "localhost"
    db_port: int = 3306
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    db_name: Optional[str] = None
    # None keeps datastore calls unbounded
    db_timeout: Optional[float] = None

    log_level: str = "INFO"


def load_settings() -> RelaySettings:
    """Build settings from the environment (after the .env files above)."""
    return RelaySettings(
        relay_host=os.getenv("RELAY_HOST", "0.0.0.0"),
        relay_port=env_int("RELAY_PORT", DEFAULT_RELAY_PORT),
        presence_host=os.getenv("PRESENCE_HOST", "127.0.0.1"),
        presence_port=env_int("PRESENCE_PORT", DEFAULT_PRESENCE_PORT),
        db_backend=os.getenv("DB_BACKEND", "sqlite").lower(),
        db_path=os.getenv("DB_PATH", "db.sqlite"),
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=env_int("DB_PORT", 3306),
        db_user=os.getenv("DB_USER"),
        db_password=os.getenv("DB_PASSWORD"),
        db_name=os.getenv("DB_DATABASE"),
        db_timeout=env_float("RELAY_DB_TIMEOUT"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
