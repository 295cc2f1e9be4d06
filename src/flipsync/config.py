"""Configuration settings for the sync engine."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Define base directory
BASE_DIR = Path(__file__).parent.parent.parent

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)


# Define data directories from environment variables
DATA_DIR = Path(os.getenv("DATA_DIR", "./data"))
BACKUPS_DIR = DATA_DIR / "backups"

# Sync defaults
CACHE_EXPIRY_MS = 30 * 60 * 1000  # 30 minutes
SYNC_INTERVAL_MS = 5 * 60 * 1000  # 5 minutes
MAX_RETRY_ATTEMPTS = 3
CONFLICT_STRATEGIES = ("local", "remote", "merge", "manual")


def ensure_directories() -> None:
    """Ensure all required directories exist."""
    directories = [
        DATA_DIR,
        BACKUPS_DIR,
    ]

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class PathSettings:
    """Path configuration settings."""
    base_dir: Path = BASE_DIR
    data_dir: Path = DATA_DIR
    backups_dir: Path = BACKUPS_DIR


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///flipsync.db")
    echo: bool = _env_flag("DATABASE_ECHO", "false")


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    rotation: str = os.getenv("LOG_ROTATION", "midnight")
    interval: int = int(os.getenv("LOG_INTERVAL", "1"))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "7"))


@dataclass
class SyncSettings:
    """Cache and synchronization settings."""
    cache_expiry_ms: int = int(os.getenv("CACHE_EXPIRY_MS", str(CACHE_EXPIRY_MS)))
    max_retry_attempts: int = int(os.getenv("MAX_RETRY_ATTEMPTS", str(MAX_RETRY_ATTEMPTS)))
    sync_interval_ms: int = int(os.getenv("SYNC_INTERVAL_MS", str(SYNC_INTERVAL_MS)))
    enable_background_sync: bool = _env_flag("ENABLE_BACKGROUND_SYNC", "true")
    conflict_resolution_strategy: str = os.getenv("CONFLICT_RESOLUTION_STRATEGY", "merge")
    storage_namespace: str = os.getenv("STORAGE_NAMESPACE", "linguaflip")
    retry_base_delay: float = float(os.getenv("RETRY_BASE_DELAY", "1.0"))  # seconds

    @property
    def cache_expiry_seconds(self) -> float:
        return self.cache_expiry_ms / 1000

    @property
    def sync_interval_seconds(self) -> float:
        return self.sync_interval_ms / 1000


@dataclass
class RemoteSettings:
    """Remote store API settings."""
    api_url: str = os.getenv("REMOTE_API_URL", "http://localhost:4321")
    api_token: Optional[str] = os.getenv("REMOTE_API_TOKEN")
    timeout: float = float(os.getenv("REMOTE_TIMEOUT", "10"))
    probe_interval: float = float(os.getenv("NETWORK_PROBE_INTERVAL", "30"))


@dataclass
class MonitoringSettings:
    """Prometheus metrics settings."""
    enabled: bool = _env_flag("METRICS_ENABLED", "false")
    port: int = int(os.getenv("METRICS_PORT", "9090"))


def get_path_settings() -> PathSettings:
    """Get path settings."""
    return PathSettings()


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_sync_settings() -> SyncSettings:
    """Get sync settings."""
    return SyncSettings()


def get_remote_settings() -> RemoteSettings:
    """Get remote settings."""
    return RemoteSettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    paths: PathSettings = field(default_factory=get_path_settings)
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    sync: SyncSettings = field(default_factory=get_sync_settings)
    remote: RemoteSettings = field(default_factory=get_remote_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        if self.sync.cache_expiry_ms < 0:
            raise ValueError("CACHE_EXPIRY_MS must not be negative")

        if self.sync.max_retry_attempts < 0:
            raise ValueError("MAX_RETRY_ATTEMPTS must not be negative")

        if self.sync.sync_interval_ms <= 0:
            raise ValueError("SYNC_INTERVAL_MS must be positive")

        if self.sync.conflict_resolution_strategy not in CONFLICT_STRATEGIES:
            raise ValueError(
                "CONFLICT_RESOLUTION_STRATEGY must be one of: " + ", ".join(CONFLICT_STRATEGIES)
            )

        if not self.sync.storage_namespace:
            raise ValueError("STORAGE_NAMESPACE is required")

        if self.remote.timeout <= 0:
            raise ValueError("REMOTE_TIMEOUT must be positive")


# Create global settings instance
settings = Settings()
settings.validate()
