"""
Configuration settings for the College Portal client session core.
"""
import os
import sys
import platform
import configparser
from typing import Dict, Tuple
from pathlib import Path


def get_config_path() -> Path:
    """Get the path to config.ini file."""
    override = os.getenv("PORTAL_CONFIG")
    if override:
        return Path(override)
    if getattr(sys, 'frozen', False):
        exe_dir = Path(sys.executable).parent
        config_path = exe_dir / 'config.ini'
    else:
        # Go up from src/portal_client/config/ to the project root
        config_path = Path(__file__).parent.parent.parent.parent / 'config.ini'
    return config_path


def load_config() -> configparser.ConfigParser:
    """Load configuration from config.ini file."""
    config = configparser.ConfigParser()
    config_path = get_config_path()
    if config_path.exists():
        config.read(config_path)
    return config


_config = load_config()


def _flag(value: str) -> bool:
    return str(value).lower() in ("true", "1", "yes")


class AppSettings:
    """Application configuration settings."""

    # Application metadata
    APP_NAME = "College Portal"
    APP_VERSION = "1.0.0"

    # API Configuration
    API_BASE_URL = _config.get('server', 'api_base_url',
                               fallback=os.getenv("API_BASE_URL", "http://10.0.2.2:8000/api/v1"))
    API_TIMEOUT = int(_config.get('server', 'api_timeout',
                                  fallback=os.getenv("API_TIMEOUT", "30")))
    # Non-auth failures are not retried; raise only for flaky networks
    API_RETRY_ATTEMPTS = int(_config.get('server', 'api_retry_attempts',
                                         fallback=os.getenv("API_RETRY_ATTEMPTS", "0")))
    API_RETRY_DELAY = float(os.getenv("API_RETRY_DELAY", "1.0"))

    # Authentication / session
    PLATFORM = _config.get('session', 'platform',
                           fallback=os.getenv("PORTAL_PLATFORM", platform.system().lower() or "python"))
    DEVICE_ID_HEADER = "X-Device-ID"
    REFRESH_MIN_INTERVAL = float(_config.get('session', 'refresh_min_interval',
                                             fallback=os.getenv("REFRESH_MIN_INTERVAL", "60")))
    # "fail_fast" or "wait_and_replay"
    REFRESH_SIBLING_POLICY = _config.get('session', 'refresh_sibling_policy',
                                         fallback=os.getenv("REFRESH_SIBLING_POLICY", "fail_fast"))
    REFRESH_WAIT_TIMEOUT = float(os.getenv("REFRESH_WAIT_TIMEOUT", "30"))
    # "bearer", "cookie" or both, comma separated
    AUTH_CHANNELS: Tuple[str, ...] = tuple(
        c.strip() for c in _config.get('session', 'auth_channels',
                                       fallback=os.getenv("AUTH_CHANNELS", "bearer,cookie")).split(",")
        if c.strip()
    )

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("LOG_FILE", "college_portal.log")
    LOG_MAX_SIZE = int(os.getenv("LOG_MAX_SIZE", "10485760"))   # 10 MB
    LOG_BACKUP_COUNT = int(os.getenv("LOG_BACKUP_COUNT", "5"))
    LOG_TO_FILE = _flag(os.getenv("PORTAL_LOG_TO_FILE", "true"))

    # Security
    CREDENTIAL_STORE_SERVICE = "College_Portal_Client"
    ENCRYPT_LOCAL_DATA = _flag(os.getenv("ENCRYPT_LOCAL_DATA", "true"))

    # Query cache
    QUERY_STALE_TIME = 5 * 60      # seconds

    # File paths
    CONFIG_DIR = Path(os.getenv("PORTAL_HOME", str(Path.home() / ".college_portal")))
    STORAGE_FILE = CONFIG_DIR / "storage.json"
    LOG_DIR = CONFIG_DIR / "logs"

    @classmethod
    def ensure_directories(cls):
        """Ensure required directories exist."""
        for directory in [cls.CONFIG_DIR, cls.LOG_DIR]:
            directory.mkdir(parents=True, exist_ok=True)

    @classmethod
    def get_api_endpoints(cls) -> Dict[str, str]:
        """Get all API endpoints, relative to API_BASE_URL."""
        return {
            # Authentication
            "login": "/users/login",
            "refresh": "/users/refresh-token",
            "logout": "/users/logout",
            "current_user": "/users/me",
        }


# Global settings instance
settings = AppSettings()
