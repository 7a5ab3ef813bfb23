import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_url: str = os.getenv("BOOKSTORE_API_URL", "http://127.0.0.1:8000/api")
    access_token: Optional[str] = os.getenv("BOOKSTORE_ACCESS_TOKEN")
    refresh_token: Optional[str] = os.getenv("BOOKSTORE_REFRESH_TOKEN")

    # HTTP client settings
    http_timeout: float = float(os.getenv("BOOKSTORE_HTTP_TIMEOUT", "10"))
    connect_timeout: float = float(os.getenv("BOOKSTORE_CONNECT_TIMEOUT", "5"))
    max_connections: int = int(os.getenv("BOOKSTORE_MAX_CONNECTIONS", "100"))
    max_keepalive_connections: int = int(os.getenv("BOOKSTORE_MAX_KEEPALIVE", "20"))
    keepalive_expiry: float = float(os.getenv("BOOKSTORE_KEEPALIVE_EXPIRY", "30"))

    # Notifications
    notification_page_size: int = int(os.getenv("BOOKSTORE_NOTIFICATION_PAGE_SIZE", "1000"))

    # Token handling
    # Tokens expiring within this window are treated as already expired
    token_expiry_leeway_seconds: int = int(os.getenv("TOKEN_EXPIRY_LEEWAY_SECONDS", "300"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Bookstore Client")
    log_level: str = os.getenv("LOG_LEVEL", "WARNING")
    debug: bool = _env_flag("DEBUG")


settings = Settings()
