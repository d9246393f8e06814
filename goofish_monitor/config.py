"""Configuration management from environment variables."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# Project root
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
COOKIE_FILE = DATA_DIR / "cookies.properties"
COOKIE_DUMP_FILE = DATA_DIR / "real_cookies.json"
SEEN_ITEMS_DB = DATA_DIR / "seen_items.db"
USER_DATA_DB = DATA_DIR / "user_data.db"
METRICS_FILE = DATA_DIR / "metrics.jsonl"

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)


def _split_keys(raw: str) -> tuple[str, ...]:
    return tuple(key.strip() for key in raw.split(",") if key.strip())


class Config:
    """Application configuration."""

    # Goofish H5 API
    API_BASE_URL: str = os.getenv("API_BASE_URL", "https://h5api.m.goofish.com")
    API_DOMAIN: str = os.getenv("API_DOMAIN", "h5api.m.goofish.com")
    SEARCH_ENDPOINT: str = os.getenv(
        "SEARCH_ENDPOINT", "/h5/mtop.taobao.idlemtopsearch.pc.search/1.0/"
    )
    SITE_URL: str = os.getenv("SITE_URL", "https://www.goofish.com")
    APP_KEY: str = os.getenv("APP_KEY", "34839810")
    USER_AGENT: str = os.getenv(
        "USER_AGENT",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36",
    )
    MAX_ROWS_PER_PAGE: int = int(os.getenv("MAX_ROWS_PER_PAGE", "500"))

    # Credentials
    CREDENTIAL_TTL_MINUTES: float = float(os.getenv("CREDENTIAL_TTL_MINUTES", "30"))
    FALLBACK_TTL_SECONDS: float = float(os.getenv("FALLBACK_TTL_SECONDS", "60"))
    REQUIRED_COOKIES: tuple[str, ...] = _split_keys(
        os.getenv("REQUIRED_COOKIES", "_m_h5_tk,cna,t")
    )
    OPTIONAL_COOKIES: tuple[str, ...] = _split_keys(os.getenv("OPTIONAL_COOKIES", "_tb_token_"))
    MIN_REQUIRED_COOKIES: int = int(os.getenv("MIN_REQUIRED_COOKIES", "2"))
    # Cookie header used as the static configuration source for API_DOMAIN
    STATIC_COOKIES: str | None = os.getenv("STATIC_COOKIES")
    FETCH_TIMEOUT: int = int(os.getenv("FETCH_TIMEOUT", "30"))

    # HTTP
    TIMEOUT: int = int(os.getenv("TIMEOUT", "20"))
    MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "3"))

    # Sessions
    SHUTDOWN_GRACE_SECONDS: float = float(os.getenv("SHUTDOWN_GRACE_SECONDS", "30"))
    ERROR_BACKOFF_SECONDS: float = float(os.getenv("ERROR_BACKOFF_SECONDS", "5"))
    HEALTH_INTERVAL_SECONDS: float = float(os.getenv("HEALTH_INTERVAL_SECONDS", "300"))

    # Telegram
    TELEGRAM_BOT_TOKEN: str | None = os.getenv("TELEGRAM_BOT_TOKEN")
    TELEGRAM_ADMIN_ID: int = int(os.getenv("TELEGRAM_ADMIN_ID", "0"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # API Security
    API_KEY: str | None = os.getenv("API_KEY")

    @property
    def credential_ttl_seconds(self) -> float:
        return self.CREDENTIAL_TTL_MINUTES * 60

    def static_cookies(self) -> dict[str, str]:
        """Static cookie headers keyed by domain."""
        if not self.STATIC_COOKIES:
            return {}
        return {self.API_DOMAIN: self.STATIC_COOKIES}

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration."""
        errors = []
        if cls.CREDENTIAL_TTL_MINUTES <= 0:
            errors.append("CREDENTIAL_TTL_MINUTES must be positive")
        if not cls.REQUIRED_COOKIES:
            errors.append("REQUIRED_COOKIES must name at least one cookie")
        if not 1 <= cls.MIN_REQUIRED_COOKIES <= len(cls.REQUIRED_COOKIES):
            errors.append("MIN_REQUIRED_COOKIES must be between 1 and the number of REQUIRED_COOKIES")
        if not cls.APP_KEY:
            errors.append("APP_KEY is required")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")


config = Config()
