import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # Search proxy
    proxy_url: str = os.getenv("BOOKTRACK_PROXY_URL", "https://books.ooheynerds.com")
    fallback_proxy_url: str = os.getenv("BOOKTRACK_FALLBACK_PROXY_URL", "https://books-api-proxy.jukasdrj.workers.dev")
    proxy_user_agent: Optional[str] = os.getenv("BOOKTRACK_USER_AGENT")
    search_timeout: float = float(os.getenv("SEARCH_TIMEOUT", "30"))
    search_connect_timeout: float = float(os.getenv("SEARCH_CONNECT_TIMEOUT", "5"))
    search_max_results: int = int(os.getenv("SEARCH_MAX_RESULTS", "40"))

    # Controller timing
    retry_delay: float = float(os.getenv("SEARCH_RETRY_DELAY", "0.5"))
    requery_delay: float = float(os.getenv("SEARCH_REQUERY_DELAY", "0.1"))

    # Result cache
    cache_ttl: int = int(os.getenv("SEARCH_CACHE_TTL", "300"))  # 5 minutes
    cache_max_entries: int = int(os.getenv("SEARCH_CACHE_MAX_ENTRIES", "1000"))

    # Application
    app_name: str = os.getenv("APP_NAME", "BooksTrack")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _env_flag("DEBUG", "False")
    log_level: str = os.getenv("LOG_LEVEL", "WARNING")
    api_key: Optional[str] = os.getenv("BOOKTRACK_API_KEY")

    # Feature flags
    enable_barcode_scanner: bool = _env_flag("ENABLE_BARCODE_SCANNER", "True")
    enable_search_cache: bool = _env_flag("ENABLE_SEARCH_CACHE", "True")

    @property
    def user_agent(self) -> str:
        return self.proxy_user_agent or f"{self.app_name}-Python/{self.app_version}"


settings = Settings()
