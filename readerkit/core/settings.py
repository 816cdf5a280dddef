from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    app_env: str
    db_path: str
    api_url: str
    graphql_path: str
    api_token: str | None
    username: str | None
    fetch_max_attempts: int
    fetch_retry_delay: float
    http_timeout: float
    log_level: str

    @staticmethod
    def from_env() -> "Settings":
        def _s(name: str, default: str = "") -> str | None:
            return os.getenv(name, default).strip() or None

        def _i(name: str, default: str) -> int:
            return int(os.getenv(name, default).strip())

        def _f(name: str, default: str) -> float:
            return float(os.getenv(name, default).strip())

        return Settings(
            app_env=os.getenv("APP_ENV", "dev").strip(),
            db_path=os.getenv("DB_PATH", "/app/_local/data/reader.db").strip(),
            api_url=os.getenv("READER_API_URL", "https://api-prod.omnivore.app").strip(),
            graphql_path=os.getenv("READER_GRAPHQL_PATH", "/api/graphql").strip(),
            api_token=_s("READER_API_TOKEN"),
            username=_s("READER_USERNAME"),
            fetch_max_attempts=_i("FETCH_MAX_ATTEMPTS", "7"),
            fetch_retry_delay=_f("FETCH_RETRY_DELAY", "2.0"),
            http_timeout=_f("HTTP_TIMEOUT", "30.0"),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        )
