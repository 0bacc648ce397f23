from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "collection-query-backend"
    LOG_LEVEL: str = "INFO"

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8081"

    DATABASE_URL: str = "sqlite+pysqlite:///./app.db"

    QUERY_DEFAULT_LIMIT: int = 10
    QUERY_MAX_LIMIT: int = 100
    QUERY_FILTER_MAX_DEPTH: int = 5
    QUERY_TIMEOUT_SECONDS: float = 10.0
    # Reject malformed filter conditions instead of dropping them.
    QUERY_STRICT_CONDITIONS: bool = False

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

settings = Settings()
