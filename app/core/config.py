from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL_DOCKER: str = "postgresql+psycopg2://postgres:postgres@db:5432/assessments"
    DATABASE_URL_LOCAL: str = "sqlite:///./assessments.db"

    # Flip when running inside docker-compose
    USE_DOCKER_DB: bool = False

    # Session engine
    TICK_INTERVAL_SECONDS: float = 1.0

    LOG_LEVEL: str = "INFO"

    CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def DATABASE_URL(self) -> str:
        """
        Use local DB when running outside Docker.
        """
        if self.USE_DOCKER_DB:
            return self.DATABASE_URL_DOCKER
        return self.DATABASE_URL_LOCAL


settings = Settings()
