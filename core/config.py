from pydantic_settings import BaseSettings
from pydantic import ConfigDict

class Settings(BaseSettings):
    model_config = ConfigDict(env_file=".env", extra="ignore")

    ENV: str = "development"

    DATABASE_URL: str = "sqlite:///./grubtech.db"
    KV_URL: str = "memory://"

    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    TOKEN_CLEANUP_INTERVAL_HOURS: int = 24
    COOKIE_SECURE: bool = True

    # Empty means the setup endpoint can never be unlocked
    SETUP_SECRET_TOKEN: str = ""

    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # Optional overrides applied to every named limiter except setup
    RATE_LIMIT_WINDOW_MS: int | None = None
    RATE_LIMIT_MAX_REQUESTS: int | None = None

    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"

    @property
    def allowed_origins(self) -> list[str]:
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]


settings = Settings()
