from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "PIM Category Store"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600

    # Category listing
    CATEGORY_DEFAULT_PAGE_SIZE: int = 20
    CATEGORY_MAX_PAGE_SIZE: int = 100
    CATEGORY_FEATURED_LIMIT: int = 10
    CATEGORY_SLUG_MAX_LENGTH: int = 255

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Monitoring (Optional - Add to .env for production)
    SENTRY_DSN: str = ""

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @field_validator("CATEGORY_DEFAULT_PAGE_SIZE", "CATEGORY_MAX_PAGE_SIZE", "CATEGORY_FEATURED_LIMIT")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Page sizes must be positive")
        return value

    @model_validator(mode="after")
    def validate_settings(self):
        if self.CATEGORY_DEFAULT_PAGE_SIZE > self.CATEGORY_MAX_PAGE_SIZE:
            raise ValueError("CATEGORY_DEFAULT_PAGE_SIZE cannot exceed CATEGORY_MAX_PAGE_SIZE")
        if self.ENVIRONMENT == "production" and self.is_sqlite:
            raise ValueError("DATABASE_URL must not use SQLite in production")
        return self

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
