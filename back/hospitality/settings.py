from decimal import Decimal
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    """
    App configuration.

    Values come from `config.env` (non-dot env file) at the repository root or
    the current directory. A `.env` file is read as well when present.
    """

    model_config = SettingsConfigDict(
        env_file=(
            str(_PROJECT_ROOT / "config.env"),
            str(_PROJECT_ROOT / ".env"),
            "config.env",
            ".env",
        ),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db_host: str = Field(default="localhost", validation_alias="DB_HOST")
    db_port: int = Field(default=5432, validation_alias="DB_PORT")
    db_user: str = Field(default="hospitality", validation_alias="DB_USER")
    db_password: str = Field(default="hospitality", validation_alias="DB_PASSWORD")
    db_name: str = Field(default="hospitality", validation_alias="DB_NAME")
    # Full SQLAlchemy URL; takes precedence over the DB_* parts when set
    database_url_override: str = Field(default="", validation_alias="DATABASE_URL")

    secret_key: str = Field(default="CHANGE_THIS_IN_PRODUCTION", validation_alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", validation_alias="ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # CORS configuration
    cors_origins: str = Field(
        default="http://localhost:4200",
        validation_alias="CORS_ORIGINS"
    )

    # Empty string disables order event publishing
    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")

    # Orders
    tax_rate_percent: Decimal = Field(default=Decimal("10"), validation_alias="TAX_RATE_PERCENT")
    currency: str = Field(default="usd", validation_alias="CURRENCY")
    guest_phone: str = Field(default="0000000000", validation_alias="GUEST_PHONE")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        # psycopg driver (v3)
        return (
            f"postgresql+psycopg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


settings = Settings()
