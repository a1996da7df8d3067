from __future__ import annotations

from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    bot_token: str = Field(..., alias="BOT_TOKEN")
    database_url: str = Field(..., alias="DATABASE_URL")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    sql_echo: bool = Field(False, alias="SQL_ECHO")

    default_currency: str = Field("USD", alias="DEFAULT_CURRENCY", min_length=3, max_length=3)
    percentage_tolerance: Decimal = Field(Decimal("0.01"), alias="PERCENTAGE_TOLERANCE", ge=0)
    reply_ttl_seconds: float = Field(120.0, alias="REPLY_TTL_SECONDS")


settings = Settings()
