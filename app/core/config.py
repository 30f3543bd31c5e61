from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Upper bound for a requested break window (minutes)
    max_break_minutes: int = Field(120, alias="MAX_BREAK_MINUTES")

    # Per-type approval policy for unit actions. Slot, break and subject transfer are always gated.
    unit_start_requires_approval: bool = Field(False, alias="UNIT_START_REQUIRES_APPROVAL")
    unit_complete_requires_approval: bool = Field(False, alias="UNIT_COMPLETE_REQUIRES_APPROVAL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
