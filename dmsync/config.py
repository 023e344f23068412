import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, model_validator
from typing import Optional
from pydantic_settings import BaseSettings
from sqlalchemy.engine.url import make_url, URL

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///:memory:"
DEFAULT_TEST_DATABASE_URL = "sqlite+pysqlite:///:memory:"

# Repository root, so .env resolves the same from any working directory
_PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Load .env into os.environ before Settings reads it
load_dotenv(_PROJECT_ROOT / ".env")


class Settings(BaseSettings):
    app_name: str = "dmsync"
    database_url: Optional[str] = None  # Will be set dynamically
    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("ENV", "ENVIRONMENT"),
    )
    log_level: str = Field(default="INFO", json_schema_extra={"env": "LOG_LEVEL"})

    # Session bootstrap
    bootstrap_timeout_ms: int = Field(
        default=2000, ge=0, json_schema_extra={"env": "BOOTSTRAP_TIMEOUT_MS"}
    )
    session_ttl_seconds: int = Field(
        default=3600, ge=1, json_schema_extra={"env": "SESSION_TTL_SECONDS"}
    )

    # Conversations / directory
    message_page_size: int = Field(
        default=100, ge=1, json_schema_extra={"env": "MESSAGE_PAGE_SIZE"}
    )
    search_debounce_ms: int = Field(
        default=300, ge=0, json_schema_extra={"env": "SEARCH_DEBOUNCE_MS"}
    )

    # Backend transport
    request_timeout_seconds: float = Field(
        default=10.0, gt=0, json_schema_extra={"env": "REQUEST_TIMEOUT_SECONDS"}
    )
    backend_latency_ms: int = Field(
        default=0, ge=0, json_schema_extra={"env": "BACKEND_LATENCY_MS"}
    )

    @model_validator(mode="before")
    def set_database_url(cls, values):
        """Set the database_url dynamically based on the environment field."""
        environment = values.get("environment", os.getenv("ENV", "development"))
        if environment.lower() == "test":
            values["database_url"] = os.getenv(
                "TEST_DATABASE_URL", DEFAULT_TEST_DATABASE_URL
            )
        else:
            values["database_url"] = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)

        return values

    @property
    def is_production(self) -> bool:
        """True when running with ENV=production."""
        return self.environment.lower() == "production"

    @property
    def is_test(self) -> bool:
        """True when running with ENV=test."""
        return self.environment.lower() == "test"

    @property
    def database_url_obj(self) -> URL:
        """Parsed form of database_url."""
        if not self.database_url:
            raise ValueError("Database URL is not set.")
        return make_url(self.database_url)

    @property
    def bootstrap_timeout(self) -> float:
        """Bootstrap timeout in seconds."""
        return self.bootstrap_timeout_ms / 1000.0

    @property
    def search_debounce(self) -> float:
        """Search debounce delay in seconds."""
        return self.search_debounce_ms / 1000.0

    class ConfigDict:
        env_file = str(_PROJECT_ROOT / ".env")
        env_file_encoding = "utf-8"
        extra = "allow"  # Allow extra environment variables


def get_settings() -> Settings:
    """Build Settings from the environment and .env."""
    return Settings()
