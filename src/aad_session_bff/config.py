# src/aad_session_bff/config.py

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# .env is at the project root, two levels up from src/aad_session_bff/
CONFIG_FILE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT_DIR = CONFIG_FILE_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT_DIR / ".env"

if ENV_FILE_PATH.exists():
    load_dotenv(dotenv_path=ENV_FILE_PATH, override=False)


class Settings(BaseSettings):
    # === Entra ID (Azure AD) application details ===
    AZURE_TENANT_ID: str
    AZURE_CLIENT_ID: str
    AZURE_CLIENT_SECRET: str
    AZURE_RESOURCE_URI: str
    IDENTITY_HOST: str = "login.microsoftonline.com"

    # === Proxied API ===
    LOCAL_API_PATH: str = "/api"
    REMOTE_API_URI: AnyHttpUrl

    # === Session management ===
    SESSION_COOKIE_NAME: str = "aad.sid"
    SESSION_COOKIE_SECRET: str
    SESSION_COOKIE_SECURE: bool = True
    SESSION_EXPIRES_SECONDS: int = Field(default=12 * 60 * 60, gt=0)
    SESSION_STORE: Literal["memory", "file"] = "memory"
    SESSION_STORAGE_DIRECTORY: Path = Path("sessions")
    SESSION_REAP_INTERVAL_SECONDS: float = Field(default=60 * 60, ge=0)

    # === Timeouts ===
    TOKEN_EXCHANGE_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)
    PROXY_TIMEOUT_SECONDS: float = Field(default=120.0, gt=0)

    LOG_LEVEL: str = "info"

    @property
    def AUTHORITY(self) -> str:
        return f"https://{self.IDENTITY_HOST}/{self.AZURE_TENANT_ID}"

    @property
    def REMOTE_API_BASE(self) -> str:
        return str(self.REMOTE_API_URI).rstrip("/")

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False
    )

    @field_validator("LOCAL_API_PATH", mode="before")
    @classmethod
    def normalize_local_api_path(cls, v: Any) -> str:
        if not isinstance(v, str) or not v.startswith("/"):
            raise ValueError("LOCAL_API_PATH must be a path starting with '/'.")
        v = v.rstrip("/")
        if not v:
            raise ValueError("LOCAL_API_PATH cannot be the root path.")
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> str:
        if isinstance(v, str):
            return v.strip().lower()
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
