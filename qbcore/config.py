"""
Configuration for the QuickBase platform

Provides:
- QuickBaseConfig model with validation bounds
- Environment loading (.env supported)
"""
import logging
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from qbcore.quickbase.errors import ConfigError

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.quickbase.com/v1"
DEFAULT_USER_AGENT = "QuickBase-MCP-Server/1.0.0"

REQUIRED_ENV = ["QB_REALM", "QB_USER_TOKEN", "QB_APP_ID"]


class QuickBaseConfig(BaseModel):
    """Connection settings for one QuickBase realm/application."""
    realm: str = Field(..., min_length=1, description="Realm hostname, e.g. company.quickbase.com")
    user_token: str = Field(..., min_length=1)
    app_id: str = Field(..., min_length=1)
    timeout: float = Field(30.0, gt=0, le=600, description="Request timeout in seconds")
    max_retries: int = Field(3, ge=0, le=10)
    codepage_table_id: Optional[str] = None
    codepage_version_table_id: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    base_url: str = API_BASE_URL

    @field_validator("realm")
    @classmethod
    def normalize_realm(cls, v: str) -> str:
        v = v.strip().lower()
        for prefix in ("https://", "http://"):
            if v.startswith(prefix):
                v = v[len(prefix):]
        v = v.rstrip("/")
        if "." not in v:
            v = f"{v}.quickbase.com"
        return v

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "QuickBaseConfig":
        """Build config from environment variables (and .env if present)."""
        load_dotenv(env_file)

        missing: List[str] = [key for key in REQUIRED_ENV if not os.environ.get(key, "").strip()]
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

        try:
            timeout_ms = float(os.environ.get("QB_DEFAULT_TIMEOUT", "30000"))
            max_retries = int(os.environ.get("QB_MAX_RETRIES", "3"))
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting: {e}") from e

        try:
            config = cls(
                realm=os.environ["QB_REALM"],
                user_token=os.environ["QB_USER_TOKEN"].strip(),
                app_id=os.environ["QB_APP_ID"].strip(),
                timeout=timeout_ms / 1000,
                max_retries=max_retries,
                codepage_table_id=_optional_env("CODEPAGE_TABLE_ID"),
                codepage_version_table_id=_optional_env("CODEPAGE_VERSION_TABLE_ID"),
            )
        except ValueError as e:
            raise ConfigError(str(e)) from e

        logger.info(f"Loaded QuickBase config for realm {config.realm}, app {config.app_id}")
        return config


def _optional_env(key: str) -> Optional[str]:
    value = os.environ.get(key, "").strip()
    return value or None
