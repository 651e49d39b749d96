"""Configuration for sheetexport.

Two layers:
- the job file (``config.json``), validated with pydantic models whose
  aliases mirror the JSON keys (``fileId``, ``#serviceAccountJson``, ...)
- runtime tuning from environment variables via pydantic-settings
"""

from __future__ import annotations

import json
import re
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sheetexport.exceptions import UserError
from sheetexport.output import HeaderMode

COLUMN_RANGE_PATTERN = re.compile(
    r"^[A-Z]+([1-9][0-9]*)?:[A-Z]+([1-9][0-9]*)?$", re.IGNORECASE
)
COLUMN_RANGE_MESSAGE = (
    'Column range must be in format "A:E" (columns), "A1:E10" (bounded), '
    '"A10:E" (start row), or "A:E10" (end row)'
)


class HeaderConfig(BaseModel):
    """Header handling for one sheet."""

    model_config = ConfigDict(extra="ignore")

    rows: int = Field(default=1, ge=0)
    sanitize: bool = True

    @property
    def mode(self) -> HeaderMode:
        return HeaderMode.from_rows(self.rows)


class SheetConfig(BaseModel):
    """One sheet to export."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int = Field(ge=0)
    file_id: str = Field(alias="fileId", min_length=1)
    file_title: str = Field(alias="fileTitle", min_length=1)
    sheet_id: str = Field(alias="sheetId", min_length=1)
    sheet_title: str = Field(alias="sheetTitle", min_length=1)
    output_table: str = Field(alias="outputTable", min_length=1)
    enabled: bool = True
    column_range: str = Field(default="", alias="columnRange")
    header: HeaderConfig = Field(default_factory=HeaderConfig)

    @field_validator("sheet_id", mode="before")
    @classmethod
    def coerce_sheet_id(cls, v: Any) -> Any:
        """Sheet ids are numeric in the API but compared as strings."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("column_range")
    @classmethod
    def validate_column_range(cls, v: str) -> str:
        """Empty means the whole sheet; anything else must look like a range."""
        if v and not COLUMN_RANGE_PATTERN.match(v):
            raise ValueError(COLUMN_RANGE_MESSAGE)
        return v


class Parameters(BaseModel):
    """The ``parameters`` section of a job file."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    data_dir: str = Field(min_length=1)
    output_bucket: str = Field(default="", alias="outputBucket")
    service_account_json: dict[str, Any] | str | None = Field(
        default=None, alias="#serviceAccountJson"
    )
    sheets: list[SheetConfig]


class OAuthCredentialsConfig(BaseModel):
    """OAuth client and token data (``authorization.oauth_api.credentials``)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    app_key: str = Field(default="", alias="appKey")
    app_secret: str = Field(default="", alias="#appSecret")
    data: str | None = Field(default=None, alias="#data")


class OAuthApiConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    credentials: OAuthCredentialsConfig | None = None


class AuthorizationConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    oauth_api: OAuthApiConfig | None = None


class JobConfig(BaseModel):
    """A complete job file."""

    model_config = ConfigDict(extra="ignore")

    action: str = "run"
    parameters: Parameters
    authorization: AuthorizationConfig | None = None

    @property
    def oauth_credentials(self) -> OAuthCredentialsConfig | None:
        if self.authorization is None or self.authorization.oauth_api is None:
            return None
        return self.authorization.oauth_api.credentials


def load_job_config(path: str | Path, data_dir: str | None = None) -> JobConfig:
    """Read and validate a job file.

    Args:
        path: Path to the JSON job file
        data_dir: Overrides ``parameters.data_dir`` when given

    Raises:
        UserError: if the file is missing, not JSON or fails validation
    """
    path = Path(path)
    if not path.exists():
        raise UserError(f"Config file not found: {path}")
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise UserError(f"Invalid JSON in {path}: {e}") from e

    if data_dir is not None and isinstance(raw.get("parameters"), dict):
        raw["parameters"]["data_dir"] = data_dir

    try:
        return JobConfig.model_validate(raw)
    except ValidationError as e:
        raise UserError(f"Invalid configuration: {e}") from e


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables.

    Every field can be set with a ``SHEETEXPORT_`` prefixed variable, e.g.
    ``SHEETEXPORT_BACKOFF_ATTEMPTS=5``.
    """

    model_config = SettingsConfigDict(
        env_prefix="SHEETEXPORT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    backoff_attempts: int = Field(default=9, ge=0)
    fetch_row_size: int = Field(default=1000, ge=1)
    timeout: int = Field(default=60, ge=1)
    log_level: str = "INFO"
    json_logs: bool = False
    debug: bool = False

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one loguru knows."""
        allowed = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
        level = v.upper()
        if level not in allowed:
            raise ValueError(f"log_level must be one of: {sorted(allowed)}")
        return level


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
