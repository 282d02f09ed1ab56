# Copyright 2025 KTTC AI (https://github.com/kttc-ai)
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Configuration management for l10ntm.

Uses Pydantic Settings to load configuration from environment variables
and .env files. Engine classes never read the global settings themselves;
they receive a :class:`TMContext` built from them.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from l10ntm.core.models import Partitioning, StoreAccess


class TmStoreConfig(BaseModel):
    """Configuration of one TM store."""

    id: str = Field(..., description="Store id", min_length=1)
    type: str = Field(default="jsonl", description="Store implementation")
    base_dir: Path = Field(..., description="Directory holding the store files")
    access: StoreAccess = Field(default=StoreAccess.READWRITE, description="Access mode")
    partitioning: Partitioning = Field(
        default=Partitioning.LANGUAGE, description="Block partitioning strategy"
    )


class Settings(BaseSettings):
    """Application settings.

    Loads configuration from environment variables or .env file.
    All settings can be overridden via environment variables with L10NTM_ prefix.

    Example .env file:
        L10NTM_BASE_DIR=/srv/l10n
        L10NTM_PARALLELISM=8
        L10NTM_TM_STORES='[{"id": "shared", "base_dir": "/srv/tm", "partitioning": "job"}]'

    Example usage:
        >>> settings = Settings()
        >>> print(settings.tm_db_path)
        /srv/l10n/l10ntm.db
    """

    base_dir: Path = Field(
        default=Path("."),
        description="Base directory for local state",
        json_schema_extra={"env": "L10NTM_BASE_DIR"},
    )

    tm_db_filename: str = Field(
        default="l10ntm.db",
        description="SQLite database file name, relative to base_dir",
        json_schema_extra={"env": "L10NTM_TM_DB_FILENAME"},
    )

    parallelism: int = Field(
        default=4,
        description="Language pairs processed concurrently",
        ge=1,
        le=64,
        json_schema_extra={"env": "L10NTM_PARALLELISM"},
    )

    regression: bool = Field(
        default=False,
        description="Deterministic ids and timestamps for reproducible fixtures",
        json_schema_extra={"env": "L10NTM_REGRESSION"},
    )

    tm_stores: list[TmStoreConfig] = Field(
        default_factory=list,
        description="Configured TM stores",
        json_schema_extra={"env": "L10NTM_TM_STORES"},
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
        json_schema_extra={"env": "L10NTM_LOG_LEVEL"},
    )

    # Model configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="L10NTM_",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def tm_db_path(self) -> Path:
        """Full path of the local TM database."""
        return self.base_dir / self.tm_db_filename

    def to_context(self) -> TMContext:
        return TMContext(
            base_dir=self.base_dir, regression=self.regression, parallelism=self.parallelism
        )


@dataclass(frozen=True)
class TMContext:
    """Explicit runtime context handed to the manager.

    Attributes:
        base_dir: Base directory for local state
        regression: Use deterministic ids and timestamps
        parallelism: Default number of pairs processed concurrently
    """

    base_dir: Path = Path(".")
    regression: bool = False
    parallelism: int = 4


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance.

    Returns:
        Settings instance

    Example:
        >>> settings = get_settings()
        >>> print(settings.parallelism)
        4
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Forget the global settings so the next call reloads them."""
    global _settings
    _settings = None


__all__ = ["Settings", "TMContext", "TmStoreConfig", "get_settings", "reset_settings"]
