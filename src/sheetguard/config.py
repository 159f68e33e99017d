"""Configuration for sheetguard.

Values are layered, highest priority first: keyword arguments, environment
variables (``SHEETGUARD_*``, plus ``OPENAI_API_KEY`` and ``OPENAI_BASE_URL``),
the YAML config file, and the defaults below.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import AliasChoices, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from sheetguard.contracts.common import ConfigError
from sheetguard.io.fileops import read_config_text

CONFIG_FILENAME = "sheetguard.yaml"
ENV_PREFIX = "SHEETGUARD_"


class Settings(BaseSettings):
    """Settings for the pipeline, its model adapters and its backend."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_ignore_empty=True,
        extra="ignore",
        yaml_file_encoding="utf-8-sig",
    )

    # Spreadsheet backend: either a remote gateway URL or a local workbook
    backend_url: str | None = Field(None, description="Spreadsheet backend gateway URL")
    backend_token: str | None = Field(None, description="Token sent with every backend request")
    backend_timeout: float = Field(30.0, gt=0, description="Backend request timeout in seconds")
    workbook_path: str | None = Field(None, description="Local .xlsx used instead of a remote backend")

    # Fallback normalizer service; the in-process rule engine is used when unset
    normalizer_url: str | None = Field(None, description="Normalization endpoint URL")
    normalizer_api_key: str | None = Field(None, description="Bearer token for the normalizer")
    normalizer_timeout: float = Field(15.0, gt=0, description="Normalizer timeout in seconds")

    # Primary structured-output model
    # the key and base URL also come from the unprefixed variables the OpenAI SDK reads
    openai_api_key: str | None = Field(
        None,
        validation_alias=AliasChoices("openai_api_key", "OPENAI_API_KEY"),
        description="API key for the primary model",
    )
    openai_base_url: str | None = Field(
        None,
        validation_alias=AliasChoices("openai_base_url", "OPENAI_BASE_URL"),
        description="OpenAI-compatible base URL",
    )
    model: str = Field("gpt-4o-mini", description="Function-calling model name")
    temperature: float = Field(0.1, ge=0.0, le=2.0, description="Primary model temperature")

    # Validation
    decimal_separator: Literal[".", ","] = Field(".", description="Decimal separator for numbers")
    low_confidence_threshold: float = Field(
        0.6, ge=0.0, le=1.0, description="Column confidence below which fields are flagged"
    )

    author: str = Field("user", description="Author recorded on backend writes")
    policy_path: str | None = Field(None, description="Optional sheetguard-policy.yaml path")
    log_level: str = Field("WARNING", description="Logging level")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, env_settings, YamlConfigSettingsSource(settings_cls)

    @classmethod
    def load(cls, path: str | Path | None = None) -> "Settings":
        """Settings with *path* as the YAML layer.

        Without *path*, ``sheetguard.yaml`` in the working directory is used
        when it exists. Any problem with the file or a value is a ``ConfigError``.
        """
        if path is None and Path(CONFIG_FILENAME).is_file():
            path = CONFIG_FILENAME
        if path is None:
            settings_cls = cls
        else:
            _check_mapping(path)
            settings_cls = type(cls.__name__, (cls,), {
                "__module__": __name__,
                "model_config": SettingsConfigDict(yaml_file=str(path)),
            })
        try:
            return settings_cls()
        except ValueError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e


def _check_mapping(path: str | Path) -> None:
    try:
        loaded: Any = yaml.safe_load(read_config_text(path))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    if loaded is not None and not isinstance(loaded, dict):
        raise ConfigError(f"Config {path} must be a mapping")
