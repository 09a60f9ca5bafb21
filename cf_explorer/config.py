"""Unified configuration management using YAML with environment overlay."""

import os
import sys
import yaml
import logging
from pathlib import Path
from functools import lru_cache
from typing import Optional, Dict, Any, Tuple
from pydantic import BaseModel, Field, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Configuration file path
CONFIG_FILE = Path("config.yaml")
CONFIG_FILE_ENV_VAR = "CF_EXPLORER_CONFIG_FILE"


def default_cf_home() -> str:
    """Isolated CF_HOME so the explorer never touches the user's own cf config."""
    return str(Path.home() / ".cf-explorer" / "cf-home")


class CliConfig(BaseModel):
    """cf CLI backend configuration."""

    executable_path: Optional[str] = Field(
        None, description="Full path to the cf executable (PATH lookup if unset)"
    )
    config_dir: str = Field(
        default_factory=default_cf_home,
        description="Directory exported as CF_HOME for every cf invocation",
    )


class ApiConfig(BaseModel):
    """Cloud Controller API client configuration."""

    connect_timeout: float = Field(20.0, description="Connect timeout", gt=0)
    read_timeout: float = Field(60.0, description="Read timeout", gt=0)
    default_api_version: str = Field(
        "3.0.0", description="API version assumed when detection fails"
    )
    min_supported_api_version: str = Field(
        "2.128.0", description="Lowest Cloud Controller version without a warning"
    )


class SessionConfig(BaseModel):
    """Session and retry configuration."""

    retry_amount: int = Field(
        1, description="Retries after invalidating the cached token", ge=0, le=5
    )
    thread_pool_workers: int = Field(
        8, description="Max workers for the shared thread pool", ge=1, le=100
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field("INFO", description="Logging level")
    file_path: Optional[str] = Field(
        None, description="Optional rotating log file"
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class Settings(BaseSettings):
    """Unified settings for cf-explorer."""

    cli: CliConfig = Field(default_factory=CliConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="CF_EXPLORER_",
        env_nested_delimiter="__",  # Allows CF_EXPLORER_CLI__CONFIG_DIR
        extra="ignore",
        validate_default=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Customize settings sources to include the YAML file and flat env vars."""
        from pydantic_settings.sources import PydanticBaseSettingsSource

        class YamlConfigSource(PydanticBaseSettingsSource):
            """Load settings from the YAML file."""

            def get_field_value(
                self, field: FieldInfo, field_name: str
            ) -> Tuple[Any, str, bool]:
                data = self()
                if field_name in data:
                    return data[field_name], field_name, True
                return None, field_name, False

            def __call__(self) -> Dict[str, Any]:
                return cls._yaml_config_source()

        class LegacyEnvVars(PydanticBaseSettingsSource):
            """Load flat environment variables shared with the cf CLI."""

            def get_field_value(
                self, field: FieldInfo, field_name: str
            ) -> Tuple[Any, str, bool]:
                data = self()
                if field_name in data:
                    return data[field_name], field_name, True
                return None, field_name, False

            def __call__(self) -> Dict[str, Any]:
                return cls._legacy_env_source()

        # Precedence (first source wins): init > env > flat env > yaml > defaults
        return (
            init_settings,
            env_settings,
            LegacyEnvVars(settings_cls),
            YamlConfigSource(settings_cls),
            file_secret_settings,
        )

    @classmethod
    def _yaml_config_source(cls) -> Dict[str, Any]:
        """Load configuration from the YAML file."""
        # Under pytest, only an explicitly configured file is read
        if "pytest" in sys.modules and CONFIG_FILE_ENV_VAR not in os.environ:
            return {}

        config_file = Path(os.getenv(CONFIG_FILE_ENV_VAR, str(CONFIG_FILE)))
        if not config_file.exists():
            return {}

        try:
            with open(config_file) as f:
                config_data = yaml.safe_load(f) or {}
            logger.debug(f"Loaded configuration from {config_file}")
        except Exception as e:
            logger.warning(f"Failed to load {config_file}: {e}")
            return {}

        if not isinstance(config_data, dict):
            logger.warning(f"Ignoring {config_file}: top level is not a mapping")
            return {}

        # "cli:" with no content parses as None
        for key in list(config_data.keys()):
            if config_data[key] is None:
                config_data[key] = {}

        return config_data

    @classmethod
    def _legacy_env_source(cls) -> Dict[str, Any]:
        """Support flat environment variables."""
        config_data: Dict[str, Any] = {}

        legacy_mappings = {
            "CF_EXECUTABLE": ("cli", "executable_path"),
            "CF_EXPLORER_HOME": ("cli", "config_dir"),
            "LOG_LEVEL": ("logging", "level"),
            "CF_EXPLORER_LOG_FILE": ("logging", "file_path"),
        }

        for env_key, path in legacy_mappings.items():
            value = os.getenv(env_key)
            if value is None:
                continue

            current = config_data
            for key in path[:-1]:
                current = current.setdefault(key, {})
            current[path[-1]] = value

        return config_data

    def export_yaml(self) -> str:
        """Render the effective settings as YAML."""
        return yaml.safe_dump(self.model_dump(), sort_keys=False)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
