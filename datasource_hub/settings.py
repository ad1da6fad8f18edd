"""
Configuration settings for the Datasource Hub service.

Uses Pydantic Settings to manage environment variables and configuration
with proper validation and type checking.
"""

from typing import List
from pydantic import Field, validator, AliasChoices
from pydantic_settings import BaseSettings


# Plugins that are always enabled; everything else is switched on per environment.
CORE_PLUGINS = ("postgres", "mysql", "mariadb", "sqlite")


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application settings
    app_name: str = Field(default="Datasource Hub", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    debug: bool = Field(
        default=False,
        description="Debug mode",
        validation_alias=AliasChoices("DEBUG", "debug"),
    )

    # API settings
    api_host: str = Field(
        default="0.0.0.0",
        description="API host",
        validation_alias=AliasChoices("API_HOST", "api_host"),
    )
    api_port: int = Field(
        default=8000,
        description="API port",
        validation_alias=AliasChoices("API_PORT", "api_port"),
    )
    api_prefix: str = Field(default="/v1", description="API prefix")
    allowed_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    # Optional plugin toggles
    plugin_mssql_enabled: bool = Field(
        default=False,
        description="Register the SQL Server plugin",
        validation_alias=AliasChoices("PLUGIN_MSSQL_ENABLED", "plugin_mssql_enabled"),
    )
    plugin_oracle_enabled: bool = Field(
        default=False,
        description="Register the Oracle plugin",
        validation_alias=AliasChoices("PLUGIN_ORACLE_ENABLED", "plugin_oracle_enabled"),
    )
    plugin_snowflake_enabled: bool = Field(
        default=False,
        description="Register the Snowflake plugin",
        validation_alias=AliasChoices("PLUGIN_SNOWFLAKE_ENABLED", "plugin_snowflake_enabled"),
    )
    plugin_s3_enabled: bool = Field(
        default=False,
        description="Register the Amazon S3 plugin",
        validation_alias=AliasChoices("PLUGIN_S3_ENABLED", "plugin_s3_enabled"),
    )
    plugin_athena_enabled: bool = Field(
        default=False,
        description="Register the AWS Athena plugin",
        validation_alias=AliasChoices("PLUGIN_ATHENA_ENABLED", "plugin_athena_enabled"),
    )
    plugin_delta_table_aws_enabled: bool = Field(
        default=False,
        description="Register the Delta Lake (AWS) plugin",
        validation_alias=AliasChoices("PLUGIN_DELTA_AWS_ENABLED", "plugin_delta_table_aws_enabled"),
    )

    # SQL connection pool defaults
    pool_size: int = Field(default=5, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Maximum pool overflow")
    pool_timeout: int = Field(default=30, description="Pool checkout timeout in seconds")

    # Query and introspection settings
    query_preview_chars: int = Field(
        default=200,
        description="Maximum query characters kept in logs and error messages"
    )
    athena_poll_interval_seconds: float = Field(
        default=1.0,
        description="Delay between Athena query status checks"
    )
    athena_max_wait_seconds: float = Field(
        default=300.0,
        description="Hard ceiling on waiting for an Athena query to finish"
    )
    storage_max_keys: int = Field(
        default=1000,
        description="Default page size for object listings"
    )
    introspection_sample_rows: int = Field(
        default=100,
        description="Rows sampled when inferring columns from files"
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_format: str = Field(
        default="json",
        description="Log format (json, text)"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @validator("log_level")
    def validate_log_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @validator("log_format")
    def validate_log_format(cls, v):
        valid_formats = ["json", "text"]
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of {valid_formats}")
        return v.lower()

    @validator("query_preview_chars")
    def validate_query_preview_chars(cls, v):
        # Keep previews useful without dumping whole scripts into logs
        if v < 20:
            v = 20
        if v > 2000:
            v = 2000
        return v

    @validator("athena_poll_interval_seconds", "athena_max_wait_seconds")
    def validate_positive_seconds(cls, v):
        if v <= 0:
            raise ValueError("wait settings must be positive")
        return v

    def is_plugin_enabled(self, name: str) -> bool:
        """Check whether a plugin from the default catalog should be registered."""
        if name in CORE_PLUGINS:
            return True
        toggle = getattr(self, f"plugin_{name}_enabled", None)
        return bool(toggle)


# Global settings instance
settings = Settings()
