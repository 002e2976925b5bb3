"""Pydantic models for db-drift configuration."""

from pydantic import BaseModel, Field, field_validator

from db_drift.schema.serialization import SNAPSHOT_FORMATS

SUPPORTED_PROVIDERS = ("postgres",)


class DatabaseProfile(BaseModel):
    """Database connection profile from db-drift.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "postgres"  # Defaults to postgres
    schemas: list[str] = Field(default_factory=lambda: ["public"])

    @field_validator("provider")
    @classmethod
    def _check_provider(cls, value: str) -> str:
        if value not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Unsupported provider '{value}' (supported: {', '.join(SUPPORTED_PROVIDERS)})"
            )
        return value


class DriftConfig(BaseModel):
    """Complete configuration from db-drift.toml."""

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)
    snapshot_format: str = "binary"

    @field_validator("snapshot_format")
    @classmethod
    def _check_format(cls, value: str) -> str:
        if value not in SNAPSHOT_FORMATS:
            raise ValueError(
                f"Unsupported snapshot format '{value}' "
                f"(supported: {', '.join(SNAPSHOT_FORMATS)})"
            )
        return value
