"""
Configuration management for the scan admission webhook using Pydantic.
"""

from typing import Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseSettings):
    """Base configuration shared by the web services."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server configuration
    bind_address: str = Field(default="127.0.0.1")
    port: int = Field(default=8443, ge=1, le=65535)
    uds_path: Optional[str] = Field(default=None)

    # TLS configuration
    tls_cert_path: Optional[Path] = Field(default=None)
    tls_key_path: Optional[Path] = Field(default=None)

    # Debug mode
    debug: bool = Field(default=False)

    @field_validator("tls_cert_path", "tls_key_path")
    @classmethod
    def validate_paths(cls, v):
        """Validate that paths exist if specified."""
        if v is not None:
            path = Path(v) if not isinstance(v, Path) else v
            if not path.exists():
                raise ValueError(f"Path does not exist: {path}")
            return path
        return v

    def export_json(self) -> str:
        """Export configuration as JSON."""
        return self.model_dump_json(indent=2)


class ScannerSettings(BaseSettings):
    """Connection settings for the remote scanning engine."""

    model_config = SettingsConfigDict(
        env_prefix="SCANNER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    url: str = Field(default="http://localhost:8228/v1")
    token: str = Field(default="")

    # Set false only for in-cluster engines with self-signed certificates
    verify_tls: bool = Field(default=True)
    timeout: float = Field(default=10.0, gt=0)

    # Digest resolution retry budget (attempts include the first call)
    digest_attempts: int = Field(default=6, ge=1)
    digest_interval: float = Field(default=1.0, ge=0)

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class AdmissionConfig(ServerConfig):
    """Main configuration for the admission webhook."""

    # Overall budget for one admission review, kept below the API server's
    # webhook timeout (30s max).
    admission_timeout: float = Field(default=25.0, gt=0)

    # Rewrite images to repo@digest in /mutate responses
    pin_digests: bool = Field(default=False)

    scanner: ScannerSettings = Field(default_factory=ScannerSettings)

    def export_json(self) -> str:
        """Export configuration as JSON, without the scanner token."""
        return self.model_dump_json(indent=2, exclude={"scanner": {"token"}})


def load_config(**kwargs) -> AdmissionConfig:
    """Load configuration with environment variables and optional overrides."""
    return AdmissionConfig(**kwargs)
