"""Configuration loading and Pydantic models for s3drive."""

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = Path("s3drive.yaml")
DEFAULT_PART_SIZE = 5 * 1024 * 1024


class ServerConfig(BaseModel):
    """Server binding and runtime configuration."""

    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    log_format: str = "text"
    shutdown_timeout: int = 30
    operation_log: str = "./logs"


class StorageConfig(BaseModel):
    """Object store backend configuration."""

    backend: str = "aws"
    bucket: str = ""
    region: str = "us-east-1"
    endpoint_url: str = ""
    use_path_style: bool = False
    access_key_id: str = ""
    secret_access_key: str = ""
    credentials_file: str = "./resources/credentials.json"
    part_size: int = DEFAULT_PART_SIZE
    memory_max_size_bytes: int = 0


class UploadConfig(BaseModel):
    """Multipart upload pipeline limits."""

    idle_timeout_seconds: float = 30.0
    max_field_size: int = 64 * 1024
    queue_depth: int = 8


class ObservabilityConfig(BaseModel):
    """Metrics and health endpoint toggles."""

    metrics: bool = True
    health_check: bool = True


class DriveConfig(BaseModel):
    """Top-level s3drive configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


def _parse_server(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the server section from YAML data into a dict for Pydantic."""
    if data is None:
        return {}
    keys = ("host", "port", "log_level", "log_format", "shutdown_timeout", "operation_log")
    return {k: data[k] for k in keys if k in data}


def _parse_storage(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the storage section from YAML data.

    Handles nested structure: storage.aws.bucket -> bucket,
    storage.memory.max_size_bytes -> memory_max_size_bytes, etc.
    """
    if data is None:
        return {}

    result: dict[str, Any] = {}
    if "backend" in data:
        result["backend"] = data["backend"]
    if "credentials_file" in data:
        result["credentials_file"] = data["credentials_file"]

    aws_section = data.get("aws")
    if isinstance(aws_section, dict):
        for key in (
            "bucket",
            "region",
            "endpoint_url",
            "use_path_style",
            "access_key_id",
            "secret_access_key",
            "part_size",
        ):
            if key in aws_section:
                result[key] = aws_section[key]

    memory_section = data.get("memory")
    if isinstance(memory_section, dict) and "max_size_bytes" in memory_section:
        result["memory_max_size_bytes"] = memory_section["max_size_bytes"]

    return result


def _parse_section(data: dict[str, Any] | None) -> dict[str, Any]:
    """Flat sections map one-to-one onto their Pydantic model."""
    if data is None:
        return {}
    return dict(data)


def load_config(path: Path) -> DriveConfig:
    """Load a DriveConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated DriveConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return DriveConfig(
        server=ServerConfig(**_parse_server(raw.get("server"))),
        storage=StorageConfig(**_parse_storage(raw.get("storage"))),
        upload=UploadConfig(**_parse_section(raw.get("upload"))),
        observability=ObservabilityConfig(**_parse_section(raw.get("observability"))),
    )


def apply_credentials(config: DriveConfig, path: Path) -> None:
    """Fill empty storage fields from a JSON credentials file.

    The file uses the keys ``AWS_KEY``, ``AWS_SECRET``, ``BucketName`` and
    ``Location``. Values already set in the config win. A missing file is
    not an error; the AWS credential chain is used instead.

    Raises:
        ValueError: If the file exists but is not a JSON object.
    """
    if not path.is_file():
        return
    with open(path, "r") as fh:
        raw = json.load(fh)
    if not isinstance(raw, dict):
        raise ValueError(f"Credentials file {path} must contain a JSON object")

    storage = config.storage
    if not storage.access_key_id:
        storage.access_key_id = raw.get("AWS_KEY", "")
    if not storage.secret_access_key:
        storage.secret_access_key = raw.get("AWS_SECRET", "")
    if not storage.bucket:
        storage.bucket = raw.get("BucketName", "")
    if raw.get("Location") and storage.region == StorageConfig().region:
        storage.region = raw["Location"]


def apply_env(config: DriveConfig, environ: Mapping[str, str]) -> None:
    """Apply environment overrides (currently only ``PORT``).

    Raises:
        ValueError: If PORT is not an integer.
    """
    port = environ.get("PORT")
    if port:
        config.server.port = int(port)


def load_settings(environ: Mapping[str, str] | None = None) -> DriveConfig:
    """Build the effective configuration from file, credentials and env.

    ``S3DRIVE_CONFIG`` names the YAML file; without it ``s3drive.yaml`` in
    the working directory is used when present, otherwise defaults apply.
    """
    environ = os.environ if environ is None else environ

    config_path = environ.get("S3DRIVE_CONFIG")
    if config_path:
        config = load_config(Path(config_path))
    elif DEFAULT_CONFIG_PATH.is_file():
        config = load_config(DEFAULT_CONFIG_PATH)
    else:
        config = DriveConfig()

    apply_credentials(config, Path(config.storage.credentials_file))
    apply_env(config, environ)
    return config
