"""YAML configuration loader for allocator, media and reconciler settings."""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

# Environment variable pointing at an alternative settings file
CONFIG_ENV_VAR = "EXCLUSIVE_LISTINGS_CONFIG"


class AllocatorSettings(BaseModel):
    """Listing id partitioning."""

    partition_threshold: int = Field(
        1_000_000, gt=1, description="Self-issued ids stay strictly below this value"
    )
    start_value: int = Field(1, ge=1, description="First id handed out by an empty counter")
    counter_name: str = Field("exclusive_listing", min_length=1, max_length=50)

    model_config = ConfigDict(frozen=True)


class MediaSettings(BaseModel):
    """Photo upload limits and image processing."""

    max_file_size: int = Field(10 * 1024 * 1024, gt=0, description="Bytes")
    allowed_mime_types: list[str] = Field(
        default_factory=lambda: [
            "image/jpeg",
            "image/jpg",
            "image/png",
            "image/gif",
            "image/webp",
        ]
    )
    max_photos: int = Field(100, ge=1, description="Photos per listing")
    max_dimension: int = Field(2048, ge=16, description="Longest edge in pixels")
    convert_to_webp: bool = True
    webp_quality: int = Field(80, ge=1, le=100)
    fallback_quality: int = Field(82, ge=1, le=100)
    transcode_workers: int = Field(2, ge=1)
    brokerage_name: str = Field("", description="Named in photo descriptions when set")
    optimize_skip_below: int = Field(
        150_000, ge=0, description="Stored photos smaller than this many bytes are not re-encoded"
    )
    optimize_batch_size: int = Field(10, ge=1, le=500)

    model_config = ConfigDict(frozen=True)


class StorageSettings(BaseModel):
    """Blob storage location and public URLs."""

    root: Path = Field(Path("data/media"), description="Directory holding stored files")
    base_url: str = Field("http://localhost:8000/media", description="Public URL of root")
    path_prefix: str = "exclusive-listings"
    existence_check: Literal["filesystem", "http"] = "filesystem"

    model_config = ConfigDict(frozen=True)


class ReconcilerSettings(BaseModel):
    """Existence checks during reconciliation."""

    check_timeout_seconds: float = Field(5.0, gt=0)
    check_concurrency: int = Field(8, ge=1)

    model_config = ConfigDict(frozen=True)


class Settings(BaseModel):
    """Complete application settings."""

    allocator: AllocatorSettings = Field(default_factory=AllocatorSettings)
    media: MediaSettings = Field(default_factory=MediaSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    reconciler: ReconcilerSettings = Field(default_factory=ReconcilerSettings)

    model_config = ConfigDict(frozen=True)


def _get_default_config_path() -> Path:
    """Get the default config path relative to project root."""
    return Path(__file__).parent.parent.parent / "config" / "settings.yaml"


def _load_raw_config(path: Path) -> dict[str, Any]:
    """Load raw YAML config from path.

    Args:
        path: Path to YAML config file.

    Returns:
        Raw config dictionary.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        yaml.YAMLError: If YAML parsing fails.
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r") as f:
        raw_config: dict[str, Any] | None = yaml.safe_load(f)

    return raw_config if raw_config is not None else {}


def load_settings(path: Path | None = None) -> Settings:
    """Load and validate settings from YAML.

    Resolution order:
        1. Explicit path argument (must exist)
        2. EXCLUSIVE_LISTINGS_CONFIG environment variable (must exist)
        3. Default config/settings.yaml (defaults are used if it is absent)

    Args:
        path: Path to YAML config file.

    Returns:
        Validated Settings instance.

    Raises:
        FileNotFoundError: If an explicitly requested config file doesn't exist.
        yaml.YAMLError: If YAML parsing fails.
        ValidationError: If config doesn't match expected schema.
    """
    if path is None and (env_path := os.environ.get(CONFIG_ENV_VAR)):
        path = Path(env_path)

    if path is None:
        default_path = _get_default_config_path()
        if not default_path.exists():
            return Settings()
        path = default_path

    raw_config = _load_raw_config(path)

    return Settings(
        allocator=AllocatorSettings(**(raw_config.get("allocator") or {})),
        media=MediaSettings(**(raw_config.get("media") or {})),
        storage=StorageSettings(**(raw_config.get("storage") or {})),
        reconciler=ReconcilerSettings(**(raw_config.get("reconciler") or {})),
    )
