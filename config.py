"""Configuration settings for the Content Store Service."""
import os
from pathlib import Path
from typing import FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, field_validator

# Storage limits
MAX_UPLOAD_SIZE = 50 * 1024 * 1024  # 50MB
CHUNK_SIZE = 64 * 1024  # 64KB

# Key constraints
MAX_KEY_LENGTH = 200

# Directory paths
DATA_DIR = "./data"
TEMP_DIR_NAME = ".incoming"

# Server
HOST = "0.0.0.0"
PORT = 8080

# CORS
DEFAULT_ALLOWED_ORIGINS = ("https://excalidraw.com",)

STORE_BACKENDS = ("file", "memory")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return float(value)


class Settings(BaseModel):
    """Process configuration, built once at startup and never mutated."""

    model_config = ConfigDict(frozen=True)

    host: str = HOST
    port: int = PORT
    data_dir: Path = Path(DATA_DIR)
    temp_dir: Optional[Path] = None
    max_upload_size: int = MAX_UPLOAD_SIZE
    chunk_size: int = CHUNK_SIZE
    upload_timeout: Optional[float] = None
    download_timeout: Optional[float] = None
    cors_allow_all: bool = False
    cors_allowed_origins: FrozenSet[str] = frozenset(DEFAULT_ALLOWED_ORIGINS)
    store_backend: str = "file"

    @field_validator("port")
    @classmethod
    def validate_port(cls, v):
        if not 0 < v < 65536:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator("max_upload_size", "chunk_size")
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("Sizes must be positive")
        return v

    @field_validator("upload_timeout", "download_timeout")
    @classmethod
    def validate_timeout(cls, v):
        if v is not None and v <= 0:
            raise ValueError("Timeouts must be positive")
        return v

    @field_validator("store_backend")
    @classmethod
    def validate_backend(cls, v):
        if v not in STORE_BACKENDS:
            raise ValueError(f"Unknown store backend {v!r}, expected one of {STORE_BACKENDS}")
        return v

    @property
    def incoming_dir(self) -> Path:
        """Directory holding uploads that have not finished yet."""
        return self.temp_dir if self.temp_dir is not None else self.data_dir / TEMP_DIR_NAME

    @classmethod
    def from_env(cls) -> "Settings":
        """Read the settings from environment variables."""
        origins = os.getenv("CORS_ALLOWED_ORIGINS")
        if origins is None:
            allowed = frozenset(DEFAULT_ALLOWED_ORIGINS)
        else:
            allowed = frozenset(o.strip() for o in origins.split(",") if o.strip())

        temp_dir = os.getenv("TEMP_DIR")
        return cls(
            host=os.getenv("HOST", HOST),
            port=int(os.getenv("PORT", PORT)),
            data_dir=Path(os.getenv("DATA_DIR", DATA_DIR)),
            temp_dir=Path(temp_dir) if temp_dir else None,
            max_upload_size=int(os.getenv("MAX_UPLOAD_SIZE", MAX_UPLOAD_SIZE)),
            chunk_size=int(os.getenv("CHUNK_SIZE", CHUNK_SIZE)),
            upload_timeout=_env_float("UPLOAD_TIMEOUT"),
            download_timeout=_env_float("DOWNLOAD_TIMEOUT"),
            cors_allow_all=_env_bool("CORS_ALLOW_ALL", False),
            cors_allowed_origins=allowed,
            store_backend=os.getenv("STORE_BACKEND", "file"),
        )
