"""Runtime settings for stylebridge, read from environment variables."""

import os
from pathlib import Path
from typing import Final, Optional


class Settings:
    """
    Application settings loaded from environment variables.

    Every value has a default so the CLI works without any environment set up.
    Command line flags take precedence over these values.
    """

    def __init__(self) -> None:
        # Model artifacts
        self.models_dir: Final[Path] = Path(os.getenv("STYLEBRIDGE_MODELS_DIR", "models"))

        # Compute device: auto, cuda, mps or cpu
        self.device: Final[str] = os.getenv("STYLEBRIDGE_DEVICE", "auto").lower()

        # Tensor value that corresponds to a full-intensity (255) pixel.
        # The fast-neural-style models are trained on [0, 255] input.
        self.tensor_range: Final[float] = float(os.getenv("STYLEBRIDGE_TENSOR_RANGE", "255.0"))

        # Host runtime
        self.host_workers: Final[int] = int(os.getenv("STYLEBRIDGE_HOST_WORKERS", "2"))

        # Logging
        self.log_level: Final[str] = os.getenv("STYLEBRIDGE_LOG_LEVEL", "INFO").upper()


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get application settings (created on first use)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the environment is read again."""
    global _settings
    _settings = None
