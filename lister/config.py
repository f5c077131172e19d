"""
config.py: Environment-driven configuration.

Read once at startup (after load_dotenv()). Persisted user settings such as
the API key or brand live in the catalog, not here.

  LISTER_DATA_DIR         root for catalog JSON + images (default ~/.product-lister)
  LISTER_STORAGE_BACKEND  "file" (default) or "sqlite"
  GEMINI_QUALITY_MODEL    image model for the quality tier
  GEMINI_FAST_MODEL       image model for the fast tier
  GEMINI_TEXT_MODEL       text model for listing + SEO analysis
  GEMINI_API_KEY          seeds settings on first run
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_DATA_DIR = Path.home() / ".product-lister"

QUALITY_MODEL = "gemini-3-pro-image-preview"     # Nano Banana Pro, best quality
FAST_MODEL = "gemini-2.5-flash-image"            # Nano Banana, fast
TEXT_MODEL = "gemini-2.5-flash"

STORAGE_BACKENDS = ("file", "sqlite")


@dataclass(frozen=True)
class ModelConfig:
    quality: str = QUALITY_MODEL
    fast: str = FAST_MODEL
    text: str = TEXT_MODEL


@dataclass(frozen=True)
class AppConfig:
    data_dir: Path = DEFAULT_DATA_DIR
    storage_backend: str = "file"
    models: ModelConfig = field(default_factory=ModelConfig)
    env_api_key: str = ""

    @property
    def images_dir(self) -> Path:
        return self.data_dir / "products"

    @property
    def images_db(self) -> Path:
        return self.data_dir / "images.db"

    @classmethod
    def from_env(cls) -> "AppConfig":
        backend = os.environ.get("LISTER_STORAGE_BACKEND", "file").strip().lower() or "file"
        if backend not in STORAGE_BACKENDS:
            raise ValueError(
                f"LISTER_STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}, got {backend!r}"
            )
        data_dir = os.environ.get("LISTER_DATA_DIR")
        return cls(
            data_dir=Path(data_dir).expanduser() if data_dir else DEFAULT_DATA_DIR,
            storage_backend=backend,
            models=ModelConfig(
                quality=os.environ.get("GEMINI_QUALITY_MODEL", QUALITY_MODEL),
                fast=os.environ.get("GEMINI_FAST_MODEL", FAST_MODEL),
                text=os.environ.get("GEMINI_TEXT_MODEL", TEXT_MODEL),
            ),
            env_api_key=os.environ.get("GEMINI_API_KEY", ""),
        )
