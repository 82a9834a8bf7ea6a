"""
Configuration settings for imagehandle.
Uses pydantic-settings for environment variable support.
"""

import logging
from functools import lru_cache

from PIL import Image
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

# Resampling filters selectable through IMAGEHANDLE_RESAMPLE
RESAMPLE_FILTERS = {
    'nearest': Image.Resampling.NEAREST,
    'bilinear': Image.Resampling.BILINEAR,
    'bicubic': Image.Resampling.BICUBIC,
    'lanczos': Image.Resampling.LANCZOS,
}


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    log_level: str = Field(default="INFO")

    # Interpolation used by scale and rotate
    resample: str = Field(default="bilinear")

    # Resolution reported for files that carry no DPI metadata
    default_dpi: int = Field(default=96, gt=0)

    model_config = {
        "env_prefix": "IMAGEHANDLE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("resample")
    @classmethod
    def _known_resample(cls, value: str) -> str:
        value = value.lower()
        if value not in RESAMPLE_FILTERS:
            raise ValueError(f"Unknown resample filter: {value}. Available: {list(RESAMPLE_FILTERS)}")
        return value

    @property
    def resample_filter(self) -> Image.Resampling:
        """Returns the Pillow resampling constant for ``resample``."""
        return RESAMPLE_FILTERS[self.resample]


@lru_cache()
def get_settings() -> Settings:
    """Returns cached settings instance."""
    return Settings()


def configure_logging(verbose: bool = False) -> None:
    """
    Set up console logging at IMAGEHANDLE_LOG_LEVEL. ``verbose`` lowers the
    imagehandle loggers to DEBUG; Pillow's own loggers are held at WARNING
    since their debug output is per-chunk decoder tracing.
    """
    level = getattr(logging, get_settings().log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger('PIL').setLevel(logging.WARNING)
    if verbose:
        logging.getLogger('imagehandle').setLevel(logging.DEBUG)
