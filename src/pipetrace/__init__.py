"""Directional dead-reckoning reconstruction of buried pipe routes."""
from pipetrace.config import APP_NAME, APP_VERSION

__version__ = APP_VERSION

__all__ = ["APP_NAME", "APP_VERSION", "__version__"]
