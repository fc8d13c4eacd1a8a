from .config import Settings, get_settings
from .logger import setup_logger

__all__ = ["Settings", "get_settings", "setup_logger"]
