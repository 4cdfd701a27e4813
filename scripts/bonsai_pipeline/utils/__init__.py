"""
Utility modules for image operations and console logging.
"""

from .image import ImageUtils
from .console import console, configure_logging

__all__ = [
    "ImageUtils",
    "console",
    "configure_logging",
]
