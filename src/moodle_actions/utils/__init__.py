"""
Utility module.

Common utilities for logging, bounded concurrency and text transformations.
"""

from .concurrency import run_bounded
from .logging import setup_logging, get_logger
from .text import format_file_size, html_to_text

__all__ = ["run_bounded", "setup_logging", "get_logger", "format_file_size", "html_to_text"]
