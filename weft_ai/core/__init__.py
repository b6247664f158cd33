"""
Core utilities and configuration for Weft-AI.

This package provides core functionality including settings, logging
configuration, monitoring and the shared error taxonomy.
"""

from weft_ai.core.logging_config import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
