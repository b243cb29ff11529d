"""
Configuration helpers.
"""

from .app_config import configure_logging, load_environment

__all__ = ['configure_logging', 'load_environment']
