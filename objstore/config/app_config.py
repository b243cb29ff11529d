"""
Environment loading and logging setup for applications embedding objstore.
"""

import logging
import os
import sys

from dotenv import load_dotenv

_environment_loaded = False


def load_environment(dotenv_path=None, override=False):
    """Load a .env file into os.environ once per process."""
    global _environment_loaded
    if _environment_loaded and dotenv_path is None:
        return
    load_dotenv(dotenv_path=dotenv_path, override=override)
    _environment_loaded = True


def configure_logging(level=None):
    """
    Configure root logging the way the rest of the stack expects.

    Opt-in: the library itself never installs handlers.
    """
    log_level = (level or os.environ.get('OBJSTORE_LOG_LEVEL', 'INFO')).upper()
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    handler.setFormatter(formatter)

    # Clear existing handlers to avoid duplicates
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)
    root_logger.addHandler(handler)

    # Silence noisy SDK debug logs
    for name in ('botocore', 'boto3', 'urllib3', 'oss2'):
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger
