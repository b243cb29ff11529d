"""
Strategies that project a private file into the public tree.

A symbolic link is used where the platform and process privileges allow it;
otherwise a hard link is created. The choice is made once, when a backend is
built, so the visibility logic in ``local`` never branches on the platform.
"""

import logging
import os
import tempfile
from typing import Optional

logger = logging.getLogger(__name__)


class SymlinkPublisher:
    """Absolute symbolic link from the public entry to the private file."""

    name = 'symlink'

    def link(self, private_path: str, public_path: str) -> None:
        os.symlink(os.path.abspath(private_path), public_path)


class HardlinkPublisher:
    """Hard link sharing the private file's inode."""

    name = 'hardlink'

    def link(self, private_path: str, public_path: str) -> None:
        os.link(private_path, public_path)


def symlinks_supported(probe_dir: Optional[str] = None) -> bool:
    """Try to create a symbolic link in a scratch directory."""
    if not hasattr(os, 'symlink'):
        return False
    try:
        with tempfile.TemporaryDirectory(dir=probe_dir) as tmp:
            target = os.path.join(tmp, 'target')
            open(target, 'wb').close()
            os.symlink(target, os.path.join(tmp, 'link'))
    except (OSError, NotImplementedError) as e:
        logger.debug(f"Symbolic links unavailable, falling back to hard links: {e}")
        return False
    return True


def select_publisher(probe_dir: Optional[str] = None):
    if symlinks_supported(probe_dir):
        return SymlinkPublisher()
    return HardlinkPublisher()
