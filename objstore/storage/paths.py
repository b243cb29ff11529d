"""Object key normalization helpers shared by every backend."""

from __future__ import annotations

import os
import posixpath


def clean_key(key: str) -> str:
    """
    Canonicalize a client supplied relative path into an object key.

    Backslashes become forward slashes, then the path is cleaned lexically as
    if rooted at ``/``: ``.`` segments and duplicate slashes disappear and
    ``..`` segments that would climb above the root are dropped. The result
    never starts with a slash; an empty or ``.``-only path gives ``""``.
    """
    key = (key or '').replace('\\', '/').lstrip('/')
    cleaned = posixpath.normpath('/' + key)
    return cleaned.lstrip('/')


def local_path_from_key(root: str, key: str) -> str:
    """Join a cleaned key under ``root`` using platform separators."""
    safe_key = clean_key(key)
    if not safe_key:
        return os.path.abspath(root)
    return os.path.abspath(os.path.join(root, *safe_key.split('/')))
