"""
Upload-directory helpers.
"""

from __future__ import annotations

import asyncio
import logging
import os
import random
import re
import time

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def unique_upload_path(upload_dir: str, original_name: str) -> str:
    """``<upload_dir>/<ms>-<random>-<sanitised name>``; the directory is created if missing."""
    os.makedirs(upload_dir, exist_ok=True)
    safe = _UNSAFE.sub("_", os.path.basename(original_name or "upload")) or "upload"
    prefix = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
    return os.path.join(upload_dir, f"{prefix}-{safe}")


def _write(path: str, content: bytes) -> None:
    with open(path, "wb") as fh:
        fh.write(content)


async def save_upload(upload_dir: str, original_name: str, content: bytes) -> str:
    path = unique_upload_path(upload_dir, original_name)
    await asyncio.to_thread(_write, path, content)
    logger.debug("Stored upload %s (%d bytes)", path, len(content))
    return path


def remove_quietly(path: str) -> None:
    """Delete a temp file; a missing file is not an error."""
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.error("Error deleting file %s: %s", path, exc)
