"""tools/core_fetch.py

HTTP download of prerequisite archives.

Design goals:
  - Keep network I/O out of the stager itself.
  - Best-effort: a failed download returns False and leaves no partial file.
"""

from __future__ import annotations

import logging
from pathlib import Path

import requests

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1 << 20


def fetch_archive(url: str, dest: Path, *, timeout_sec: int = 60) -> bool:
    """Stream ``url`` into ``dest``. Returns True on success."""
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    part = dest.with_name(dest.name + ".part")

    try:
        with requests.get(url, stream=True, timeout=timeout_sec) as resp:
            resp.raise_for_status()
            with part.open("wb") as f:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
    except (requests.RequestException, OSError) as e:
        logger.warning("Download failed for %s: %s", url, e)
        part.unlink(missing_ok=True)
        return False

    part.replace(dest)
    return True
