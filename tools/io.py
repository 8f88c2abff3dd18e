#!/usr/bin/env python3
"""tools/io.py

Single source of truth for tiny filesystem helpers used across the pipeline.

Why this file exists
--------------------
The workflow editor, the settings loader and the orchestrator all read and
write JSON and copy small files around. Keeping one implementation here
avoids two helpers with the same name slowly diverging (different encodings,
different newline handling, temp files left behind on failure).

Design
------
- This module is intentionally small.
- It contains ONLY filesystem IO (no workflow policy).
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any


def read_json(path: Path) -> Any:
    """Read JSON from disk (UTF-8, BOM tolerated)."""
    with Path(path).open("r", encoding="utf-8-sig") as f:
        return json.load(f)


def write_json(path: Path, data: Any, *, indent: int | None = 2) -> None:
    """Write JSON to disk atomically (temp file + replace).

    The temp file lives next to the target so the final ``os.replace`` never
    crosses a filesystem boundary.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
            f.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def copy_file(src: Path, dst: Path) -> Path:
    """Copy ``src`` to ``dst`` verbatim, overwriting ``dst``.

    Raises FileNotFoundError when ``src`` is missing (callers decide whether
    that is fatal).
    """
    src = Path(src)
    dst = Path(dst)
    if not src.is_file():
        raise FileNotFoundError(f"File not found at `{src}`")
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src, dst)
    return dst
