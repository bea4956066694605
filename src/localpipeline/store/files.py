"""Whole-document JSON file helpers shared by the persisted stores.

Writers always replace the complete document: the new content is written to
a temporary file in the same directory and moved over the target with
``os.replace``, so a crash leaves either the old or the new document.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def write_json_atomic(path: Path, data: Any) -> None:
    """Atomically replace ``path`` with the JSON encoding of ``data``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp:
            json.dump(data, tmp, indent=2)
            tmp.write("\n")
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def read_json(path: Path) -> Any:
    """Read and decode a JSON document.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the content is not valid JSON.
    """
    return json.loads(path.read_text(encoding="utf-8"))


def quarantine(path: Path) -> Path:
    """Copy an unreadable document aside so a reset does not destroy it.

    Returns:
        Path of the backup copy.
    """
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    backup = path.with_name(f"{path.name}.corrupt-{stamp}")
    shutil.copy2(path, backup)
    return backup


def file_signature(path: Path) -> tuple[int, int, int] | None:
    """Identify the current version of a file, None when it does not exist.

    Every atomic write creates a new inode, so the inode number changes
    even when two writes land within the same mtime tick.
    """
    try:
        st = path.stat()
    except FileNotFoundError:
        return None
    return (st.st_mtime_ns, st.st_ino, st.st_size)
