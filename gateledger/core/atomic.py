from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any

from gateledger.core.json_canon import pretty_json_text


class SymlinkTargetError(OSError):
    """Raised when an atomic write would replace a symlink instead of a regular file."""


def write_bytes_atomic(path: Path, data: bytes) -> None:
    """Write ``data`` to a temp file beside ``path`` and rename it over the target.

    Readers observe either the previous content or the new content, never a partial file.
    """

    path.parent.mkdir(parents=True, exist_ok=True)
    if path.is_symlink():
        raise SymlinkTargetError(f"symlink target not allowed: {path}")
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.tmp-", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def write_text_atomic(path: Path, text: str) -> None:
    write_bytes_atomic(path, text.encode("utf-8", errors="strict"))


def write_json_atomic(path: Path, obj: Any) -> None:
    write_text_atomic(path, pretty_json_text(obj))
