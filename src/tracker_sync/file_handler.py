"""Encoding-aware reads and crash-safe writes for data files.

Issue files, id mappings and attic entries all go through this module.
Writes are atomic: content lands in a temp file in the destination
directory and is moved into place with ``os.replace()``, so readers
never observe a half-written record even if the process dies mid-write.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from charset_normalizer import from_bytes

# =============================================================================
# Read
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file, detecting its encoding when it is not UTF-8.

    UTF-8 is tried first since every file this package writes is UTF-8;
    charset-normalizer is only consulted for files produced elsewhere.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).

    Raises:
        FileNotFoundError: If *path* does not exist.
    """
    raw = path.read_bytes()
    if not raw:
        return ("", "utf-8")

    try:
        return (raw.decode("utf-8").lstrip("\ufeff"), "utf-8")
    except UnicodeDecodeError:
        pass

    result = from_bytes(raw).best()
    if result is None:
        return (raw.decode("utf-8", errors="replace"), "utf-8")
    encoding = result.encoding
    if encoding == "ascii":
        encoding = "utf-8"
    return (str(result), encoding)


def read_text(path: Path) -> str:
    return read_file_with_encoding(path)[0]


# =============================================================================
# Write
# =============================================================================


def atomic_write(path: Path, content: str, encoding: str = "utf-8") -> int:
    """Write *content* to *path* atomically, creating parent directories.

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    encoded = content.encode(encoding)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(encoded)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    return len(encoded)
