import hashlib
import logging
import os
import re
import shutil
import stat
from pathlib import Path

logger = logging.getLogger("builder")

SHA256_CHUNK_SIZE = 1024 * 1024

# ---------------------------------------------------------------------------- #
#                              Directory Helpers                               #
# ---------------------------------------------------------------------------- #


def create_dir(path: Path):
    path.mkdir(parents=True, exist_ok=True)


# ---------------------------------------------------------------------------- #


def _clear_readonly_and_retry(func, path, exc):
    # Windows refuses to delete read-only files
    logger.debug(f"clearing read-only flag of {path}")
    os.chmod(path, stat.S_IWRITE)
    func(path)


def ensure_empty_dir(path: Path):
    """Remove `path` recursively if it exists and recreate it empty. Read-only
    entries left by a previous run are made writable before removal."""
    if path.is_dir():
        logger.debug(f"removing directory {path}")
        shutil.rmtree(path, onexc=_clear_readonly_and_retry)
    elif path.exists():
        path.unlink()
    path.mkdir(parents=True)


# ---------------------------------------------------------------------------- #
#                                 File Helpers                                 #
# ---------------------------------------------------------------------------- #


def copy_file(source: Path, target: Path):
    """Copy the bytes of `source` to `target`, replacing `target` if present."""
    create_dir(target.parent)
    shutil.copyfile(source, target)


# ---------------------------------------------------------------------------- #


def read_text_preserving_newlines(path: Path) -> str:
    with open(path, "r", encoding="utf-8", errors="surrogateescape", newline="") as fp:
        return fp.read()


# ---------------------------------------------------------------------------- #


def write_text_preserving_newlines(path: Path, content: str):
    with open(path, "w", encoding="utf-8", errors="surrogateescape", newline="") as fp:
        fp.write(content)


# ---------------------------------------------------------------------------- #


def replace_in_file(path: Path, replacements: list[tuple[str, str]], count: int = 0) -> int:
    """Apply regex `(pattern, replacement)` pairs to the content of `path` in order.

    `count` limits the substitutions per pattern (0 means all). Returns the total
    number of substitutions made; the file is only rewritten if it changed.
    """
    content = read_text_preserving_newlines(path)
    total = 0
    for pattern, replacement in replacements:
        content, n = re.subn(pattern, replacement, content, count=count)
        total += n
    if total > 0:
        write_text_preserving_newlines(path, content)
    return total


# ---------------------------------------------------------------------------- #
#                                Digest Helpers                                #
# ---------------------------------------------------------------------------- #


def sha256_of_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as fp:
        for chunk in iter(lambda: fp.read(SHA256_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


# ---------------------------------------------------------------------------- #
