"""
Unified diff application for the extracted source tree.

Each configured patch is applied in memory to exactly one target file; the
pre-patch content is kept next to it as `<file>.orig`. Patches are applied in
configuration order and a failing patch aborts the run without rolling back the
files patched before it.

Hunks are matched strictly (no fuzz). A hunk is first tried at the line its
header names, shifted by what the previous hunks added or removed, and then at
the closest offset where every context and removed line matches.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from diffutils_builder.config import BuildConfig, PatchRecord
from diffutils_builder.errors import FilesystemError, PatchError
from diffutils_builder.settings import BACKUP_SUFFIX
from msys_build_utils.file import (
    copy_file,
    read_text_preserving_newlines,
    write_text_preserving_newlines,
)

logger = logging.getLogger("builder")

_HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
_NO_NEWLINE_MARKER = "\\"

# ---------------------------------------------------------------------------- #
#                                  Diff Model                                  #
# ---------------------------------------------------------------------------- #


@dataclass
class Hunk:
    old_start: int
    old_len: int
    new_start: int
    new_len: int
    # (op, text) with op in " ", "-", "+"
    lines: list[tuple[str, str]] = field(default_factory=list)
    old_missing_newline: bool = False
    new_missing_newline: bool = False

    @property
    def old_lines(self) -> list[str]:
        return [text for op, text in self.lines if op != "+"]

    @property
    def new_lines(self) -> list[str]:
        return [text for op, text in self.lines if op != "-"]


# ---------------------------------------------------------------------------- #
#                                    Parsing                                   #
# ---------------------------------------------------------------------------- #


def _split_keepends(content: str) -> list[str]:
    # str.splitlines() would also break on form feeds, which GNU sources use
    parts = content.split("\n")
    lines = [p + "\n" for p in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def _line_body(line: str) -> str:
    if line.endswith("\n"):
        line = line[:-1]
        if line.endswith("\r"):
            line = line[:-1]
    return line


def parse_unified_diff(patch_text: str) -> list[Hunk]:
    """Parse the hunks of a unified diff. File headers and any other text
    outside of hunks are ignored."""
    raw_lines = [_line_body(line) for line in _split_keepends(patch_text)]

    hunks: list[Hunk] = []
    idx = 0
    while idx < len(raw_lines):
        header = _HUNK_HEADER_RE.match(raw_lines[idx])
        idx += 1
        if not header:
            continue

        old_start, old_len, new_start, new_len = header.groups()
        hunk = Hunk(
            old_start=int(old_start),
            old_len=1 if old_len is None else int(old_len),
            new_start=int(new_start),
            new_len=1 if new_len is None else int(new_len),
        )
        old_left, new_left = hunk.old_len, hunk.new_len
        last_op = None

        while old_left > 0 or new_left > 0:
            if idx >= len(raw_lines):
                raise PatchError(f"unexpected end of patch in hunk #{len(hunks) + 1}")
            line = raw_lines[idx]
            idx += 1
            if line.startswith(_NO_NEWLINE_MARKER):
                _mark_missing_newline(hunk, last_op)
                continue
            op, text = (line[0], line[1:]) if line else (" ", "")
            if op == " ":
                old_left -= 1
                new_left -= 1
            elif op == "-":
                old_left -= 1
            elif op == "+":
                new_left -= 1
            else:
                raise PatchError(f"malformed line in hunk #{len(hunks) + 1}: {line!r}")
            if old_left < 0 or new_left < 0:
                raise PatchError(f"hunk #{len(hunks) + 1} does not match its line counts")
            hunk.lines.append((op, text))
            last_op = op

        if idx < len(raw_lines) and raw_lines[idx].startswith(_NO_NEWLINE_MARKER):
            _mark_missing_newline(hunk, last_op)
            idx += 1

        hunks.append(hunk)

    if not hunks:
        raise PatchError("patch does not contain any hunk")
    return hunks


def _mark_missing_newline(hunk: Hunk, last_op: str | None):
    if last_op is None:
        raise PatchError("'No newline at end of file' marker without a preceding line")
    if last_op in " -":
        hunk.old_missing_newline = True
    if last_op in " +":
        hunk.new_missing_newline = True


# ---------------------------------------------------------------------------- #
#                                  Application                                 #
# ---------------------------------------------------------------------------- #


def _matches_at(lines: list[str], pos: int, expected: list[str]) -> bool:
    return all(_line_body(lines[pos + i]) == text for i, text in enumerate(expected))


def _locate(lines: list[str], guess: int, min_pos: int, expected: list[str]) -> int | None:
    max_pos = len(lines) - len(expected)
    if max_pos < min_pos:
        return None
    guess = min(max(guess, min_pos), max_pos)
    for distance in range(0, max(guess - min_pos, max_pos - guess) + 1):
        for pos in (guess - distance, guess + distance):
            if min_pos <= pos <= max_pos and _matches_at(lines, pos, expected):
                return pos
    return None


def _produce(hunk: Hunk, original: list[str], newline: str, at_eof: bool) -> list[str]:
    produced = []
    cursor = 0
    for op, text in hunk.lines:
        if op == " ":
            produced.append(original[cursor])
            cursor += 1
        elif op == "-":
            cursor += 1
        else:
            produced.append(text + newline)

    for i in range(len(produced) - 1):
        if not produced[i].endswith("\n"):
            produced[i] += newline
    if produced:
        if at_eof and hunk.new_missing_newline:
            produced[-1] = _line_body(produced[-1])
        elif not produced[-1].endswith("\n"):
            produced[-1] += newline
    return produced


def apply_unified_diff(original: str, patch_text: str) -> str:
    """Apply every hunk of `patch_text` to `original` and return the new content."""
    lines = _split_keepends(original)
    newline = "\r\n" if lines and lines[0].endswith("\r\n") else "\n"

    min_pos = 0
    shift = 0
    for number, hunk in enumerate(parse_unified_diff(patch_text), start=1):
        expected = hunk.old_lines
        # a zero-length old range names the line after which to insert
        guess = (hunk.old_start if hunk.old_len == 0 else hunk.old_start - 1) + shift
        pos = _locate(lines, guess, min_pos, expected)
        if pos is None:
            raise PatchError(f"hunk #{number} failed to apply at line {hunk.old_start}")
        if pos != guess:
            logger.debug(f"hunk #{number} applied with offset {pos - guess}")

        end = pos + len(expected)
        produced = _produce(hunk, lines[pos:end], newline, at_eof=end == len(lines))
        lines[pos:end] = produced

        min_pos = pos + len(produced)
        shift = pos - (hunk.old_start - 1) + len(produced) - len(expected)
        if hunk.old_len == 0:
            shift -= 1

    return "".join(lines)


# ---------------------------------------------------------------------------- #
#                                Combined Actions                              #
# ---------------------------------------------------------------------------- #


def apply_patch(record: PatchRecord, root_dir: Path, source_tree: Path) -> Path:
    logger.info(f"Applying patch: [{record.patch}] to file: [{record.file}]")

    patch_path = root_dir / record.patch
    try:
        patch_text = read_text_preserving_newlines(patch_path)
    except OSError as e:
        raise PatchError(f"unable to read patch {patch_path}: {e}") from e

    file_path = source_tree / record.file
    try:
        unpatched = read_text_preserving_newlines(file_path)
    except OSError as e:
        raise PatchError(f"unable to read patch target {file_path}: {e}") from e

    try:
        patched = apply_unified_diff(unpatched, patch_text)
    except PatchError as e:
        raise PatchError(f"unable to apply {record.patch} to {record.file}: {e}") from e

    backup_path = file_path.with_name(file_path.name + BACKUP_SUFFIX)
    try:
        copy_file(file_path, backup_path)
        write_text_preserving_newlines(file_path, patched)
    except OSError as e:
        raise FilesystemError(f"unable to write patched file {file_path}: {e}") from e
    return file_path


def apply_patches(config: BuildConfig, root_dir: Path, source_tree: Path) -> list[Path]:
    return [apply_patch(record, root_dir, source_tree) for record in config.patches]
