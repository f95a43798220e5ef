import hashlib
import json
import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import pytest

from msys_build_utils.cmd import ExecStatus

TREE_NAME = "diffutils-3.10"
TARBALL_URL = f"https://ftp.gnu.org/gnu/diffutils/{TREE_NAME}.tar.gz"

MAKEFILE = """\
LIBICONV = /mingw64/lib/libiconv.dll.a
LTLIBICONV = /mingw64/lib/libiconv.dll.a
LIBINTL = /mingw64/lib/libintl.dll.a
diff_LDADD = $(LIBICONV) $(LIBINTL)
"""

INIT_SH = """\
perms=$(ls -ld "$d" | cut -c1-10)
case $perms in drwx--[-S]---*) ;; *) fail_ "bad perms";; esac
"""

DIFF_C = """\
/* diff - compare files line by line */
#include <config.h>

int
main (int argc, char **argv)
{
  return 0;
}
"""


@dataclass
class FakeShell:
    """Records every command instead of starting MSYS2."""

    fail_on: Callable[[str], bool] = lambda command: False
    on_command: Callable[[Path, str], None] | None = None
    calls: list[tuple[Path, str]] = field(default_factory=list)

    def run(self, directory: Path, command: str) -> ExecStatus:
        self.calls.append((directory, command))
        if self.on_command is not None:
            self.on_command(directory, command)
        returncode = 2 if self.fail_on(command) else 0
        return ExecStatus(command, "", "fake stderr" if returncode else "", returncode, 0.0, cwd=directory)

    @property
    def commands(self) -> list[str]:
        return [command for _, command in self.calls]


def write_source_tree(tree: Path):
    (tree / "src").mkdir(parents=True)
    (tree / "tests").mkdir()
    (tree / "src" / "Makefile").write_text(MAKEFILE)
    (tree / "src" / "diff.c").write_text(DIFF_C)
    (tree / "tests" / "init.sh").write_text(INIT_SH)
    (tree / "configure").write_text("#!/bin/sh\n")


def make_tarball(directory: Path) -> tuple[Path, str]:
    staging = directory / "staging"
    write_source_tree(staging / TREE_NAME)
    tarball = directory / f"{TREE_NAME}.tar.gz"
    with tarfile.open(tarball, "w:gz") as tf:
        tf.add(staging / TREE_NAME, arcname=TREE_NAME)
    return tarball, hashlib.sha256(tarball.read_bytes()).hexdigest()


def write_config(root: Path, tarball: Path, sha256: str, patches=(), name="config.json") -> Path:
    config = {
        "tarball": {"url": TARBALL_URL, "localPath": str(tarball), "sha256": sha256},
        "patches": [{"patch": p, "file": f} for p, f in patches],
    }
    path = root / name
    path.write_text(json.dumps(config, indent=2))
    return path


@pytest.fixture
def tarball(tmp_path) -> tuple[Path, str]:
    return make_tarball(tmp_path / "upstream")


@pytest.fixture
def build_root(tmp_path) -> Path:
    root = tmp_path / "root"
    root.mkdir()
    return root


@pytest.fixture
def source_tree(tmp_path) -> Path:
    tree = tmp_path / "work" / TREE_NAME
    write_source_tree(tree)
    return tree
