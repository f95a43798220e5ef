import logging
import re
from enum import StrEnum
from pathlib import Path

from diffutils_builder.environment import Shell, run_checked
from diffutils_builder.errors import BuildStateError, FilesystemError
from diffutils_builder.settings import (
    ALLOWED_TESTS,
    CONFIGURE_CFLAGS,
    MAKE_FLAGS,
    MINGW_CHOST,
    STATIC_LIBRARY_REWRITES,
    TEST_INIT_PERMS_CHECK,
    TEST_INIT_PERMS_RELAXED,
)
from msys_build_utils.file import replace_in_file
from msys_build_utils.msys import to_forward_slashes

logger = logging.getLogger("builder")


class BuildState(StrEnum):
    CONFIGURE = "configure"
    COMPILE = "compile"
    WORKAROUNDS = "workarounds"
    TEST = "test"
    INSTALL = "install"


BUILD_STATE_ORDER = [
    BuildState.CONFIGURE,
    BuildState.COMPILE,
    BuildState.WORKAROUNDS,
    BuildState.TEST,
    BuildState.INSTALL,
]


def configure_command(install_dir: Path) -> str:
    return " ".join(
        [
            "./configure",
            f"CFLAGS={CONFIGURE_CFLAGS}",
            f"--host={MINGW_CHOST}",
            f"--build={MINGW_CHOST}",
            f"--target={MINGW_CHOST}",
            f"--prefix={to_forward_slashes(install_dir)}",
            "--disable-dependency-tracking",
        ]
    )


def _edit_generated_file(path: Path, replacements: list[tuple[str, str]], count: int = 0) -> int:
    try:
        n = replace_in_file(
            path, [(re.escape(old), new.replace("\\", "\\\\")) for old, new in replacements], count
        )
    except OSError as e:
        raise FilesystemError(f"unable to edit {path}: {e}") from e
    if n == 0:
        logger.warning(f"no substitution applied to {path}")
    return n


class BuildDriver:
    """Runs configure, make, the allow-listed tests and make install in a
    source tree, strictly in that order. The first failing command raises and
    leaves every later state unvisited."""

    shell: Shell
    source_tree: Path
    install_dir: Path
    tests: list[str]

    state: BuildState | None
    completed: list[BuildState]

    def __init__(
        self,
        shell: Shell,
        source_tree: Path,
        install_dir: Path,
        tests: list[str] | None = None,
    ):
        self.shell = shell
        self.source_tree = source_tree
        self.install_dir = install_dir
        self.tests = list(ALLOWED_TESTS if tests is None else tests)
        self.state = None
        self.completed = []

    @property
    def makefile(self) -> Path:
        return self.source_tree / "src" / "Makefile"

    @property
    def tests_dir(self) -> Path:
        return self.source_tree / "tests"

    def run(self):
        for state in BUILD_STATE_ORDER:
            self.step(state)

    def step(self, state: BuildState):
        if len(self.completed) == len(BUILD_STATE_ORDER):
            raise BuildStateError(f"build state {state} entered after the build finished")
        expected = BUILD_STATE_ORDER[len(self.completed)]
        if state != expected:
            raise BuildStateError(f"build state {state} entered before {expected}")
        self.state = state
        logger.info(f"=== {state} ===")
        match state:
            case BuildState.CONFIGURE:
                self.configure()
            case BuildState.COMPILE:
                self.compile()
            case BuildState.WORKAROUNDS:
                self.apply_workarounds()
            case BuildState.TEST:
                self.check()
            case BuildState.INSTALL:
                self.install()
        self.completed.append(state)

    # ------------------------------- build states ------------------------------- #

    def configure(self):
        run_checked(self.shell, self.source_tree, configure_command(self.install_dir))

    def compile(self):
        # the Makefile is generated by configure, so it is edited in place
        _edit_generated_file(self.makefile, STATIC_LIBRARY_REWRITES)
        run_checked(self.shell, self.source_tree, f"make {MAKE_FLAGS}")

    def apply_workarounds(self):
        _edit_generated_file(
            self.tests_dir / "init.sh",
            [(TEST_INIT_PERMS_CHECK, TEST_INIT_PERMS_RELAXED)],
            count=1,
        )

    def check(self):
        for test in self.tests:
            logger.info(f"Running test: [{test}]")
            run_checked(self.shell, self.tests_dir, f"make check TESTS={test}")

    def install(self):
        run_checked(self.shell, self.source_tree, "make install")
