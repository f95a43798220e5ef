import logging
import os
import shlex
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Mapping

from msys_build_utils.cmd import ExecStatus, invoke_command

logger = logging.getLogger("builder")

MSYS2_HOME_VARIABLE = "MSYS2_HOME"
MSYSTEM_VARIABLE = "MSYSTEM"

DEFAULT_MSYS2_HOME = "c:/msys64"
DEFAULT_MSYSTEM = "MINGW64"


# ---------------------------------------------------------------------------- #
#                                Path Helpers                                  #
# ---------------------------------------------------------------------------- #


def to_forward_slashes(path: PurePath | str) -> str:
    """MSYS2 bash accepts `C:/x/y` style paths but not backslashes."""
    return str(path).replace("\\", "/")


# ---------------------------------------------------------------------------- #
#                                  MSYS Shell                                  #
# ---------------------------------------------------------------------------- #


@dataclass(frozen=True)
class MsysShell:
    """Runs shell command lines through the login bash of an MSYS2 installation.

    The installation root and the `MSYSTEM` mode are fixed at construction.
    Every call passes its working directory and `MSYSTEM` to the child process
    explicitly, so the caller's working directory and environment stay as they
    were regardless of how the command ends.

    `timeout` bounds every single command in seconds; a command that runs
    longer is killed and reported with exit status 124.
    """

    home: str = DEFAULT_MSYS2_HOME
    msystem: str = DEFAULT_MSYSTEM
    timeout: float | None = None

    @classmethod
    def from_environ(
        cls, environ: Mapping[str, str] | None = None, timeout: float | None = None
    ) -> "MsysShell":
        environ = os.environ if environ is None else environ
        return cls(
            home=environ.get(MSYS2_HOME_VARIABLE) or DEFAULT_MSYS2_HOME,
            msystem=environ.get(MSYSTEM_VARIABLE) or DEFAULT_MSYSTEM,
            timeout=timeout,
        )

    @property
    def bash(self) -> str:
        return f"{to_forward_slashes(self.home)}/usr/bin/bash.exe"

    @property
    def env(self) -> dict[str, str]:
        return {MSYSTEM_VARIABLE: self.msystem}

    def command_line(self, directory: Path, command: str) -> list[str]:
        # the login shell resets the cwd to $HOME, hence the explicit `cd`
        script = f"cd {shlex.quote(to_forward_slashes(directory))} && {command}"
        return [self.bash, "-lc", script]

    def run(self, directory: Path, command: str) -> ExecStatus:
        logger.info(command)
        return invoke_command(
            self.command_line(directory, command),
            cwd=directory,
            env=self.env,
            timeout=self.timeout,
            explicit_clean_zombies=True,
        )


# ---------------------------------------------------------------------------- #
