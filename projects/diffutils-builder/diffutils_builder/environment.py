import logging
from pathlib import Path
from typing import Protocol

from diffutils_builder.errors import CommandError
from diffutils_builder.settings import PACMAN_PROVISION_COMMANDS
from msys_build_utils.cmd import ExecStatus

logger = logging.getLogger("builder")


class Shell(Protocol):
    """Anything able to run a command line in a directory, e.g. `MsysShell`."""

    def run(self, directory: Path, command: str) -> ExecStatus: ...


# ---------------------------------------------------------------------------- #
#                              Checked Invocation                              #
# ---------------------------------------------------------------------------- #


def check_for_failure(status: ExecStatus, error_msg: str):
    if status.is_failure():
        logger.critical(error_msg)
        logger.info("=== STDOUT ===")
        logger.info(status.stdout)
        logger.info("=== STDERR ===")
        logger.info(status.stderr)
        logger.info("==============")
        logger.debug("replay with:\n" + status.to_script())
        raise CommandError(error_msg, status)


# ---------------------------------------------------------------------------- #


def run_checked(shell: Shell, directory: Path, command: str) -> ExecStatus:
    status = shell.run(directory, command)
    check_for_failure(status, f"command failed in {directory}: {command}")
    return status


# ---------------------------------------------------------------------------- #
#                                 Provisioning                                 #
# ---------------------------------------------------------------------------- #


def provision(shell: Shell):
    """Refresh the package database, upgrade the MSYS2 installation and install
    the mingw-w64 compiler toolchain. Stops at the first failing command."""
    for command in PACMAN_PROVISION_COMMANDS:
        run_checked(shell, Path("."), command)
