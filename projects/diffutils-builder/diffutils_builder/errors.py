from enum import StrEnum

from msys_build_utils.cmd import ExecStatus


class Stage(StrEnum):
    CONFIG = "config"
    SOURCES = "sources"
    INSTALL_DIR = "install-dir"
    PATCHES = "patches"
    ENVIRONMENT = "environment"
    CONFIGURE = "configure"
    COMPILE = "compile"
    WORKAROUNDS = "workarounds"
    TEST = "test"
    INSTALL = "install"
    FINGERPRINT = "fingerprint"


# ---------------------------------------------------------------------------- #
#                                  Exceptions                                  #
# ---------------------------------------------------------------------------- #


class BuildException(Exception):
    """Base class of every failure that aborts the pipeline."""


class ConfigError(BuildException):
    pass


class IntegrityError(BuildException):
    def __init__(self, file_name: str, expected: str, actual: str):
        super().__init__(
            f"Tarball sha256 sum mismatch, file: [{file_name}],"
            f" expected: [{expected}], actual: [{actual}]"
        )
        self.file_name = file_name
        self.expected = expected
        self.actual = actual


class FilesystemError(BuildException):
    pass


class FetchError(BuildException):
    pass


class ExtractError(BuildException):
    pass


class PatchError(BuildException):
    pass


class CommandError(BuildException):
    def __init__(self, message: str, status: ExecStatus):
        super().__init__(f"{message} (exit {status.returncode})")
        self.status = status


class BuildStateError(BuildException):
    pass
