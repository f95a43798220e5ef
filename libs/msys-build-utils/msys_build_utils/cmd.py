import logging
import os
import shlex
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path

import psutil

logger = logging.getLogger("builder")

# ---------------------------------------------------------------------------- #
#                               Helper Functions                               #
# ---------------------------------------------------------------------------- #


# build a table mapping all non-printable characters to None
LINE_BREAK_CHARACTERS = set(["\n", "\r", "\t"])
NO_PRINT_TRANS_TABLE = {
    i: None
    for i in range(0, sys.maxunicode + 1)
    if not chr(i).isprintable() and not chr(i) in LINE_BREAK_CHARACTERS
}


# ---------------------------------------------------------------------------- #


def make_printable(data: str) -> str:
    """Replace non-printable characters in a string."""
    return data.translate(NO_PRINT_TRANS_TABLE)


# ---------------------------------------------------------------------------- #


def make_utf8(data: bytes | None) -> str:
    return "" if data is None else data.decode("utf-8", errors="ignore")


# ---------------------------------------------------------------------------- #


def merge_env(env: dict[str, str] | None) -> dict[str, str] | None:
    """Overlay `env` on a copy of the current process environment. The process
    environment itself is never modified."""
    if env is None:
        return None
    combined_env = os.environ.copy()
    combined_env.update(env)
    return combined_env


# ---------------------------------------------------------------------------- #
#                            Execution Status Class                            #
# ---------------------------------------------------------------------------- #


@dataclass
class ExecStatus:
    command: str
    stdout: str
    stderr: str
    returncode: int
    delta_time: float
    is_timeout: bool = False
    env: dict[str, str] | None = None
    cwd: Path | None = None

    def is_failure(self) -> bool:
        return not self.returncode == 0

    def __str__(self):
        return f"""
command   : {self.command}
cwd       : {self.cwd}
returncode: {self.returncode}
stdout:
{self.stdout}
stderr:
{self.stderr}
time: {self.delta_time:.2f}s
"""

    def to_script(self) -> str:
        """Render the invocation as a standalone bash script for manual replay."""
        script_lines = ["#!/usr/bin/env bash", ""]
        if self.cwd:
            script_lines.append(f"cd {self.cwd.absolute()}")
        env_prefix = ""
        if self.env:
            env_prefix = (" ".join(f"{key}='{val}'" for key, val in self.env.items())) + " "
        script_lines.append(f"{env_prefix}{self.command}")
        script_lines.append("")
        return "\n".join(script_lines)


# ---------------------------------------------------------------------------- #
#                       Core Command Invocation Function                       #
# ---------------------------------------------------------------------------- #


def invoke_command(
    command: list[str],
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
    timeout: float | None = None,
    explicit_clean_zombies: bool = False,
) -> ExecStatus:
    """Run `command` synchronously and capture its output.

    `cwd` and `env` apply to the child process only: `env` is merged on top of
    the current environment and neither the working directory nor `os.environ`
    of this process is touched.
    """

    # ------------------------- debug initial information ------------------------ #

    logger.info("run command: " + " ".join(command))
    logger.debug(f"  - cwd     : {cwd}")
    logger.debug(f"  - env     : {env}")
    logger.debug(f"  - timeout : {timeout}")

    # ----------------- preprocessing for zombie process cleanup ----------------- #

    pre_call_active_children = None
    if explicit_clean_zombies:
        pre_call_active_children = set(p.pid for p in psutil.Process().children(recursive=True))

    # ------------------------------ call subprocess ----------------------------- #

    start_time = time.time()
    is_timeout = False
    try:
        complete_proc = subprocess.run(
            command,
            shell=False,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            timeout=timeout,
            env=merge_env(env),
        )
        stdout_bytes, stderr_bytes = complete_proc.stdout, complete_proc.stderr
        returncode = complete_proc.returncode
    except subprocess.TimeoutExpired as time_err:
        stdout_bytes, stderr_bytes = time_err.stdout, time_err.stderr
        returncode = 124  # timeout return status
        is_timeout = True

    delta_time = time.time() - start_time

    # ------------------------------ process output ------------------------------ #

    stdout = make_printable(make_utf8(stdout_bytes))
    stderr = make_printable(make_utf8(stderr_bytes))

    logger.info(f"  => exit {returncode}")
    logger.debug("========== START STDOUT ==========")
    logger.debug(stdout)
    logger.debug("=========== END STDOUT ===========")

    logger.debug("========== START STDERR ==========")
    logger.debug(stderr)
    logger.debug("=========== END STDERR ===========")

    status = ExecStatus(
        shlex.join(command),
        stdout,
        stderr,
        returncode,
        delta_time,
        is_timeout,
        env,
        cwd,
    )

    # ----------------- postprocessing for zombie process cleanup ---------------- #

    if explicit_clean_zombies:
        assert pre_call_active_children is not None, "unexpected value of child process list"

        post_call_active_children = psutil.Process().children(recursive=True)
        possible_zombies = [
            p for p in post_call_active_children if p.pid not in pre_call_active_children
        ]

        for possible_zombie in possible_zombies:
            z_pid = possible_zombie.pid
            logger.debug(f"leftover child process detected, waiting for {z_pid} ...")
            try:
                if possible_zombie.status() == psutil.STATUS_ZOMBIE:
                    possible_zombie.wait()
                elif possible_zombie.is_running():
                    possible_zombie.terminate()
                    possible_zombie.wait(timeout=5)
            except (psutil.NoSuchProcess, psutil.TimeoutExpired):
                logger.error(f"unable to clean up leftover child process {z_pid}")

    return status
