"""
External command invocation.
Every collaborator tool (bedtools, bedGraphToBigWig, bamCoverage) is run through
an ExternalCommand so the pipeline never depends on how a process is started.
Tests substitute fakes.
"""

import logging
import os
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Set

from src.fragment_normalizer.core.errors import ExternalToolError

logger = logging.getLogger(__name__)

# Tools currently running in this process, one process group each
_ACTIVE: Set[subprocess.Popen] = set()


@dataclass
class CommandResult:
    returncode: int
    output: str


class ExternalCommand(Protocol):
    def run(self, args: List[str], stdout: Optional[Path] = None) -> CommandResult:
        """
        Run a command. When stdout is a path, the standard output is written there and
        only diagnostics are captured. Otherwise the standard output is captured on
        success and the diagnostics on failure.
        """
        ...


def _reset_interrupt():
    # Pool workers ignore SIGINT and an ignored disposition survives exec
    signal.signal(signal.SIGINT, signal.SIG_DFL)


def _kill_group(proc: subprocess.Popen, sig: int = signal.SIGTERM):
    try:
        os.killpg(proc.pid, sig)
    except (ProcessLookupError, PermissionError):
        pass


def terminate_active_commands():
    """
    Stop every tool started by this process, including the tool's own children.
    """
    for proc in list(_ACTIVE):
        logger.debug(f"Terminating process group {proc.pid} ({proc.args[0]})")
        _kill_group(proc)


class SubprocessCommand:
    """
    Shells out with subprocess. Each tool runs in its own session so that it and
    anything it spawns can be stopped together with terminate_active_commands().
    """

    def run(self, args: List[str], stdout: Optional[Path] = None) -> CommandResult:
        args = [str(a) for a in args]
        logger.debug(f"Running: {' '.join(args)}")
        out = open(stdout, "w", encoding="utf-8") if stdout is not None else None
        try:
            try:
                proc = subprocess.Popen(args, stdout=out if out is not None else subprocess.PIPE,
                                        stderr=subprocess.PIPE, text=True,
                                        start_new_session=True, preexec_fn=_reset_interrupt)
            except FileNotFoundError as e:
                # Missing binary, reported like a shell would
                return CommandResult(127, f"{args[0]}: command not found ({e})")

            _ACTIVE.add(proc)
            try:
                captured, errors = proc.communicate()
            except BaseException:
                _kill_group(proc, signal.SIGKILL)
                proc.wait()
                raise
            finally:
                _ACTIVE.discard(proc)
        finally:
            if out is not None:
                out.close()

        if stdout is not None or proc.returncode != 0:
            return CommandResult(proc.returncode, errors or "")
        return CommandResult(proc.returncode, captured or "")


def run_checked(command: ExternalCommand, args: List[str], stdout: Optional[Path] = None) -> CommandResult:
    """
    Run a command and raise ExternalToolError on a non-zero exit status.
    """
    result = command.run([str(a) for a in args], stdout=stdout)
    if result.returncode != 0:
        raise ExternalToolError(str(args[0]), result.returncode, result.output)
    return result
