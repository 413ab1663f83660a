"""Helpers for running the external annotation tool (VEP or a stand-in).

The tool is a filter: VCF on stdin, annotated VCF on stdout. Failures are
reported with the command line and the tail of its stderr.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import textwrap
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)


class ExternalCommandError(RuntimeError):
    """Raised when an external command fails."""

    def __init__(
        self,
        message: str,
        *,
        cmd: Sequence[str],
        returncode: int,
        stderr: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.cmd = list(cmd)
        self.returncode = int(returncode)
        self.stderr = stderr


def cmd_to_str(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(x)) for x in cmd)


def split_command(command: str) -> List[str]:
    """Split a user-supplied command string into an argv list."""
    argv = shlex.split(command)
    if not argv:
        raise ValueError("empty command")
    return argv


def _env(env: Optional[Mapping[str, str]]) -> Optional[Dict[str, str]]:
    if env is None:
        return None
    merged = dict(os.environ)
    merged.update({str(k): str(v) for k, v in env.items()})
    return merged


def _tail(s: Optional[str], n: int = 3000) -> str:
    if not s:
        return "(empty)"
    s = str(s)
    if len(s) <= n:
        return s
    return "..." + s[-n:]


def _failure(cmd: Sequence[str], returncode: int, stderr: Optional[str]) -> ExternalCommandError:
    return ExternalCommandError(
        textwrap.dedent(
            f"""
            External command failed (exit code {returncode}).

            Command:
              {cmd_to_str(cmd)}

            STDERR (tail):
              {_tail(stderr)}
            """
        ).strip(),
        cmd=cmd,
        returncode=returncode,
        stderr=stderr,
    )


def run_command(
    cmd: Sequence[str],
    *,
    cwd: Optional[str | Path] = None,
    env: Optional[Mapping[str, str]] = None,
    check: bool = True,
) -> subprocess.CompletedProcess:
    """Run a command with captured text output.

    If ``check`` is True, raise ``ExternalCommandError`` on non-zero exit.
    """
    logger.debug("Running command: %s", cmd_to_str(cmd))
    cp = subprocess.run(
        list(map(str, cmd)),
        cwd=None if cwd is None else str(cwd),
        env=_env(env),
        check=False,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )
    if check and cp.returncode != 0:
        raise _failure(cmd, cp.returncode, cp.stderr)
    return cp


def run_filter(
    cmd: Sequence[str],
    *,
    stdin_path: str | Path,
    stdout_path: str | Path,
    env: Optional[Mapping[str, str]] = None,
) -> None:
    """Run ``cmd < stdin_path > stdout_path``; raise ExternalCommandError on failure."""
    logger.debug("Running filter: %s < %s > %s", cmd_to_str(cmd), stdin_path, stdout_path)
    with open(stdin_path, "rb") as fin, open(stdout_path, "wb") as fout:
        cp = subprocess.run(
            list(map(str, cmd)),
            env=_env(env),
            check=False,
            stdin=fin,
            stdout=fout,
            stderr=subprocess.PIPE,
        )
    stderr = cp.stderr.decode("utf-8", errors="replace") if cp.stderr else None
    if cp.returncode != 0:
        raise _failure(cmd, cp.returncode, stderr)
    if stderr:
        logger.debug("stderr of %s:\n%s", cmd_to_str(cmd), _tail(stderr))
