"""Running the caller as an external process.

Orchestrating tools (e.g. a GATK wrapper) call the engine as
``python -m segcall call ...`` and only look at the exit status. A non-zero
status is fatal and surfaces as :class:`ExternalCommandError`; nothing is
retried.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import sys
from dataclasses import fields
from pathlib import Path
from typing import List, Optional, Sequence

from .caller import CallerConfig

logger = logging.getLogger(__name__)


class ExternalCommandError(RuntimeError):
    """Raised when an external command fails."""

    def __init__(
        self,
        message: str,
        *,
        cmd: Sequence[str],
        returncode: int,
        stdout: Optional[str] = None,
        stderr: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.cmd = list(cmd)
        self.returncode = int(returncode)
        self.stdout = stdout
        self.stderr = stderr


def cmd_to_str(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(x)) for x in cmd)


def run_command(cmd: Sequence[str]) -> subprocess.CompletedProcess:
    """Run a command with captured text output; raise ``ExternalCommandError`` on non-zero exit."""
    logger.debug("Running command: %s", cmd_to_str(cmd))
    cp = subprocess.run(list(map(str, cmd)), check=False, capture_output=True, text=True)
    if cp.returncode != 0:
        raise ExternalCommandError(
            f"External command failed (exit code {cp.returncode}).\n"
            f"Command:\n  {cmd_to_str(cmd)}\n"
            f"STDERR (tail):\n  {_stderr_tail(cp.stderr)}",
            cmd=cmd,
            returncode=cp.returncode,
            stdout=cp.stdout,
            stderr=cp.stderr,
        )
    return cp


def _stderr_tail(s: str, n: int = 3000) -> str:
    if not s:
        return "(empty)"
    return s if len(s) <= n else "..." + s[-n:]


def _flag(name: str) -> str:
    return "--" + name.replace("_", "-")


def build_caller_command(
    *,
    input_path: str | Path,
    outdir: str | Path,
    config: CallerConfig,
    output_prefix: str = "",
    interactive: bool = True,
    log: bool = True,
    python: Optional[str] = None,
) -> List[str]:
    """Assemble ``python -m segcall call ...`` with every config field spelled out."""
    cmd: List[str] = [
        python or sys.executable,
        "-m",
        "segcall",
        "call",
        "--input",
        str(input_path),
        "--output",
        str(outdir),
        "--output-prefix",
        output_prefix,
        "--interactive",
        str(bool(interactive)).lower(),
        "--log",
        str(bool(log)).lower(),
    ]
    for f in fields(config):
        value = getattr(config, f.name)
        cmd += [_flag(f.name), str(value).lower() if isinstance(value, bool) else str(value)]
    return cmd


def run_segment_caller(
    *,
    input_path: str | Path,
    outdir: str | Path,
    config: Optional[CallerConfig] = None,
    output_prefix: str = "",
    interactive: bool = True,
    log: bool = True,
) -> subprocess.CompletedProcess:
    """Invoke the caller in a subprocess; raises ExternalCommandError on non-zero exit."""
    cmd = build_caller_command(
        input_path=input_path,
        outdir=outdir,
        config=config or CallerConfig(),
        output_prefix=output_prefix,
        interactive=interactive,
        log=log,
    )
    logger.info("Launching segment caller: %s", cmd_to_str(cmd))
    return run_command(cmd)
