# shell.py
from __future__ import annotations

import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Protocol

from .errors import CancellationError

# How often a running command checks whether its job was cancelled
POLL_SECONDS = 0.2
OUTPUT_TAIL = 4000


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""


class CommandRunner(Protocol):
    def run(
        self,
        cmd: str,
        *,
        cwd: Path,
        env: Mapping[str, str],
        cancel: Optional[threading.Event] = None,
    ) -> CommandResult: ...


class ShellRunner:
    """Runs a step's command in a shell, stopping it if the job gets cancelled."""

    def run(
        self,
        cmd: str,
        *,
        cwd: Path,
        env: Mapping[str, str],
        cancel: Optional[threading.Event] = None,
    ) -> CommandResult:
        proc = subprocess.Popen(
            cmd,
            shell=True,
            cwd=str(cwd),
            env=dict(env),
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=POLL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.is_set():
                    proc.terminate()
                    try:
                        proc.communicate(timeout=5)
                    except subprocess.TimeoutExpired:
                        proc.kill()
                        proc.communicate()
                    raise CancellationError(f"interrupted: {cmd}")

        return CommandResult(
            exit_code=proc.returncode,
            stdout=(stdout or "")[-OUTPUT_TAIL:],
            stderr=(stderr or "")[-OUTPUT_TAIL:],
        )
