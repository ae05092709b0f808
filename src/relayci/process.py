# process.py
from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .settings import OUTPUT_TAIL

POLL_INTERVAL = 0.1
KILL_GRACE = 2.0


@dataclass(frozen=True)
class ProcessOutcome:
    exit_code: Optional[int]
    output: str
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled


def _terminate(proc: subprocess.Popen) -> None:
    """SIGTERM the whole process group, SIGKILL it if it does not go away."""
    if os.name == "posix":
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        try:
            proc.wait(timeout=KILL_GRACE)
        except subprocess.TimeoutExpired:
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
    else:
        proc.kill()


def run_process(
    cmd: str,
    *,
    env: Mapping[str, str],
    cwd: str | Path,
    timeout: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ProcessOutcome:
    """
    Run `cmd` through the shell and wait for it.

    stdout and stderr are merged; only the last OUTPUT_TAIL chars are kept.
    The process is terminated when `timeout` seconds pass or `cancel_event`
    is set.
    """
    proc = subprocess.Popen(
        cmd,
        shell=True,
        cwd=str(cwd),
        env=dict(env),
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        errors="replace",
        start_new_session=(os.name == "posix"),
    )
    deadline = None if timeout is None else time.monotonic() + timeout

    while True:
        wait_for = POLL_INTERVAL
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                _terminate(proc)
                out, _ = proc.communicate()
                return ProcessOutcome(proc.returncode, (out or "")[-OUTPUT_TAIL:], timed_out=True)
            wait_for = min(wait_for, remaining)

        try:
            out, _ = proc.communicate(timeout=wait_for)
            return ProcessOutcome(proc.returncode, (out or "")[-OUTPUT_TAIL:])
        except subprocess.TimeoutExpired:
            pass

        if cancel_event is not None and cancel_event.is_set():
            _terminate(proc)
            out, _ = proc.communicate()
            return ProcessOutcome(proc.returncode, (out or "")[-OUTPUT_TAIL:], cancelled=True)
