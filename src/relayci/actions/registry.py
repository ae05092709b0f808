# actions/registry.py
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from ..cache import CacheManager
from ..env import EnvironmentContext
from ..errors import ActionError, Cancelled, TimedOut, UnknownAction
from ..model import ActionRef
from ..process import ProcessOutcome, run_process
from ..ui.console import Console


@dataclass
class ActionContext:
    """Everything an action handler may touch while it runs."""
    job: str
    step: ActionRef
    env: EnvironmentContext
    cache: CacheManager
    workspace: Path
    console: Console
    deadline: Optional[float] = None  # time.monotonic() based
    cancel_event: Optional[threading.Event] = None
    post: List[Tuple[str, Callable[[], None]]] = field(default_factory=list)

    @property
    def params(self):
        return self.step.params

    @property
    def version(self) -> Optional[str]:
        return self.step.version

    def param(self, name: str, default=None):
        value = self.step.params.get(name, default)
        return default if value is None else value

    def log(self, message: str) -> None:
        self.console.print_info(f"[{self.job}]   {message}")

    def add_post(self, label: str, fn: Callable[[], None]) -> None:
        """Run `fn` after every step of the job has succeeded."""
        self.post.append((label, fn))

    def _remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def sh(self, cmd: str) -> ProcessOutcome:
        """Run a shell command with the job environment and this step's limits."""
        remaining = self._remaining()
        if remaining is not None and remaining <= 0:
            raise TimedOut(f"no time left to run: {cmd}")
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise Cancelled("pipeline cancelled")
        self.console.print_debug(f"[{self.job}] $ {cmd}")
        outcome = run_process(
            cmd,
            env=self.env.materialize(self.step.env),
            cwd=self.workspace,
            timeout=remaining,
            cancel_event=self.cancel_event,
        )
        if outcome.timed_out:
            raise TimedOut(f"timed out running: {cmd}")
        if outcome.cancelled:
            raise Cancelled("pipeline cancelled")
        return outcome

    def check(self, cmd: str) -> str:
        """Like sh() but a non-zero exit fails the step. Returns the output."""
        outcome = self.sh(cmd)
        if outcome.exit_code != 0:
            raise ActionError(
                f"command failed: {cmd}",
                exit_code=outcome.exit_code if outcome.exit_code is not None else 1,
                output=outcome.output,
            )
        return outcome.output


Handler = Callable[[ActionContext], None]


def split_identifier(ref: str) -> Tuple[str, Optional[str]]:
    """'namespace/name@version' -> ('namespace/name', 'version')."""
    name, sep, version = ref.strip().partition("@")
    return name, (version if sep else None)


class ActionRegistry:
    """
    Maps opaque action references to handlers.

    A handler can be registered for a bare identifier ("actions/checkout")
    or a pinned one ("actions/checkout@v3"); the pinned registration wins.
    """

    def __init__(self):
        self._handlers: Dict[str, Handler] = {}

    def register(self, ref: str, handler: Handler) -> None:
        self._handlers[ref.strip()] = handler

    def action(self, *refs: str) -> Callable[[Handler], Handler]:
        """Decorator form of register()."""
        def deco(fn: Handler) -> Handler:
            for ref in refs:
                self.register(ref, fn)
            return fn
        return deco

    def resolve(self, ref: str) -> Handler:
        ref = ref.strip()
        if ref in self._handlers:
            return self._handlers[ref]
        name, _version = split_identifier(ref)
        if name in self._handlers:
            return self._handlers[name]
        raise UnknownAction(ref)

    def __contains__(self, ref: str) -> bool:
        try:
            self.resolve(ref)
        except UnknownAction:
            return False
        return True

    def names(self) -> List[str]:
        return sorted(self._handlers)
