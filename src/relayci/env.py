# env.py
from __future__ import annotations

from threading import Lock
from types import MappingProxyType
from typing import Dict, Mapping, Optional

ENV_FILE_VAR = "RELAYCI_ENV"


class EnvironmentContext:
    """
    Layered environment for one job.

    Resolution order (first hit wins):
      step env -> exported by earlier steps -> job env -> pipeline env -> host base

    The pipeline and job layers are frozen when the context is created.
    Exports only ever grow and are visible to the steps that run after them.
    One context per job, so nothing leaks across jobs.
    """

    def __init__(
        self,
        pipeline_env: Mapping[str, str] | None = None,
        job_env: Mapping[str, str] | None = None,
        *,
        base: Mapping[str, str] | None = None,
    ):
        self.base = MappingProxyType(dict(base or {}))
        self.pipeline = MappingProxyType(dict(pipeline_env or {}))
        self.job = MappingProxyType(dict(job_env or {}))
        self._exported: Dict[str, str] = {}
        self._lock = Lock()

    @property
    def exported(self) -> Mapping[str, str]:
        with self._lock:
            return MappingProxyType(dict(self._exported))

    def export(self, key: str, value: object) -> None:
        """Make `key` visible to every later step of this job."""
        if not key:
            raise ValueError("environment variable name must not be empty")
        with self._lock:
            self._exported[key] = str(value)

    def resolve(self, key: str, step_env: Optional[Mapping[str, str]] = None) -> Optional[str]:
        if step_env and key in step_env:
            return step_env[key]
        with self._lock:
            if key in self._exported:
                return self._exported[key]
        for layer in (self.job, self.pipeline, self.base):
            if key in layer:
                return layer[key]
        return None

    def materialize(self, step_env: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Flatten every layer into a plain dict suitable for a subprocess."""
        env: Dict[str, str] = dict(self.base)
        env.update(self.pipeline)
        env.update(self.job)
        with self._lock:
            env.update(self._exported)
        env.update(step_env or {})
        return env

    def absorb_env_file(self, text: str) -> Dict[str, str]:
        """
        Export `KEY=VALUE` lines written by a command to $RELAYCI_ENV.

        Blank lines and lines starting with '#' are ignored.
        """
        added: Dict[str, str] = {}
        for raw in text.splitlines():
            line = raw.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            if not key:
                continue
            self.export(key, value)
            added[key] = value
        return added
