# tests/conftest.py
"""
Shared fixtures: a quiet console, an in-memory cache, and an executor
whose environment only carries PATH so tests never depend on the host env.
"""
from __future__ import annotations

import os
import threading

import pytest

from relayci.actions import default_registry
from relayci.cache import CacheManager, MemoryCacheBackend
from relayci.executor import StepExecutor
from relayci.ui.console import Console, set_console


@pytest.fixture
def console():
    c = Console(debug=False)
    set_console(c)
    return c


@pytest.fixture
def base_env():
    return {"PATH": os.environ.get("PATH", "/usr/bin:/bin")}


@pytest.fixture
def memory_cache(console):
    return CacheManager(MemoryCacheBackend(), keep=3, console=console)


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def cancel_event():
    return threading.Event()


@pytest.fixture
def executor(tmp_path, console, memory_cache, registry, base_env, cancel_event):
    return StepExecutor(
        registry=registry,
        cache=memory_cache,
        workspace=tmp_path,
        console=console,
        cancel_event=cancel_event,
        base_env=base_env,
    )


@pytest.fixture
def write_pipeline(tmp_path):
    def _write(text: str, name: str = "pipeline.yml"):
        p = tmp_path / name
        p.write_text(text, encoding="utf-8")
        return p
    return _write
