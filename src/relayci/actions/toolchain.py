# actions/toolchain.py
from __future__ import annotations

import shlex
from typing import List

from ..errors import ActionError
from .registry import ActionContext

# tool name -> crate that provides it
TOOL_CRATES = {
    "nextest": "cargo-nextest",
    "udeps": "cargo-udeps",
    "cargo-nextest": "cargo-nextest",
    "cargo-udeps": "cargo-udeps",
}


def _as_list(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v for v in value.replace(",", " ").split() if v]
    return [str(v) for v in value]


def rust_toolchain(ctx: ActionContext) -> None:
    """
    Install a rust toolchain through rustup.

    The toolchain is the action version (`...@nightly`) unless `toolchain`
    is given. `components` may be a list or a comma/space separated string.
    """
    toolchain = ctx.param("toolchain") or ctx.version
    if not toolchain:
        raise ActionError("rust-toolchain: no toolchain given (use @<toolchain> or with.toolchain)")

    cmd = ["rustup", "toolchain", "install", str(toolchain), "--profile", "minimal", "--no-self-update"]
    for comp in _as_list(ctx.param("components")):
        cmd.extend(["--component", comp])
    for target in _as_list(ctx.param("targets")):
        cmd.extend(["--target", target])

    ctx.check(shlex.join(cmd))
    ctx.env.export("RUSTUP_TOOLCHAIN", str(toolchain))
    ctx.log(f"toolchain: {toolchain}")


def install_tool(ctx: ActionContext) -> None:
    """Install a cargo-distributed tool, named by `tool` or the action version."""
    tools = _as_list(ctx.param("tool")) or _as_list(ctx.version)
    if not tools:
        raise ActionError("install-action: no tool given (use @<tool> or with.tool)")
    for tool in tools:
        name, _, version = tool.partition("@")
        crate = TOOL_CRATES.get(name, name)
        cmd = ["cargo", "install", "--locked", crate]
        if version:
            cmd.extend(["--version", version])
        ctx.check(shlex.join(cmd))
        ctx.log(f"installed: {crate}{'@' + version if version else ''}")
