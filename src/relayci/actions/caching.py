# actions/caching.py
from __future__ import annotations

import shlex
import tarfile
from typing import List

from ..cache import hash_files, make_key, pack_paths, unpack_paths
from ..errors import ActionError
from .registry import ActionContext

APT_ARCHIVE_DIR = "~/.cache/relayci/apt-archives"
RUST_CACHE_PATHS = ["~/.cargo/registry", "~/.cargo/git", "target"]
RUST_CACHE_INPUTS = ["Cargo.lock", "**/Cargo.toml", "rust-toolchain", "rust-toolchain.toml"]


def _as_list(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.splitlines() if v.strip()]
    return [str(v) for v in value]


def _restore(ctx: ActionContext, key: str) -> bool:
    found = ctx.cache.get(key)
    if not found.hit:
        ctx.console.print_cache(ctx.job, f"{found.reason} ({key[:40]})")
        return False
    try:
        count = unpack_paths(found.payload or b"", ctx.workspace)
    except (OSError, tarfile.TarError) as e:
        ctx.console.print_cache_error("restore", key, e)
        ctx.console.print_cache(ctx.job, f"restore failed, treating as miss ({key[:40]})")
        return False
    ctx.console.print_cache(ctx.job, f"hit, restored {count} file(s) ({key[:40]})")
    return True


def _save(ctx: ActionContext, key: str, paths: List[str]) -> None:
    try:
        payload = pack_paths(ctx.workspace, paths)
    except (OSError, tarfile.TarError) as e:
        ctx.console.print_cache_error("save", key, e)
        return
    if ctx.cache.set(key, payload):
        ctx.console.print_cache(ctx.job, f"saved ({key[:40]})")


def cache(ctx: ActionContext) -> None:
    """
    Generic directory cache.

    with:
      key:    key prefix (required)
      path:   files/dirs to cache (list or newline separated)
      inputs: globs whose content goes into the key
    Restores now, saves in a post hook once the job has succeeded.
    """
    prefix = ctx.param("key")
    paths = _as_list(ctx.param("path"))
    if not prefix or not paths:
        raise ActionError("cache: 'key' and 'path' are required")

    inputs = _as_list(ctx.param("inputs"))
    key = make_key(str(prefix), {
        "paths": paths,
        "inputs": hash_files(ctx.workspace, inputs) if inputs else None,
    })
    hit = _restore(ctx, key)
    ctx.env.export("RELAYCI_CACHE_HIT", "true" if hit else "false")
    if not hit:
        ctx.add_post(f"save cache {prefix}", lambda: _save(ctx, key, paths))


def rust_cache(ctx: ActionContext) -> None:
    """Cache cargo registry/git and target/, keyed on the cargo manifests."""
    key = make_key(f"rust-{ctx.job}", {
        "version": ctx.version,
        "shared": ctx.param("shared-key") or ctx.param("key"),
        "toolchain": ctx.env.resolve("RUSTUP_TOOLCHAIN"),
        "inputs": hash_files(ctx.workspace, RUST_CACHE_INPUTS),
    })
    if not _restore(ctx, key):
        ctx.add_post("save rust cache", lambda: _save(ctx, key, RUST_CACHE_PATHS))


def apt_packages(ctx: ActionContext) -> None:
    """
    Install apt packages through a cache of downloaded .deb archives.

    The key is derived from the sorted package list and `version`, so
    bumping `version` invalidates old entries.
    """
    raw = ctx.param("packages")
    words = raw.split() if isinstance(raw, str) else _as_list(raw)
    packages = sorted(set(words))
    if not packages:
        raise ActionError("cache-apt-pkgs: 'packages' is required")
    version = str(ctx.param("version", "1.0"))
    archive = ctx.param("archive-dir", APT_ARCHIVE_DIR)
    key = make_key("apt", {"packages": packages, "version": version})

    hit = _restore(ctx, key)
    pkgs = " ".join(shlex.quote(p) for p in packages)
    if not hit:
        ctx.check(f"mkdir -p {archive} && apt-get download {pkgs} && mv -f ./*.deb {archive}/")
    ctx.check(f"sudo dpkg -i {archive}/*.deb || sudo apt-get install -y {pkgs}")
    if not hit:
        _save(ctx, key, [archive])
    ctx.env.export("RELAYCI_CACHE_HIT", "true" if hit else "false")
