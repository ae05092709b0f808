from .registry import ActionContext, ActionRegistry, Handler, split_identifier
from .caching import apt_packages, cache, rust_cache
from .checkout import checkout
from .toolchain import install_tool, rust_toolchain


def default_registry() -> ActionRegistry:
    """Registry with every built-in action under its well-known identifiers."""
    reg = ActionRegistry()
    reg.register("actions/checkout", checkout)
    reg.register("relayci/checkout", checkout)
    reg.register("dtolnay/rust-toolchain", rust_toolchain)
    reg.register("relayci/rust-toolchain", rust_toolchain)
    reg.register("taiki-e/install-action", install_tool)
    reg.register("relayci/install", install_tool)
    reg.register("awalsh128/cache-apt-pkgs-action", apt_packages)
    reg.register("relayci/apt-packages", apt_packages)
    reg.register("Swatinem/rust-cache", rust_cache)
    reg.register("relayci/rust-cache", rust_cache)
    reg.register("actions/cache", cache)
    reg.register("relayci/cache", cache)
    return reg


__all__ = ["ActionContext", "ActionRegistry", "Handler", "split_identifier", "default_registry"]
