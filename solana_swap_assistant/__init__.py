# solana_swap_assistant/__init__.py
from __future__ import annotations

# Package version (falls back to 0.0.0 when not installed)
from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("solana-swap-assistant")
except PackageNotFoundError:
    __version__ = "0.0.0"

from .common.constants import (
    APP_NAME,
    local_appdata_dir,
    appdata_dir,
)

# Public API surface (include lazy names so `import *` and IDEs see them)
__all__ = [
    "__version__",
    "APP_NAME",
    "local_appdata_dir",
    "appdata_dir",
    # Lazy names:
    "load_config",
    "setup_logging",
    "SwapExecutor",
]

_LAZY = {
    "load_config": ".swap_engine.utils_exec",
    "setup_logging": ".swap_engine.utils_exec",
    "SwapExecutor": ".swap_engine.trading",
}

def __getattr__(name: str):
    """Lazy access to selected helpers to avoid import cycles at startup."""
    if name in _LAZY:
        import importlib
        mod = importlib.import_module(_LAZY[name], __name__)
        return getattr(mod, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

def __dir__() -> list[str]:
    # Include lazy attributes so IDE autocompletion and `dir()` see them.
    return sorted(set(globals().keys()) | set(_LAZY))
