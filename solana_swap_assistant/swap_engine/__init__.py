# solana_swap_assistant/swap_engine/__init__.py
from __future__ import annotations

import importlib as _importlib

__all__ = [
    "cache",
    "connection",
    "error_handler",
    "errors",
    "market_data",
    "models",
    "settings",
    "submitter",
    "trading",
    "utils_exec",
    "wallet",
]

def __getattr__(name: str):
    if name in __all__:
        return _importlib.import_module(f"{__name__}.{name}")
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

def __dir__():
    return sorted(list(globals().keys()) + __all__)
