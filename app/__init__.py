"""Letterbuds: compare Letterboxd watchlists across a group of friends."""

from __future__ import annotations

from importlib import import_module
from typing import Any

_EXPORTS = {
    "app": "app.main",
    "create_app": "app.main",
    "get_settings": "app.config",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    try:
        module_name = _EXPORTS[name]
    except KeyError:
        raise AttributeError(f"module 'app' has no attribute {name}") from None
    return getattr(import_module(module_name), name)
