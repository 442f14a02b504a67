"""Step plugins."""

from __future__ import annotations

from typing import Iterable, List

from ..serialization import import_path
from .awaits import AwaitsPlugin
from .base import PLUGIN_INACTIVE, CallNext, Plugin, PluginContext
from .pipeline import PluginPipeline
from .transactional import TransactionalStepPlugin


def load_plugins(paths: Iterable[str]) -> List[Plugin]:
    """Instantiate plugins from ``"module:Class"`` paths.

    Classes are constructed without arguments; any other object found at the
    path is used as-is.
    """
    plugins: List[Plugin] = []
    for path in paths:
        target = import_path(path)
        plugin = target() if isinstance(target, type) else target
        if not isinstance(plugin, Plugin):
            raise TypeError(f"{path} does not provide a durastep plugin")
        plugins.append(plugin)
    return plugins


__all__ = [
    "AwaitsPlugin",
    "CallNext",
    "PLUGIN_INACTIVE",
    "Plugin",
    "PluginContext",
    "PluginPipeline",
    "TransactionalStepPlugin",
    "load_plugins",
]
