"""Lazy export resolution for package ``__init__`` modules.

Importing ``coordlock`` should not pull in ``kazoo`` or start any threads;
the heavy modules are only imported when one of their names is accessed.
"""

from __future__ import annotations

import importlib
from collections.abc import Callable, Mapping


def make_getattr(module_name: str, mapping: Mapping[str, str]) -> Callable[[str], object]:
    """
    Create a module ``__getattr__`` resolving ``name -> module path`` lazily.

    Resolved values are not cached here; ``importlib`` already caches the
    target module so repeated lookups stay cheap.
    """
    exports = dict(mapping)

    def __getattr__(name: str) -> object:
        target = exports.get(name)
        if target is None:
            raise AttributeError(f"module {module_name!r} has no attribute {name!r}")
        module = importlib.import_module(target)
        try:
            return getattr(module, name)
        except AttributeError:
            raise AttributeError(
                f"module {module_name!r} has no attribute {name!r} (lazy target {target!r} missing)"
            ) from None

    return __getattr__


def make_dir(module_globals: Mapping[str, object], mapping: Mapping[str, str]) -> Callable[[], list[str]]:
    """Create a module ``__dir__`` that lists lazy exports next to real globals."""

    def __dir__() -> list[str]:
        return sorted(set(module_globals) | set(mapping))

    return __dir__
