from __future__ import annotations

from typing import Callable, Dict

from . import enum_array

DEFAULT_EXTENSIONS: Dict[str, Callable[[], None]] = {
    enum_array.TYPE_NAME: enum_array.install,
}


def install_default_extensions() -> None:
    """Register every bundled extension type. Safe to call repeatedly."""
    for install in DEFAULT_EXTENSIONS.values():
        install()


__all__ = ['DEFAULT_EXTENSIONS', 'install_default_extensions']
