"""Small helpers shared across portico modules."""

from __future__ import annotations

from importlib import import_module
from typing import Any


def import_string(path: str) -> Any:
    """Import ``"package.module:attr"`` (or ``"package.module.attr"``)."""

    module_name, sep, attr = path.partition(":")
    if not sep:
        module_name, _, attr = path.rpartition(".")
    if not module_name or not attr:
        raise ImportError(f"'{path}' is not an importable 'module:attr' path")
    module = import_module(module_name)
    target: Any = module
    for part in attr.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as exc:
            raise ImportError(f"Module '{module_name}' does not define '{attr}'") from exc
    return target


def resolve(target: Any) -> Any:
    """Return *target*, importing it first when given as a string."""

    if isinstance(target, str):
        return import_string(target)
    return target


def qualified_name(obj: Any) -> str:
    name = getattr(obj, "__qualname__", None) or type(obj).__qualname__
    module = getattr(obj, "__module__", None)
    return f"{module}.{name}" if module else name


__all__ = ["import_string", "qualified_name", "resolve"]
