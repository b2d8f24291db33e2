"""JSON serialisation helpers."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any

from .strings import coerce_text


def make_json_safe(
    value: Any,
    *,
    stringify_keys: bool = False,
    sort_sets: bool = True,
    default: Callable[[Any], str] | None = None,
) -> Any:
    """Return a structure compatible with :func:`json.dumps`."""

    if default is None:
        default = repr

    def _key(key: Any) -> Any:
        if not stringify_keys or isinstance(key, str):
            return key
        return coerce_text(key, allow_empty=True, fallback="<unserialisable key>")

    def _convert(item: Any) -> Any:
        if isinstance(item, Mapping):
            return {_key(key): _convert(val) for key, val in item.items()}
        if isinstance(item, (list, tuple)):
            return [_convert(val) for val in item]
        if isinstance(item, (set, frozenset)):
            converted = [_convert(val) for val in item]
            if sort_sets:
                converted.sort(key=repr)
            return converted
        if isinstance(item, (bytes, bytearray)):
            return list(item)
        if isinstance(item, (str, int, float, bool)) or item is None:
            return item
        if isinstance(item, Sequence):
            return [_convert(val) for val in item]
        try:
            converted = default(item)
        except Exception:
            converted = None
        if isinstance(converted, str):
            return converted
        return coerce_text(item, allow_empty=True, fallback="<unserialisable>")

    return _convert(value)


__all__ = ["make_json_safe"]
