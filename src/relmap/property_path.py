"""Property paths: read and write values nested inside mappings and objects.

A path is a small expression addressing a field:

    ``name``        element of a mapping, attribute of anything else
    ``.name``       attribute (``->name`` is accepted as well)
    ``[key]``       element; integer keys index sequences

Steps combine freely: ``customer.id``, ``orders[0].product``,
``meta[tags][1]``.  The Repository uses paths to map backend columns onto
instance fields, so reading and writing through a path must be a lossless
inverse over the declared mapping.

Examples:
    >>> PropertyPath.get({"customer": {"id": 1}}, "customer[id]")
    1
    >>> PropertyPath.compile("orders[0].product")
    [('ANY', 'orders'), ('ELEMENT', '0'), ('PROPERTY', 'product')]
"""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping, MutableSequence, Sequence
from functools import lru_cache
from typing import Any

from relmap.errors import PropertyPathError, RelmapError

TYPE_ANY = "ANY"
TYPE_PROPERTY = "PROPERTY"
TYPE_ELEMENT = "ELEMENT"

Token = tuple[str, str]


@lru_cache(maxsize=1024)
def _compile(path: str) -> tuple[Token, ...]:
    if path == "":
        raise PropertyPathError("Empty property path", path)
    tokens: list[Token] = []
    kind = TYPE_ANY
    pending = False  # a separator was read, a name must follow
    buffer = ""
    i = 0

    def flush() -> None:
        nonlocal buffer, pending
        if buffer:
            tokens.append((kind, buffer))
        elif pending:
            raise PropertyPathError(f'Missing property name in path: "{path}"', path)
        buffer = ""
        pending = False

    while i < len(path):
        if path.startswith("->", i):
            flush()
            kind, pending = TYPE_PROPERTY, True
            i += 2
            continue
        char = path[i]
        if char == ".":
            flush()
            kind, pending = TYPE_PROPERTY, True
            i += 1
        elif char == "[":
            flush()
            end = path.find("]", i + 1)
            if end == -1:
                raise PropertyPathError(f'Unterminated "[", expecting a "]" in path: "{path}"', path)
            tokens.append((TYPE_ELEMENT, path[i + 1 : end]))
            kind = TYPE_ANY
            i = end + 1
        elif char == "]":
            raise PropertyPathError(f'Unmatched "]" in path: "{path}"', path)
        else:
            buffer += char
            i += 1
    flush()
    return tuple(tokens)


def _is_sequence(data: Any) -> bool:
    return isinstance(data, Sequence) and not isinstance(data, (str, bytes))


class PropertyPath:
    """Resolve and assign values by path."""

    @staticmethod
    def compile(path: str) -> list[Token]:
        """Parse *path* into ``(type, name)`` tokens."""
        return list(_compile(path))

    @staticmethod
    def first(path: str) -> str:
        """Name of the first step, i.e. the field the path starts in."""
        return _compile(path)[0][1]

    @classmethod
    def get(cls, data: Any, path: str) -> Any:
        """Return the value at *path* inside *data*."""
        for kind, name in _compile(path):
            data = cls._get_step(data, kind, name, path)
        return data

    @classmethod
    def set(cls, data: Any, path: str, value: Any) -> None:
        """Assign *value* at *path* inside *data*.

        Missing or ``None`` intermediates followed by an element step are
        created as dicts, so ``address[street]`` can be set on an object
        whose ``address`` is still ``None``.
        """
        tokens = _compile(path)
        for (kind, name), (following, _) in zip(tokens, tokens[1:]):
            if following != TYPE_PROPERTY and cls._is_vacant(data, kind, name):
                cls._assign(data, kind, name, {}, path)
            data = cls._get_step(data, kind, name, path)
        kind, name = tokens[-1]
        cls._assign(data, kind, name, value, path)

    @staticmethod
    def _is_vacant(data: Any, kind: str, name: str) -> bool:
        if kind != TYPE_PROPERTY and isinstance(data, Mapping):
            if not isinstance(data, MutableMapping):
                return False
            if name not in data and name.isdigit() and int(name) in data:
                return data[int(name)] is None
            return data.get(name) is None
        if kind == TYPE_ELEMENT:
            return False
        return getattr(data, name, None) is None

    @staticmethod
    def _assign(data: Any, kind: str, name: str, value: Any, path: str) -> None:
        if kind == TYPE_PROPERTY or (kind == TYPE_ANY and not isinstance(data, MutableMapping)):
            try:
                setattr(data, name, value)
            except RelmapError:
                raise
            except AttributeError as exc:
                raise PropertyPathError(
                    f'Property "{name}" can\'t be set on a {type(data).__name__} object (path: "{path}")',
                    path,
                ) from exc
        elif isinstance(data, MutableMapping):
            data[name] = value
        elif isinstance(data, MutableSequence):
            try:
                data[int(name)] = value
            except (ValueError, IndexError) as exc:
                raise PropertyPathError(f'Invalid index "{name}" in path: "{path}"', path) from exc
        else:
            raise PropertyPathError(
                f"Unexpected type: {type(data).__name__}, expecting a mapping or list in path: \"{path}\"",
                path,
            )

    @staticmethod
    def _get_step(data: Any, kind: str, name: str, path: str) -> Any:
        if kind != TYPE_PROPERTY and isinstance(data, Mapping):
            if name in data:
                return data[name]
            if name.isdigit() and int(name) in data:
                return data[int(name)]
            raise PropertyPathError(f'Element "{name}" doesn\'t exist in path: "{path}"', path)
        if kind == TYPE_ELEMENT:
            if not _is_sequence(data):
                raise PropertyPathError(
                    f"Unexpected type: {type(data).__name__}, expecting a mapping or list in path: \"{path}\"",
                    path,
                )
            try:
                return data[int(name)]
            except (ValueError, IndexError) as exc:
                raise PropertyPathError(f'Invalid index "{name}" in path: "{path}"', path) from exc
        try:
            return getattr(data, name)
        except RelmapError:
            raise
        except AttributeError as exc:
            raise PropertyPathError(
                f'Property "{name}" doesn\'t exist in a {type(data).__name__} object (path: "{path}")',
                path,
            ) from exc


__all__ = ["PropertyPath", "TYPE_ANY", "TYPE_PROPERTY", "TYPE_ELEMENT"]
