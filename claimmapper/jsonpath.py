"""A small JSONPath reader for picking values out of decoded JSON data.

Supported syntax: the root ``$``, children ``.name`` and ``['name']``,
unions ``['a','b']``, indexes ``[0]`` and ``[-1]``, index unions ``[0,2]``,
slices ``[start:end:step]``, wildcards ``.*`` and ``[*]`` and recursive
descent ``..name``. A path that names a single value yields that value;
any other path yields the list of values it matches.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Union

_INTEGER = re.compile(r"\s*(-?[0-9]+)\s*")
_QUOTED = re.compile(
    r"""\s*(?:'((?:[^'\\]|\\.)*)'|"((?:[^"\\]|\\.)*)")\s*(?:,|$)""", re.DOTALL
)
_ESCAPE = re.compile(r"\\(.)", re.DOTALL)


class JsonPathError(Exception):
    """Raised when a path is malformed or does not lead to a value."""


@dataclass(frozen=True)
class _Names:
    names: tuple[str, ...]

    @property
    def definite(self) -> bool:
        return len(self.names) == 1

    def select(self, node: Any, strict: bool) -> list[Any]:
        if not isinstance(node, dict):
            if strict:
                raise JsonPathError(f"cannot take child {self.names[0]!r} of a non-object")
            return []
        found = []
        for name in self.names:
            if name in node:
                found.append(node[name])
            elif strict:
                raise JsonPathError(f"child {name!r} not found")
        return found


@dataclass(frozen=True)
class _Indexes:
    indexes: tuple[int, ...]

    @property
    def definite(self) -> bool:
        return len(self.indexes) == 1

    def select(self, node: Any, strict: bool) -> list[Any]:
        if not isinstance(node, list):
            if strict:
                raise JsonPathError(f"cannot take index {self.indexes[0]} of a non-array")
            return []
        found = []
        for index in self.indexes:
            position = index + len(node) if index < 0 else index
            if 0 <= position < len(node):
                found.append(node[position])
            elif strict:
                raise JsonPathError(f"index {index} out of range")
        return found


@dataclass(frozen=True)
class _Slice:
    start: int | None
    end: int | None
    step: int | None

    definite = False

    def select(self, node: Any, strict: bool) -> list[Any]:
        if not isinstance(node, list):
            return []
        return node[self.start : self.end : self.step]


@dataclass(frozen=True)
class _Wildcard:
    definite = False

    def select(self, node: Any, strict: bool) -> list[Any]:
        if isinstance(node, dict):
            return list(node.values())
        if isinstance(node, list):
            return list(node)
        return []


@dataclass(frozen=True)
class _Recursive:
    inner: _Step

    definite = False

    def select(self, node: Any, strict: bool) -> list[Any]:
        found: list[Any] = []
        for descendant in _walk(node):
            found.extend(self.inner.select(descendant, False))
        return found


_Step = Union[_Names, _Indexes, _Slice, _Wildcard, _Recursive]


def _walk(node: Any) -> Iterator[Any]:
    yield node
    if isinstance(node, dict):
        for value in node.values():
            yield from _walk(value)
    elif isinstance(node, list):
        for value in node:
            yield from _walk(value)


def _integer(text: str) -> int:
    match = _INTEGER.fullmatch(text)
    if match is None:
        raise JsonPathError(f"invalid index {text.strip()!r}")
    return int(match.group(1))


def _quoted_names(content: str) -> _Names:
    names = []
    pos = 0
    while pos < len(content):
        match = _QUOTED.match(content, pos)
        if match is None or match.end() == pos:
            raise JsonPathError(f"invalid name list {content!r}")
        raw = match.group(1) if match.group(1) is not None else match.group(2)
        names.append(_ESCAPE.sub(r"\1", raw))
        pos = match.end()
    if not names:
        raise JsonPathError("empty name list")
    return _Names(tuple(names))


def _slice(content: str) -> _Slice:
    parts = content.split(":")
    if len(parts) > 3:
        raise JsonPathError(f"invalid slice {content!r}")
    bounds = [None if not part.strip() else _integer(part) for part in parts]
    bounds += [None] * (3 - len(bounds))
    start, end, step = bounds
    if step == 0:
        raise JsonPathError("slice step cannot be zero")
    return _Slice(start, end, step)


def _bracket_step(content: str) -> _Step:
    content = content.strip()
    if not content:
        raise JsonPathError("empty brackets")
    if content == "*":
        return _Wildcard()
    if content[0] in "'\"":
        return _quoted_names(content)
    if ":" in content:
        return _slice(content)
    return _Indexes(tuple(_integer(part) for part in content.split(",")))


def _parse_bracket(path: str, pos: int) -> tuple[_Step, int]:
    end = pos + 1
    quote = None
    while end < len(path):
        char = path[end]
        if quote:
            if char == "\\":
                end += 2
                continue
            if char == quote:
                quote = None
        elif char in "'\"":
            quote = char
        elif char == "]":
            break
        end += 1
    else:
        raise JsonPathError(f"unterminated bracket in {path!r}")
    return _bracket_step(path[pos + 1 : end]), end + 1


def _parse_name(path: str, pos: int) -> tuple[_Step, int]:
    end = pos
    while end < len(path) and path[end] not in ".[":
        end += 1
    name = path[pos:end]
    if not name:
        raise JsonPathError(f"missing name at position {pos} in {path!r}")
    if name == "*":
        return _Wildcard(), end
    return _Names((name,)), end


def _parse(path: str) -> list[_Step]:
    if not path.startswith("$"):
        raise JsonPathError(f"path must start with '$': {path!r}")
    steps: list[_Step] = []
    pos = 1
    while pos < len(path):
        if path.startswith("..", pos):
            pos += 2
            if pos < len(path) and path[pos] == "[":
                step, pos = _parse_bracket(path, pos)
            else:
                step, pos = _parse_name(path, pos)
            steps.append(_Recursive(step))
        elif path[pos] == ".":
            step, pos = _parse_name(path, pos + 1)
            steps.append(step)
        elif path[pos] == "[":
            step, pos = _parse_bracket(path, pos)
            steps.append(step)
        else:
            raise JsonPathError(f"unexpected {path[pos]!r} at position {pos} in {path!r}")
    return steps


def read(data: Any, path: str) -> Any:
    """Value, or list of values, that the path selects in the data.

    Raises JsonPathError when the path is malformed, or when a path naming a
    single value does not lead to one.
    """
    steps = _parse(path)
    definite = all(step.definite for step in steps)
    nodes = [data]
    for step in steps:
        nodes = [found for node in nodes for found in step.select(node, definite)]
    if definite:
        return nodes[0]
    return nodes