"""Dotted field-path resolution over structured records.

Paths look like ``basics.title``, ``work_experience[0].company`` or
``technical_skills.*.skill``. Numeric segments (``work_experience.0``) index
lists the same way brackets do; ``*`` expands over every list element or
mapping value.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from typing import Any

WILDCARD = "*"
_SEGMENT_RE = re.compile(r"([^.\[\]]+)|\[(\d+|\*)\]")


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()

Segment = str | int


def parse_path(path: str) -> list[Segment]:
    if not path or not path.strip():
        raise ValueError("field path must not be empty")

    segments: list[Segment] = []
    position = 0
    for match in _SEGMENT_RE.finditer(path):
        gap = path[position : match.start()]
        if gap not in {"", "."}:
            raise ValueError(f"malformed field path '{path}'")
        name, index = match.groups()
        token = name if name is not None else index
        if token == WILDCARD:
            segments.append(WILDCARD)
        elif token.isdigit():
            segments.append(int(token))
        else:
            segments.append(token)
        position = match.end()

    if path[position:]:
        raise ValueError(f"malformed field path '{path}'")
    return segments


def format_path(segments: list[Segment] | tuple[Segment, ...]) -> str:
    out = ""
    for segment in segments:
        if isinstance(segment, int):
            out += f"[{segment}]"
        else:
            out += f".{segment}" if out else segment
    return out


def _step(value: Any, segment: Segment) -> Any:
    if isinstance(segment, int):
        if isinstance(value, list) and -len(value) <= segment < len(value):
            return value[segment]
        if isinstance(value, dict) and str(segment) in value:
            return value[str(segment)]
        return MISSING
    if isinstance(value, dict):
        return value.get(segment, MISSING)
    return MISSING


def iter_matches(data: Any, path: str) -> Iterator[tuple[str, Any]]:
    """Yield ``(concrete_path, value)`` for every location the path reaches."""
    segments = parse_path(path)

    def walk(value: Any, index: int, trail: list[Segment]) -> Iterator[tuple[str, Any]]:
        if index == len(segments):
            yield format_path(trail), value
            return
        segment = segments[index]
        if segment == WILDCARD:
            if isinstance(value, list):
                for position, item in enumerate(value):
                    yield from walk(item, index + 1, [*trail, position])
            elif isinstance(value, dict):
                for key, item in value.items():
                    yield from walk(item, index + 1, [*trail, key])
            return
        child = _step(value, segment)
        if child is MISSING:
            return
        yield from walk(child, index + 1, [*trail, segment])

    yield from walk(data, 0, [])


def resolve(data: Any, path: str) -> Any:
    """Return the value at ``path``, ``MISSING`` when absent, or a list for wildcard paths."""
    segments = parse_path(path)
    if WILDCARD in segments:
        return [value for _, value in iter_matches(data, path)]

    value = data
    for segment in segments:
        value = _step(value, segment)
        if value is MISSING:
            return MISSING
    return value


def is_empty(value: Any) -> bool:
    if value is MISSING or value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, dict):
        return not value or all(is_empty(item) for item in value.values())
    if isinstance(value, (list, tuple)):
        return not value or all(is_empty(item) for item in value)
    return False


def has_value(data: Any, path: str) -> bool:
    return not is_empty(resolve(data, path))


def set_value(data: dict[str, Any], path: str, value: Any) -> None:
    segments = parse_path(path)
    if WILDCARD in segments:
        raise ValueError(f"cannot assign through wildcard path '{path}'")

    target: Any = data
    for position, segment in enumerate(segments[:-1]):
        following = segments[position + 1]
        child = _step(target, segment)
        if child is MISSING or child is None:
            if isinstance(segment, int):
                raise ValueError(f"list index {segment} out of range in '{path}'")
            child = [] if isinstance(following, int) else {}
            target[segment] = child
        target = child

    last = segments[-1]
    if isinstance(last, int):
        if not isinstance(target, list) or not -len(target) <= last < len(target):
            raise ValueError(f"list index {last} out of range in '{path}'")
        target[last] = value
    else:
        if not isinstance(target, dict):
            raise ValueError(f"cannot set '{last}' on non-object in '{path}'")
        target[last] = value


def leaf_name(path: str) -> str:
    for segment in reversed(parse_path(path)):
        if isinstance(segment, str) and segment != WILDCARD:
            return segment
    return path


def references(evidence_field: str, path: str) -> bool:
    """True when an evidence ``field`` label points at ``path`` or something beneath it."""
    field = evidence_field.strip()
    if not field:
        return False
    if field == path or field == leaf_name(path):
        return True
    return field.startswith(path + ".") or field.startswith(path + "[")
