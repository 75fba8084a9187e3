"""Library for reading and replacing nodes of kubernetes resources by path.

A path is a dotted list of keys, evaluated against every resource parsed
from a manifest file:
  `spec.replicas`
  `metadata.labels.'app.kubernetes.io/name'`
  `spec.template.spec.containers[0].image`
  `(kind == Deployment).spec.template.spec.containers.(name == app).image`

A key applied to a list is applied to each element of the list. A filter
in parentheses keeps the current node, or the list elements, for which every
condition joined with `&&` holds.

This example replaces the replicas of every Deployment with an expression:
```python
from helm_writer.yaml_path import YamlPathEditor

editor = YamlPathEditor(yaml.safe_load_all(content))
previous = editor.read_and_set(
    "(kind == Deployment).spec.replicas", "{{ .Values.replicas }}"
)
```
"""

from dataclasses import dataclass
import functools
import logging
import re
from typing import Any, Iterable, Union

from .exceptions import InvalidPathException

__all__ = [
    "TemplateExpression",
    "YamlPathEditor",
    "parse_path",
    "resource_name",
]

_LOGGER = logging.getLogger(__name__)

_CONDITION_RE = re.compile(r"^\s*(?P<path>.+?)\s*(?P<op>==|!=)\s*(?P<value>.*?)\s*$")
_KEY_RE = re.compile(
    r"^(?P<key>'[^']*'|\"[^\"]*\"|[^\[\]'\"]*)(?P<indexes>(\[-?\d+\])*)$"
)
_INDEX_RE = re.compile(r"\[(-?\d+)\]")


class TemplateExpression(str):
    """A template expression that replaced a node of a resource.

    The serializer writes these as raw template text rather than as a quoted
    yaml string.
    """


@dataclass(frozen=True)
class Key:
    """Select the value of a key in a mapping."""

    name: str


@dataclass(frozen=True)
class Index:
    """Select an element of a list."""

    index: int


@dataclass(frozen=True)
class Condition:
    """Compare the value at a relative path with a literal."""

    path: tuple["Segment", ...]
    value: str
    negate: bool = False


@dataclass(frozen=True)
class Filter:
    """Keep nodes matching all conditions."""

    conditions: tuple[Condition, ...]


Segment = Union[Key, Index, Filter]
_Handle = tuple[Any, Any]


def _split_path(path: str) -> list[str]:
    """Split a path on dots that are outside of quotes and parentheses."""
    parts: list[str] = []
    current: list[str] = []
    depth = 0
    quote: str | None = None
    for char in path:
        if quote:
            current.append(char)
            if char == quote:
                quote = None
            continue
        if char in "'\"":
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise InvalidPathException(f"Unbalanced parentheses in path '{path}'")
        elif char == "." and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    if quote or depth:
        raise InvalidPathException(f"Unterminated expression in path '{path}'")
    parts.append("".join(current))
    return parts


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    return value


def _parse_filter(path: str, inner: str) -> Filter:
    conditions = []
    for term in inner.split("&&"):
        if not (match := _CONDITION_RE.match(term)):
            raise InvalidPathException(f"Invalid filter '{term}' in path '{path}'")
        conditions.append(
            Condition(
                path=parse_path(match.group("path")),
                value=_unquote(match.group("value")),
                negate=match.group("op") == "!=",
            )
        )
    return Filter(tuple(conditions))


@functools.cache
def parse_path(path: str) -> tuple[Segment, ...]:
    """Parse a path expression into the segments to evaluate."""
    if not path or not path.strip():
        raise InvalidPathException("Path must not be empty")
    segments: list[Segment] = []
    for part in _split_path(path.strip()):
        part = part.strip()
        if part.startswith("(") and part.endswith(")"):
            segments.append(_parse_filter(path, part[1:-1]))
            continue
        if not (match := _KEY_RE.match(part)) or not part:
            raise InvalidPathException(f"Invalid segment '{part}' in path '{path}'")
        if key := match.group("key"):
            segments.append(Key(_unquote(key)))
        segments.extend(
            Index(int(index)) for index in _INDEX_RE.findall(match.group("indexes"))
        )
    return tuple(segments)


def _scalar_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _matches(node: Any, segment: Filter) -> bool:
    for condition in segment.conditions:
        handles = _resolve([([node], 0)], condition.path)
        found = any(
            _scalar_text(container[key]) == condition.value
            for container, key in handles
        )
        if found == condition.negate:
            return False
    return True


def _step(handle: _Handle, segment: Segment) -> list[_Handle]:
    container, key = handle
    node = container[key]
    if isinstance(segment, Index):
        if isinstance(node, list) and -len(node) <= segment.index < len(node):
            return [(node, segment.index)]
        return []
    if isinstance(node, list):
        result: list[_Handle] = []
        for idx, item in enumerate(node):
            if isinstance(segment, Filter):
                if _matches(item, segment):
                    result.append((node, idx))
            else:
                result.extend(_step((node, idx), segment))
        return result
    if isinstance(node, dict):
        if isinstance(segment, Filter):
            return [handle] if _matches(node, segment) else []
        if segment.name in node:
            return [(node, segment.name)]
    return []


def _resolve(handles: list[_Handle], segments: tuple[Segment, ...]) -> list[_Handle]:
    for segment in segments:
        handles = [child for handle in handles for child in _step(handle, segment)]
        if not handles:
            break
    return handles


def _plain(value: Any) -> Any:
    """Return a copy of a manifest value without expression nodes."""
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_plain(item) for item in value]
    if isinstance(value, TemplateExpression):
        return str(value)
    return value


def resource_name(resource: dict[str, Any]) -> str | None:
    """Return the metadata.name of a resource if present."""
    if isinstance(metadata := resource.get("metadata"), dict):
        if (name := metadata.get("name")) is not None:
            return str(name)
    return None


class YamlPathEditor:
    """Reads and replaces nodes of a list of resources.

    The resources are modified in place.
    """

    def __init__(self, resources: Iterable[dict[str, Any]]) -> None:
        """Initialize YamlPathEditor."""
        self._resources = list(resources)

    @property
    def resources(self) -> list[dict[str, Any]]:
        """The resources being edited."""
        return self._resources

    def select(self, kind: str | None, name: str | None) -> "YamlPathEditor":
        """Return an editor limited to the resources matching the kind and name."""
        if not kind and not name:
            return self
        return YamlPathEditor(
            resource
            for resource in self._resources
            if (not kind or resource.get("kind") == kind)
            and (not name or resource_name(resource) == name)
        )

    def _handles(self, path: str) -> list[_Handle]:
        roots = [(self._resources, idx) for idx in range(len(self._resources))]
        return _resolve(roots, parse_path(path))

    def read(self, path: str) -> Any:
        """Return a copy of the first value found at the path, or None.

        Nodes that already hold an expression have no value, and expressions
        nested in the value are copied as plain strings.
        """
        for container, key in self._handles(path):
            value = container[key]
            if value is not None and not isinstance(value, TemplateExpression):
                return _plain(value)
        return None

    def read_and_set(self, path: str, expression: str) -> Any:
        """Replace the nodes at the path with the expression.

        Returns the value `read` finds before the replacement, or None when the
        path does not exist.
        """
        found = self.read(path)
        self.set(path, expression)
        _LOGGER.debug("Replaced '%s' (found=%s)", path, found is not None)
        return found

    def set(self, path: str, expression: str) -> None:
        """Replace the existing nodes at the path with the expression."""
        for container, key in self._handles(path):
            container[key] = TemplateExpression(expression)
