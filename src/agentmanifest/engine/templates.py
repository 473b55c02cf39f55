# src/agentmanifest/engine/templates.py
"""Placeholder templates: ``{{ path.to.field }}`` substitution.

Templates are stored in manifests as data, so rendering must never execute
anything. Jinja2's parser (sandboxed environment) gives us the grammar and
precise syntax errors; the parsed tree is then checked against a
substitution-only subset and rendered by this module, not by Jinja.

Allowed inside ``{{ }}``:
    name                    -> context["name"]
    a.b.c                   -> context["a"]["b"]["c"]
    items.0                 -> context["items"][0]
    path | default('x')     -> 'x' when path is absent

Anything else (calls, arithmetic, other filters, {% blocks %}) is a
TemplateSyntaxError.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from jinja2 import TemplateSyntaxError as JinjaSyntaxError
from jinja2 import nodes
from jinja2.sandbox import SandboxedEnvironment

from agentmanifest.contracts.errors import TemplateSyntaxError, UnresolvedReferenceError

_ENV = SandboxedEnvironment(autoescape=False, keep_trailing_newline=True)

_MISSING = object()

PathSegment = str | int


@dataclass(frozen=True)
class Placeholder:
    """A single ``{{ ... }}`` occurrence."""

    path: tuple[PathSegment, ...]
    default: str | None = None

    @property
    def dotted(self) -> str:
        return ".".join(str(p) for p in self.path)


Segment = str | Placeholder


def _path_of(node: nodes.Node, source: str) -> tuple[PathSegment, ...]:
    if isinstance(node, nodes.Name):
        return (node.name,)
    if isinstance(node, nodes.Getattr):
        return (*_path_of(node.node, source), node.attr)
    if isinstance(node, nodes.Getitem) and isinstance(node.arg, nodes.Const):
        if isinstance(node.arg.value, (int, str)) and not isinstance(node.arg.value, bool):
            return (*_path_of(node.node, source), node.arg.value)
    raise TemplateSyntaxError(
        f"Only dotted field paths are allowed in placeholders: {source!r}"
    )


def _placeholder_of(node: nodes.Node, source: str) -> Placeholder:
    if isinstance(node, nodes.Filter):
        if node.name != "default" or node.node is None:
            raise TemplateSyntaxError(
                f"Filter '{node.name}' is not allowed (only 'default'): {source!r}"
            )
        if node.kwargs or node.dyn_args or node.dyn_kwargs or len(node.args) != 1:
            raise TemplateSyntaxError(
                f"default() takes exactly one literal argument: {source!r}"
            )
        arg = node.args[0]
        if not isinstance(arg, nodes.Const) or not isinstance(
            arg.value, (str, int, float)
        ):
            raise TemplateSyntaxError(
                f"default() argument must be a literal: {source!r}"
            )
        return Placeholder(path=_path_of(node.node, source), default=str(arg.value))
    return Placeholder(path=_path_of(node, source))


@lru_cache(maxsize=1024)
def parse_template(source: str) -> tuple[Segment, ...]:
    """Parse a template into literal text and placeholders.

    Raises:
        TemplateSyntaxError: If the template is not substitution-only
    """
    try:
        tree = _ENV.parse(source)
    except JinjaSyntaxError as e:
        raise TemplateSyntaxError(f"Invalid template syntax in {source!r}: {e}") from e

    segments: list[Segment] = []
    for stmt in tree.body:
        if not isinstance(stmt, nodes.Output):
            raise TemplateSyntaxError(
                f"Template blocks are not allowed, only {{{{ placeholders }}}}: {source!r}"
            )
        for child in stmt.nodes:
            if isinstance(child, nodes.TemplateData):
                segments.append(child.data)
            else:
                segments.append(_placeholder_of(child, source))
    return tuple(segments)


def referenced_paths(source: str) -> tuple[str, ...]:
    """Dotted paths referenced by a template, in order of appearance."""
    return tuple(s.dotted for s in parse_template(source) if isinstance(s, Placeholder))


def has_placeholders(source: str) -> bool:
    return any(isinstance(s, Placeholder) for s in parse_template(source))


def lookup(context: Mapping[str, Any], path: Sequence[PathSegment]) -> Any:
    """Walk a path through nested mappings and sequences.

    Returns the _MISSING sentinel when any step is absent. Only mapping keys
    and sequence indices are followed, never object attributes.
    """
    value: Any = context
    for part in path:
        if isinstance(value, Mapping):
            if part in value:
                value = value[part]
            elif isinstance(part, int) and str(part) in value:
                value = value[str(part)]
            else:
                return _MISSING
        elif isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            if not isinstance(part, int) or not -len(value) <= part < len(value):
                return _MISSING
            value = value[part]
        else:
            return _MISSING
    return value


def has_path(context: Mapping[str, Any], dotted: str) -> bool:
    """Whether a dotted path (``a.b``, ``items.0``) resolves in ``context``."""
    path = tuple(int(p) if p.isdigit() else p for p in dotted.split("."))
    return lookup(context, path) is not _MISSING


def stringify(value: Any) -> str:
    """Text form of a resolved value."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def _resolve_placeholder(
    placeholder: Placeholder,
    context: Mapping[str, Any],
    source: str,
    allow_missing: bool,
) -> Any:
    value = lookup(context, placeholder.path)
    if value is not _MISSING:
        return value
    if placeholder.default is not None:
        return placeholder.default
    if allow_missing:
        return _MISSING
    raise UnresolvedReferenceError(placeholder.dotted, source)


class Template:
    """A parsed placeholder template.

    Parsing happens once at construction; rendering is pure lookup.

    Example:
        template = Template("id = {{ lead_id }}")
        template.render({"lead_id": "abc"})  # "id = abc"
    """

    def __init__(self, source: str) -> None:
        self.source = source
        self.segments = parse_template(source)

    @property
    def placeholders(self) -> tuple[Placeholder, ...]:
        return tuple(s for s in self.segments if isinstance(s, Placeholder))

    @property
    def is_single_placeholder(self) -> bool:
        return len(self.segments) == 1 and isinstance(self.segments[0], Placeholder)

    def render(
        self,
        context: Mapping[str, Any],
        *,
        allow_missing: bool = False,
        missing: list[str] | None = None,
    ) -> str:
        """Substitute every placeholder.

        Args:
            context: Values to resolve paths against
            allow_missing: Render absent paths as "" instead of raising
            missing: If given, absent paths are appended here

        Raises:
            UnresolvedReferenceError: Absent path with no default and
                allow_missing is False
        """
        parts: list[str] = []
        for segment in self.segments:
            if isinstance(segment, str):
                parts.append(segment)
                continue
            value = _resolve_placeholder(segment, context, self.source, allow_missing)
            if value is _MISSING:
                if missing is not None:
                    missing.append(segment.dotted)
                continue
            parts.append(stringify(value))
        return "".join(parts)

    def resolve_value(
        self,
        context: Mapping[str, Any],
        *,
        allow_missing: bool = False,
        missing: list[str] | None = None,
    ) -> Any:
        """Like render(), but a lone placeholder keeps its native type.

        ``"{{ result.score }}"`` yields the number itself; anything with
        surrounding text is rendered to a string.
        """
        if not self.is_single_placeholder:
            return self.render(context, allow_missing=allow_missing, missing=missing)
        placeholder = self.placeholders[0]
        value = _resolve_placeholder(placeholder, context, self.source, allow_missing)
        if value is _MISSING:
            if missing is not None:
                missing.append(placeholder.dotted)
            return ""
        return value


def resolve(
    template: str,
    context: Mapping[str, Any],
    *,
    allow_missing: bool = False,
) -> str:
    """Resolve all placeholders in ``template`` against ``context``."""
    return Template(template).render(context, allow_missing=allow_missing)


def resolve_value(
    template: Any,
    context: Mapping[str, Any],
    *,
    allow_missing: bool = False,
    missing: list[str] | None = None,
) -> Any:
    """Resolve a templated manifest value.

    Non-string values (YAML numbers, booleans, null) pass through unchanged.
    """
    if not isinstance(template, str):
        return template
    return Template(template).resolve_value(
        context, allow_missing=allow_missing, missing=missing
    )
