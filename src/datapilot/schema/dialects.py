"""Compile canonical schema trees into the two provider strictness dialects.

Dialect A is the Gemini ``responseSchema`` shape: enumerated upper-case type
tags, ``nullable`` flags and a hard requirement that every object declares at
least one property. Dialect B is the JSON Schema accepted by strict
structured outputs on the OpenAI Responses API: ``additionalProperties: false``
and fully populated ``required`` lists, with optionality expressed by letting
the value be ``null``.

Both compilers are a single recursive ``(node, path) -> dict`` walk. Children
are compiled first into freshly built mappings and the path-keyed policies are
then applied to the rebuilt node, so the input tree is never mutated and the
two dialect outputs never share objects. The walkers accept either a
``SchemaNode`` or an already rendered mapping; feeding a compiled tree back in
returns an equal tree.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Tuple, Union

from ..errors import SchemaDialectError, SchemaPolicyError
from .nodes import SchemaNode, child_path, items_path

__all__ = [
    "DialectPolicies",
    "SchemaDefinition",
    "SchemaDialect",
    "compile_schema",
    "iter_schema_paths",
    "to_gemini_schema",
    "to_json_schema",
    "validate_policy_paths",
]

SchemaInput = Union[SchemaNode, Mapping[str, Any]]

# Keys the Gemini responseSchema object accepts; anything else is dropped.
_GEMINI_KEYS = frozenset(
    {
        "type",
        "format",
        "description",
        "nullable",
        "enum",
        "properties",
        "required",
        "items",
        "minItems",
        "maxItems",
        "minLength",
        "maxLength",
        "minimum",
        "maximum",
        "propertyOrdering",
    }
)


class SchemaDialect(str, Enum):
    """Output dialects understood by the provider clients."""

    GEMINI = "gemini"
    JSON_SCHEMA = "json_schema"


@dataclass(frozen=True, slots=True)
class DialectPolicies:
    """Path sets that decide where strictness rules apply."""

    strict_additional_properties_paths: frozenset[str] = field(default_factory=frozenset)
    strict_all_properties_required_paths: frozenset[str] = field(default_factory=frozenset)
    nullable_property_paths: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "strict_additional_properties_paths", frozenset(self.strict_additional_properties_paths)
        )
        object.__setattr__(
            self, "strict_all_properties_required_paths", frozenset(self.strict_all_properties_required_paths)
        )
        object.__setattr__(self, "nullable_property_paths", frozenset(self.nullable_property_paths))

    def referenced_paths(self) -> frozenset[str]:
        return (
            self.strict_additional_properties_paths
            | self.strict_all_properties_required_paths
            | self.nullable_property_paths
        )


def _as_mapping(schema: SchemaInput) -> Mapping[str, Any]:
    if isinstance(schema, SchemaNode):
        return schema.to_dict()
    if not isinstance(schema, Mapping):
        raise TypeError(f"Expected a SchemaNode or mapping, got {type(schema).__name__}")
    return schema


def _type_names(node: Mapping[str, Any]) -> List[str]:
    raw = node.get("type")
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw.lower()]
    return [str(item).lower() for item in raw]


def _rebuild_children(
    node: Mapping[str, Any],
    path: str,
    compile_child: Any,
) -> Dict[str, Any]:
    rebuilt: Dict[str, Any] = {}
    for key, value in node.items():
        if key == "properties" and isinstance(value, Mapping):
            rebuilt[key] = {
                name: compile_child(child, child_path(path, name)) for name, child in value.items()
            }
        elif key == "items" and isinstance(value, Mapping):
            rebuilt[key] = compile_child(value, items_path(path))
        else:
            rebuilt[key] = copy.deepcopy(value)
    return rebuilt


def to_json_schema(schema: SchemaInput, policies: DialectPolicies) -> Dict[str, Any]:
    """Compile ``schema`` into Dialect B (strict JSON Schema)."""

    def compile_node(node: Mapping[str, Any], path: str) -> Dict[str, Any]:
        rebuilt = _rebuild_children(node, path, compile_node)
        rebuilt.pop("nullable", None)
        type_value = rebuilt.get("type")
        if isinstance(type_value, str):
            rebuilt["type"] = type_value.lower()
        elif isinstance(type_value, list):
            rebuilt["type"] = [str(item).lower() for item in type_value]

        is_object = "object" in _type_names(rebuilt)
        if is_object and path in policies.strict_additional_properties_paths:
            rebuilt["additionalProperties"] = False
        if is_object and path in policies.strict_all_properties_required_paths:
            rebuilt["required"] = list(rebuilt.get("properties") or {})
        if path in policies.nullable_property_paths:
            _widen_json_nullable(rebuilt)
        return rebuilt

    return compile_node(_as_mapping(schema), "")


def _widen_json_nullable(node: Dict[str, Any]) -> None:
    # Strict validators check ``type`` before ``enum``, so a typed enum needs both widened.
    enum_values = node.get("enum")
    if isinstance(enum_values, list) and None not in enum_values:
        enum_values.append(None)
    type_value = node.get("type")
    if type_value is None:
        if not isinstance(enum_values, list):
            node["type"] = ["null"]
    elif isinstance(type_value, list):
        if "null" not in type_value:
            type_value.append("null")
    elif type_value != "null":
        node["type"] = [type_value, "null"]


def to_gemini_schema(schema: SchemaInput, policies: DialectPolicies) -> Dict[str, Any]:
    """Compile ``schema`` into Dialect A (Gemini response schema)."""

    def compile_node(node: Mapping[str, Any], path: str) -> Dict[str, Any]:
        rebuilt = {
            key: value
            for key, value in _rebuild_children(node, path, compile_node).items()
            if key in _GEMINI_KEYS
        }
        type_names = [name for name in _type_names(node) if name != "null"]
        if len(type_names) != len(_type_names(node)):
            rebuilt["nullable"] = True
        if type_names:
            rebuilt["type"] = type_names[0].upper()

        if rebuilt.get("type") == "OBJECT":
            properties = rebuilt.get("properties")
            if not properties:
                location = path or "<root>"
                raise SchemaDialectError(
                    f"Gemini schemas require object nodes to declare properties (at {location})."
                )
            required = rebuilt.get("required")
            if isinstance(required, list):
                rebuilt["required"] = [name for name in required if name in properties]

        if path in policies.nullable_property_paths:
            rebuilt["nullable"] = True
            enum_values = rebuilt.get("enum")
            if isinstance(enum_values, list) and None not in enum_values:
                enum_values.append(None)
        return rebuilt

    return compile_node(_as_mapping(schema), "")


def compile_schema(schema: SchemaInput, policies: DialectPolicies, dialect: SchemaDialect) -> Dict[str, Any]:
    """Dispatch to the compiler for ``dialect``."""
    if dialect is SchemaDialect.GEMINI:
        return to_gemini_schema(schema, policies)
    return to_json_schema(schema, policies)


def iter_schema_paths(schema: SchemaInput) -> Iterator[Tuple[str, Mapping[str, Any]]]:
    """Yield every ``(path, node)`` pair in a rendered or canonical schema."""
    if isinstance(schema, SchemaNode):
        for path, node in schema.walk():
            yield path, node.to_dict()
        return

    def visit(node: Mapping[str, Any], path: str) -> Iterator[Tuple[str, Mapping[str, Any]]]:
        yield path, node
        properties = node.get("properties")
        if isinstance(properties, Mapping):
            for name, child in properties.items():
                yield from visit(child, child_path(path, name))
        items = node.get("items")
        if isinstance(items, Mapping):
            yield from visit(items, items_path(path))

    yield from visit(schema, "")


def validate_policy_paths(schema: SchemaInput, policies: DialectPolicies) -> List[str]:
    """Return policy paths that do not address a node in ``schema``.

    Object-only policies pointing at non-object nodes are reported as well.
    """
    known: Dict[str, bool] = {}
    for path, node in iter_schema_paths(schema):
        known[path] = "object" in _type_names(node)
    problems: List[str] = []
    for path in sorted(policies.referenced_paths()):
        if path not in known:
            problems.append(path)
    object_only = policies.strict_additional_properties_paths | policies.strict_all_properties_required_paths
    for path in sorted(object_only):
        if path in known and not known[path]:
            problems.append(f"{path} (not an object)")
    return problems


@dataclass(frozen=True, eq=False, slots=True)
class SchemaDefinition:
    """Named canonical schema plus its dialect policies."""

    name: str
    root: SchemaNode
    policies: DialectPolicies
    description: str = ""

    def compile(self, dialect: SchemaDialect) -> Dict[str, Any]:
        """Return a private copy of the memoized compiled payload."""
        return copy.deepcopy(_compile_cached(self, SchemaDialect(dialect)))

    def problems(self) -> List[str]:
        return validate_policy_paths(self.root, self.policies)

    def verify(self) -> None:
        """Raise ``SchemaPolicyError`` when policies reference unknown paths."""
        missing = self.problems()
        if missing:
            raise SchemaPolicyError(self.name, missing)


@lru_cache(maxsize=None)
def _compile_cached(definition: SchemaDefinition, dialect: SchemaDialect) -> Dict[str, Any]:
    return compile_schema(definition.root, definition.policies, dialect)


def policies_for(
    *,
    additional_properties: Iterable[str] = (),
    all_required: Iterable[str] = (),
    nullable: Iterable[str] = (),
) -> DialectPolicies:
    """Convenience constructor accepting any iterables of paths."""
    return DialectPolicies(
        strict_additional_properties_paths=frozenset(additional_properties),
        strict_all_properties_required_paths=frozenset(all_required),
        nullable_property_paths=frozenset(nullable),
    )
