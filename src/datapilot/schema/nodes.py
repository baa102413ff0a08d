"""Canonical, provider-neutral schema tree used to derive both output dialects."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, Tuple

__all__ = [
    "SchemaKind",
    "SchemaNode",
    "array",
    "boolean",
    "child_path",
    "enum_of",
    "integer",
    "items_path",
    "number",
    "obj",
    "string",
]


class SchemaKind(str, Enum):
    """Node tags understood by the dialect compilers."""

    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    ENUM = "enum"


def child_path(path: str, name: str) -> str:
    """Return the path of property ``name`` below ``path``."""
    segment = f"properties.{name}"
    return f"{path}.{segment}" if path else segment


def items_path(path: str) -> str:
    """Return the path of the ``items`` node below ``path``."""
    return f"{path}.items" if path else "items"


@dataclass(frozen=True, slots=True)
class SchemaNode:
    """Immutable schema node; subtrees may be shared safely between schemas."""

    kind: SchemaKind
    description: Optional[str] = None
    enum: Optional[Tuple[Any, ...]] = None
    min_length: Optional[int] = None
    min_items: Optional[int] = None
    properties: Mapping[str, "SchemaNode"] = field(default_factory=dict)
    items: Optional["SchemaNode"] = None
    required: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))
        if self.enum is not None:
            object.__setattr__(self, "enum", tuple(self.enum))
        object.__setattr__(self, "required", tuple(self.required))

        if self.kind is SchemaKind.ENUM and not self.enum:
            raise ValueError("enum nodes must declare at least one value")
        if self.kind is SchemaKind.ARRAY and self.items is None:
            raise ValueError("array nodes must declare an items schema")
        if self.kind is not SchemaKind.OBJECT and self.properties:
            raise ValueError(f"{self.kind.value} nodes cannot declare properties")
        unknown = [name for name in self.required if name not in self.properties]
        if unknown:
            raise ValueError(f"required names missing from properties: {', '.join(unknown)}")

    @property
    def json_type(self) -> str:
        """Return the JSON type name carried by this node."""
        if self.kind is SchemaKind.ENUM:
            return SchemaKind.STRING.value
        return self.kind.value

    def describe(self, description: str) -> "SchemaNode":
        """Return a copy of this node with a different description."""
        return replace(self, description=description)

    def optional(self) -> "SchemaNode":
        """Return a copy of an object node with no required properties."""
        return replace(self, required=())

    def to_dict(self) -> Dict[str, Any]:
        """Render the canonical tree as a fresh JSON-schema-shaped mapping."""
        rendered: Dict[str, Any] = {"type": self.json_type}
        if self.description:
            rendered["description"] = self.description
        if self.enum is not None:
            rendered["enum"] = list(self.enum)
        if self.min_length is not None:
            rendered["minLength"] = self.min_length
        if self.min_items is not None:
            rendered["minItems"] = self.min_items
        if self.kind is SchemaKind.OBJECT:
            rendered["properties"] = {name: child.to_dict() for name, child in self.properties.items()}
            if self.required:
                rendered["required"] = list(self.required)
        if self.items is not None:
            rendered["items"] = self.items.to_dict()
        return rendered

    def walk(self, path: str = "") -> Iterator[Tuple[str, "SchemaNode"]]:
        """Yield ``(path, node)`` pairs in depth-first order, root first."""
        yield path, self
        for name, child in self.properties.items():
            yield from child.walk(child_path(path, name))
        if self.items is not None:
            yield from self.items.walk(items_path(path))

    def paths(self) -> frozenset[str]:
        return frozenset(path for path, _ in self.walk())

    def object_paths(self) -> frozenset[str]:
        return frozenset(path for path, node in self.walk() if node.kind is SchemaKind.OBJECT)


def string(description: Optional[str] = None, *, min_length: Optional[int] = None) -> SchemaNode:
    return SchemaNode(SchemaKind.STRING, description=description, min_length=min_length)


def integer(description: Optional[str] = None) -> SchemaNode:
    return SchemaNode(SchemaKind.INTEGER, description=description)


def number(description: Optional[str] = None) -> SchemaNode:
    return SchemaNode(SchemaKind.NUMBER, description=description)


def boolean(description: Optional[str] = None) -> SchemaNode:
    return SchemaNode(SchemaKind.BOOLEAN, description=description)


def enum_of(values: Sequence[str], description: Optional[str] = None) -> SchemaNode:
    return SchemaNode(SchemaKind.ENUM, description=description, enum=tuple(values))


def array(
    items: SchemaNode,
    description: Optional[str] = None,
    *,
    min_items: Optional[int] = None,
) -> SchemaNode:
    return SchemaNode(SchemaKind.ARRAY, description=description, items=items, min_items=min_items)


def obj(
    properties: Mapping[str, SchemaNode],
    *,
    required: Sequence[str] = (),
    description: Optional[str] = None,
) -> SchemaNode:
    return SchemaNode(
        SchemaKind.OBJECT,
        description=description,
        properties=properties,
        required=tuple(required),
    )
