"""Canonical schema trees and their provider dialect compilers."""

from .catalog import SCHEMA_REGISTRY, get_schema
from .dialects import (
    DialectPolicies,
    SchemaDefinition,
    SchemaDialect,
    compile_schema,
    to_gemini_schema,
    to_json_schema,
    validate_policy_paths,
)
from .nodes import SchemaKind, SchemaNode

__all__ = [
    "DialectPolicies",
    "SCHEMA_REGISTRY",
    "SchemaDefinition",
    "SchemaDialect",
    "SchemaKind",
    "SchemaNode",
    "compile_schema",
    "get_schema",
    "to_gemini_schema",
    "to_json_schema",
    "validate_policy_paths",
]
