"""Canonical field rules and normalizers."""

from .field_rules import (
    CUSTOMERS,
    ENTITY_TYPES,
    FALLBACK_KEYS,
    ORDERS,
    PRIMARY_KEYS,
    FieldRule,
    build_rules,
    normalize_header,
)

__all__ = [
    "CUSTOMERS",
    "ENTITY_TYPES",
    "FALLBACK_KEYS",
    "ORDERS",
    "PRIMARY_KEYS",
    "FieldRule",
    "build_rules",
    "normalize_header",
]
