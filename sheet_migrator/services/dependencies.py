from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ..models.candidate_record import CandidateRecord
from ..rules.field_rules import CUSTOMERS, ORDERS

"""Entity dependency service (parent -> child foreign keys).

Decides the order in which entity types are processed and builds the set of
parent identifiers a child's foreign key is checked against.

- Parents are always processed before their children, never concurrently.
- The known-identifier set is the parent's valid, deduplicated identifiers
  plus the identifiers the sink reports as already persisted.
"""

__all__ = [
    "DependencyError",
    "EntityDependency",
    "DEPENDENCIES",
    "processing_order",
    "parent_of",
    "build_known_ids",
]


class DependencyError(Exception):
    """Raised when entity dependencies cannot be ordered."""


@dataclass(frozen=True)
class EntityDependency:
    parent: str  # parent entity type
    child: str  # child entity type
    parent_key: str  # identifier column in parent records
    child_fk: str  # referencing column in child records


DEPENDENCIES: tuple[EntityDependency, ...] = (
    EntityDependency(parent=CUSTOMERS, child=ORDERS, parent_key="customer_id", child_fk="customer_id"),
)


def parent_of(entity: str) -> EntityDependency | None:
    for dep in DEPENDENCIES:
        if dep.child == entity:
            return dep
    return None


def processing_order(entities: Iterable[str]) -> list[str]:
    """Order configured entities so that every parent precedes its children.

    Entities keep their configured order otherwise. A parent that is not
    configured is simply skipped (its ids then come from the sink only).
    """
    pending = list(dict.fromkeys(entities))
    ordered: list[str] = []
    while pending:
        progressed = False
        for entity in list(pending):
            dep = parent_of(entity)
            if dep is None or dep.parent in ordered or dep.parent not in pending:
                ordered.append(entity)
                pending.remove(entity)
                progressed = True
        if not progressed:  # pragma: no cover (cycle; not reachable with fixed table)
            raise DependencyError(f"cyclic entity dependencies: {pending}")
    return ordered


def build_known_ids(
    dependency: EntityDependency,
    parent_valid: Sequence[CandidateRecord],
    existing_ids: Iterable[str] = (),
) -> frozenset[str]:
    """Identifiers child records may reference."""
    ids = {r.get(dependency.parent_key) for r in parent_valid}
    ids.discard(None)
    ids.update(existing_ids)
    return frozenset(str(i) for i in ids)
