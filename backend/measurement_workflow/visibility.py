"""
════════════════════════════════════════════════════════════════════════════════════════════════════
VISIBILITY RESOLVER - Which fields the operator must see, in catalog order
════════════════════════════════════════════════════════════════════════════════════════════════════

A field without a dependency is always visible. A dependent field is visible
only when its parent has a recorded, non-skipped measurement whose value is one
of the allowed values.

Evaluation is a single-hop lookup of the parent by id, so a cyclic catalog can
never loop. `transitive=True` also requires the parent itself to be visible; it
is resolved by fixed-point iteration capped at the catalog length.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Set

from .catalog import MeasurementField
from .domain import Measurement


def dependency_satisfied(
    field: MeasurementField,
    measurements: Mapping[str, Measurement],
    catalog_ids: Optional[Set[str]] = None,
) -> bool:
    """Single-hop check of a field's own dependency."""
    if not field.has_dependency:
        return True

    # A parent missing from the catalog cannot gate anything
    if catalog_ids is not None and field.depends_on not in catalog_ids:
        return True

    parent = measurements.get(field.depends_on)
    if parent is None or parent.skipped or parent.value is None:
        return False

    return str(parent.value) in field.depends_on_values


def resolve_visible_fields(
    fields: List[MeasurementField],
    measurements: Mapping[str, Measurement],
    transitive: bool = False,
) -> List[MeasurementField]:
    """
    Return the ordered sublist of `fields` to present.

    Args:
        fields: full catalog of the operation, in display order
        measurements: field_id -> Measurement recorded so far
        transitive: also hide fields whose parent is itself hidden
    """
    catalog_ids = {f.id for f in fields}
    visible_ids = {
        f.id for f in fields if dependency_satisfied(f, measurements, catalog_ids)
    }

    if transitive:
        for _ in range(len(fields)):
            narrowed = {
                fid for fid in visible_ids
                if _parent_visible(fid, fields, visible_ids, catalog_ids)
            }
            if narrowed == visible_ids:
                break
            visible_ids = narrowed

    return [f for f in fields if f.id in visible_ids]


def _parent_visible(
    field_id: str,
    fields: List[MeasurementField],
    visible_ids: Set[str],
    catalog_ids: Set[str],
) -> bool:
    field = next(f for f in fields if f.id == field_id)
    if not field.has_dependency or field.depends_on not in catalog_ids:
        return True
    return field.depends_on in visible_ids


def index_of(fields: List[MeasurementField], field_id: str) -> int:
    """Position of a field in a resolved list, -1 when absent."""
    return next((i for i, f in enumerate(fields) if f.id == field_id), -1)


def measurements_by_field(measurements: List[Measurement]) -> Dict[str, Measurement]:
    return {m.field_id: m for m in measurements}
