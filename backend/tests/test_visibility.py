"""
Tests for the field catalog and the visibility resolver.
"""
import json

import pytest

from measurement_workflow.catalog import (
    FieldType,
    MeasurementField,
    Operation,
    OperationCatalog,
    load_catalog,
)
from measurement_workflow.domain import Measurement
from measurement_workflow.visibility import (
    dependency_satisfied,
    index_of,
    measurements_by_field,
    resolve_visible_fields,
)


def _field(fid, order, depends_on=None, values=None, field_type=FieldType.TEXT, **kwargs):
    return MeasurementField(
        id=fid,
        operation_id="op",
        name=fid.lower(),
        display_name=fid,
        field_type=field_type,
        order=order,
        depends_on=depends_on,
        depends_on_values=values or [],
        **kwargs,
    )


def _answers(**values):
    return {fid: Measurement(record_id="r1", field_id=fid, value=v) for fid, v in values.items()}


class TestCatalog:
    """Catalog parsing and registry lookups."""

    def test_fields_sorted_by_order(self):
        op = Operation.from_dict({
            "id": "op1",
            "name": "sanding",
            "fields": [
                {"id": "b", "name": "b", "order": 2},
                {"id": "a", "name": "a", "order": 1},
            ],
        })
        assert [f.id for f in op.fields] == ["a", "b"]
        assert all(f.operation_id == "op1" for f in op.fields)

    def test_depends_on_value_comma_string_is_split_and_trimmed(self):
        field = MeasurementField.from_dict({
            "id": "f2", "name": "gap", "depends_on": "f1", "depends_on_value": " repair , fail ",
        })
        assert field.depends_on_values == ["repair", "fail"]
        assert field.has_dependency

    def test_depends_on_values_list_accepted(self):
        field = MeasurementField.from_dict({
            "id": "f2", "name": "gap", "depends_on": "f1", "depends_on_values": ["yes"],
        })
        assert field.depends_on_values == ["yes"]

    def test_select_without_options_rejected(self):
        with pytest.raises(ValueError):
            MeasurementField.from_dict({"id": "f", "name": "wax", "field_type": "select"})

    def test_choices_per_type(self):
        assert _field("a", 1, field_type=FieldType.PASS_FAIL).choices() == ["pass", "fail"]
        assert _field("b", 2, field_type=FieldType.PASS_REPAIR).choices() == ["pass", "repair"]
        assert _field("c", 3, field_type=FieldType.NUMERIC).choices() == []

    def test_registry_lookup_by_id_and_name(self, ski_catalog):
        assert ski_catalog.get("op-sanding").name == "sanding"
        assert ski_catalog.get_by_name("press_in").id == "op-press-in"
        assert ski_catalog.get_by_name("unknown") is None
        assert [op.name for op in ski_catalog.operations()][:2] == ["core_check", "press_in"]
        assert len(ski_catalog) == 4

    def test_load_catalog_from_json(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps({"operations": [
            {"id": "op1", "name": "cut_out", "fields": [{"id": "c1", "name": "length", "field_type": "numeric"}]},
        ]}))
        catalog = load_catalog(path)
        assert isinstance(catalog, OperationCatalog)
        assert catalog.get_by_name("cut_out").fields[0].field_type == FieldType.NUMERIC


class TestVisibility:
    """Conditional field visibility."""

    def test_fields_without_dependency_always_visible(self):
        fields = [_field("A", 1), _field("B", 2)]
        assert resolve_visible_fields(fields, {}) == fields

    def test_scenario_parent_no_hides_child(self):
        fields = [_field("F1", 1), _field("F2", 2, depends_on="F1", values=["yes"])]
        visible = resolve_visible_fields(fields, _answers(F1="no"))
        assert [f.id for f in visible] == ["F1"]

    def test_scenario_parent_yes_shows_child(self):
        fields = [_field("F1", 1), _field("F2", 2, depends_on="F1", values=["yes"])]
        visible = resolve_visible_fields(fields, _answers(F1="yes"))
        assert [f.id for f in visible] == ["F1", "F2"]
        assert index_of(visible, "F1") + 1 == 1

    def test_unanswered_parent_hides_child(self):
        fields = [_field("F1", 1), _field("F2", 2, depends_on="F1", values=["yes"])]
        assert [f.id for f in resolve_visible_fields(fields, {})] == ["F1"]

    def test_skipped_parent_hides_child(self):
        fields = [_field("F1", 1), _field("F2", 2, depends_on="F1", values=["yes"])]
        measurements = {"F1": Measurement(record_id="r1", field_id="F1", value=None, skipped=True)}
        assert [f.id for f in resolve_visible_fields(fields, measurements)] == ["F1"]

    def test_comparison_is_case_sensitive(self):
        fields = [_field("F1", 1), _field("F2", 2, depends_on="F1", values=["yes"])]
        assert [f.id for f in resolve_visible_fields(fields, _answers(F1="YES"))] == ["F1"]

    def test_parent_missing_from_catalog_counts_as_satisfied(self):
        orphan = _field("F2", 2, depends_on="GONE", values=["yes"])
        assert resolve_visible_fields([_field("F1", 1), orphan], {}) == [_field("F1", 1), orphan]
        assert dependency_satisfied(orphan, {}) is False

    def test_single_hop_ignores_hidden_grandparent(self):
        fields = [
            _field("A", 1),
            _field("B", 2, depends_on="A", values=["yes"]),
            _field("C", 3, depends_on="B", values=["deep"]),
        ]
        answers = _answers(A="no", B="deep")
        assert [f.id for f in resolve_visible_fields(fields, answers)] == ["A", "C"]
        assert [f.id for f in resolve_visible_fields(fields, answers, transitive=True)] == ["A"]

    def test_cycle_terminates(self):
        fields = [
            _field("X", 1, depends_on="Y", values=["1"]),
            _field("Y", 2, depends_on="X", values=["1"]),
        ]
        answers = _answers(X="1", Y="1")
        assert [f.id for f in resolve_visible_fields(fields, answers)] == ["X", "Y"]
        assert [f.id for f in resolve_visible_fields(fields, answers, transitive=True)] == ["X", "Y"]
        assert resolve_visible_fields(fields, {}, transitive=True) == []

    def test_index_of_and_measurement_map(self):
        fields = [_field("A", 1), _field("B", 2)]
        assert index_of(fields, "B") == 1
        assert index_of(fields, "Z") == -1
        by_field = measurements_by_field([Measurement(record_id="r", field_id="A", value="1")])
        assert set(by_field) == {"A"}
