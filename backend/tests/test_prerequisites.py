"""
Tests for the prerequisite gate and the HTTP gateways.
"""
from unittest.mock import MagicMock

import pytest
import requests

from measurement_workflow.errors import SnapshotLookupError
from measurement_workflow.gateways import HttpDeliverySink, HttpSnapshotReader
from measurement_workflow.prerequisites import (
    PREREQUISITES,
    GateStatus,
    OperationPrerequisite,
    PrerequisiteGate,
)

from conftest import ScriptedSnapshotReader


def _response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


class TestPrerequisiteGate:
    """Upstream completion classification."""

    def test_unknown_operation_passes_without_lookup(self):
        reader = ScriptedSnapshotReader()
        result = PrerequisiteGate(reader).check("core_check", "SN100", "left")
        assert result.status == GateStatus.PASS
        assert reader.calls == []

    def test_required_key_present_passes(self):
        reader = ScriptedSnapshotReader({("SN100", "left"): {"cut out time": "2024-03-01 10:00", "SKU": "ALP-170"}})
        result = PrerequisiteGate(reader).check("sanding", "SN100", "left")
        assert result.ok
        assert result.sku == "ALP-170"

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_required_key_blocks(self, value):
        reader = ScriptedSnapshotReader({("SN100", "right"): {"cut out time": value}})
        result = PrerequisiteGate(reader).check("sanding", "SN100", "right")
        assert result.status == GateStatus.BLOCKED
        assert result.missing_label == "Cut Out"

    def test_missing_required_key_blocks(self):
        result = PrerequisiteGate(ScriptedSnapshotReader()).check("press_out", "SN1", None)
        assert result.status == GateStatus.BLOCKED
        assert result.missing_label == "Press In"

    def test_terminal_grade_checked_first(self):
        reader = ScriptedSnapshotReader({("SN100", "left"): {"QC grade": "C"}})
        result = PrerequisiteGate(reader).check("sanding", "SN100", "left")
        assert result.status == GateStatus.TERMINAL_BLOCK
        assert result.upstream_grade == "C"
        assert result.missing_label is None

    def test_conditional_key_only_when_present(self):
        snapshot = {"soft touch time": "2024-03-01"}
        reader = ScriptedSnapshotReader({("SN1", "left"): snapshot})
        gate = PrerequisiteGate(reader)
        assert gate.check("flattening", "SN1", "left").ok

        snapshot["base gap repair time"] = ""
        result = gate.check("flattening", "SN1", "left")
        assert result.status == GateStatus.BLOCKED
        assert result.missing_label == "Base Gap Repair"

        snapshot["base gap repair time"] = "2024-03-02"
        assert gate.check("flattening", "SN1", "left").ok

    def test_pair_operation_checks_left_side(self):
        reader = ScriptedSnapshotReader({("SN100", "left"): {"core area time": "08:00"}})
        result = PrerequisiteGate(reader).check("press_in", "SN100", "right")
        assert result.ok
        assert reader.calls == [("SN100", "left")]

    def test_lookup_failure_fails_open(self):
        reader = ScriptedSnapshotReader()
        reader.fail = True
        result = PrerequisiteGate(reader).check("sanding", "SN100", "left")
        assert result.status == GateStatus.PASS
        assert result.lookup_failed

    def test_lookup_failure_blocks_when_strict(self):
        reader = ScriptedSnapshotReader()
        reader.fail = True
        result = PrerequisiteGate(reader, fail_open=False).check("sanding", "SN100", "left")
        assert result.status == GateStatus.BLOCKED
        assert result.lookup_failed

    def test_no_reader_fails_open(self):
        assert PrerequisiteGate(None).check("final_qc", "SN1", "left").ok

    def test_non_string_sku_ignored(self):
        reader = ScriptedSnapshotReader({("SN1", "left"): {"machine time": "x", "SKU": 1234}})
        assert PrerequisiteGate(reader).check("final_qc", "SN1", "left").sku is None

    def test_custom_prerequisites(self):
        gate = PrerequisiteGate(
            ScriptedSnapshotReader(),
            prerequisites={"core_check": OperationPrerequisite(required=["mold time"])},
        )
        result = gate.check("core_check", "SN1", "left")
        assert result.status == GateStatus.BLOCKED
        assert result.missing_label == "mold time"

    def test_chain_covers_every_downstream_operation(self):
        assert set(PREREQUISITES) == {
            "press_in", "press_out", "surface_check", "cut_out", "sanding", "sidewall_milling",
            "soft_touch", "flattening", "nose_tail_structure", "service_machine", "final_qc",
        }


class TestHttpSnapshotReader:
    """requests-based snapshot reads."""

    def test_posts_serial_and_side(self):
        session = MagicMock()
        session.post.return_value = _response(payload={"QC grade": "A"})
        reader = HttpSnapshotReader("https://hooks.example/read", timeout=3, session=session)

        assert reader.read("SN100", "left") == {"QC grade": "A"}
        session.post.assert_called_once_with(
            "https://hooks.example/read", json={"serial_number": "SN100", "side": "left"}, timeout=3
        )

    def test_list_payload_uses_first_element(self):
        session = MagicMock()
        session.post.return_value = _response(payload=[{"SKU": "A"}, {"SKU": "B"}])
        assert HttpSnapshotReader("u", session=session).read("SN1", "left") == {"SKU": "A"}

    def test_empty_list_is_empty_snapshot(self):
        session = MagicMock()
        session.post.return_value = _response(payload=[])
        assert HttpSnapshotReader("u", session=session).read("SN1", "left") == {}

    def test_timeout_raises_lookup_error(self):
        session = MagicMock()
        session.post.side_effect = requests.Timeout("read timed out")
        with pytest.raises(SnapshotLookupError):
            HttpSnapshotReader("u", session=session).read("SN1", "left")

    def test_bad_status_raises_lookup_error(self):
        session = MagicMock()
        session.post.return_value = _response(status_code=502)
        with pytest.raises(LookupError):
            HttpSnapshotReader("u", session=session).read("SN1", "left")

    def test_invalid_json_raises_lookup_error(self):
        session = MagicMock()
        session.post.return_value = _response(payload=ValueError("no json"))
        with pytest.raises(SnapshotLookupError):
            HttpSnapshotReader("u", session=session).read("SN1", "left")

    def test_timeout_through_gate_fails_open(self):
        session = MagicMock()
        session.post.side_effect = requests.Timeout("read timed out")
        gate = PrerequisiteGate(HttpSnapshotReader("u", session=session))
        assert gate.check("sanding", "SN100", "left").status == GateStatus.PASS


class TestHttpDeliverySink:
    """Summary delivery endpoints."""

    def test_pair_and_single_endpoints(self):
        session = MagicMock()
        session.post.return_value = _response(payload={"ok": True})
        sink = HttpDeliverySink("https://hooks/press", "https://hooks/measure", session=session)

        assert sink.deliver({"a": 1}, pair_operation=True).ok
        assert sink.deliver({"a": 1}, pair_operation=False).ok
        urls = [call.args[0] for call in session.post.call_args_list]
        assert urls == ["https://hooks/press", "https://hooks/measure"]

    def test_error_status_reported_not_raised(self):
        session = MagicMock()
        session.post.return_value = _response(status_code=500, payload={"error": "sheet locked"})
        result = HttpDeliverySink("p", "s", session=session).deliver({}, pair_operation=False)
        assert not result.ok
        assert result.status_code == 500
        assert result.error == "sheet locked"

    def test_connection_error_reported(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("refused")
        result = HttpDeliverySink("p", "s", session=session).deliver({}, pair_operation=True)
        assert not result.ok
        assert "refused" in result.error

    def test_missing_endpoint(self):
        result = HttpDeliverySink("", "", session=MagicMock()).deliver({}, pair_operation=True)
        assert not result.ok
