# tests/core/traceability/test_manifest_event_log.py
"""
Testes do Event Log: eventos explícitos, em ordem de chamada.
"""
import pytest
from datetime import datetime, timezone

try:
    from kea_images.core.traceability import add_event, create_manifest
except Exception as e:
    create_manifest = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def test_event_log_appends_ordered_events():
    if create_manifest is None:
        pytest.fail(f"Missing traceability API. Import error: {_IMPORT_ERR}")

    ts = datetime(2026, 1, 1, tzinfo=timezone.utc)
    m = create_manifest(run_id="r", started_at=ts, tool_version="0.1.0", version="2.4.1", config_hash="c" * 64)

    add_event(m, event_type="run_started", ts=ts, payload={"stages": ["base"]})
    add_event(m, event_type="image_loaded", ts=ts, stage_id="hooks", payload={"image": "hooks"})
    add_event(m, event_type="run_finished", ts=ts)

    assert [e["event_type"] for e in m.events] == ["run_started", "image_loaded", "run_finished"]
    assert m.events[1]["stage_id"] == "hooks"
    assert "stage_id" not in m.events[0]
    assert "payload" not in m.events[2]
