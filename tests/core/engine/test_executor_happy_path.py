# tests/core/engine/test_executor_happy_path.py
"""
Testes do caminho feliz do Engine e da integração com o Manifest.
"""
import pytest
from datetime import datetime, timezone

try:
    from kea_images.core.engine.engine import Engine
    from kea_images.core.pipeline.types import StageStatus
    from kea_images.core.traceability import create_manifest
except Exception as e:
    Engine = None
    StageStatus = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def test_all_stages_succeed_in_plan_order(dummy_ctx, DummyStage):
    if Engine is None:
        pytest.fail(f"Missing Engine. Import error: {_IMPORT_ERR}")

    stages = [DummyStage("source", ["base"]), DummyStage("base")]
    result = Engine(stages=stages, ctx=dummy_ctx).run()

    assert list(result.stages) == ["base", "source"]
    assert result.succeeded() == ["base", "source"]
    assert dummy_ctx.meta["executed"] == ["base", "source"]


def test_context_warnings_are_merged_into_result(dummy_ctx, DummyStage):
    if Engine is None:
        pytest.fail(f"Missing Engine. Import error: {_IMPORT_ERR}")

    dummy_ctx.add_warning(stage_id="base", message="runtime packages were not installed")
    result = Engine(stages=[DummyStage("base")], ctx=dummy_ctx).run()

    assert result.stages["base"].warnings == ["runtime packages were not installed"]


def test_manifest_records_stage_lifecycle(dummy_ctx, DummyStage):
    if Engine is None:
        pytest.fail(f"Missing Engine. Import error: {_IMPORT_ERR}")

    dummy_ctx.manifest = create_manifest(
        run_id="r1",
        started_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        tool_version="0.1.0",
        version="2.4.1",
        config_hash="0" * 64,
    )
    stages = [DummyStage("base"), DummyStage("hooks", ["base"], raises=RuntimeError("x"))]
    Engine(stages=stages, ctx=dummy_ctx).run()

    m = dummy_ctx.manifest
    assert m.stages["base"]["status"] == "success"
    assert m.stages["hooks"]["status"] == "failed"
    assert [e["event_type"] for e in m.events] == [
        "stage_started",
        "stage_finished",
        "stage_started",
        "stage_failed",
    ]


def test_invalid_return_type_is_configuration_error(dummy_ctx):
    if Engine is None:
        pytest.fail(f"Missing Engine. Import error: {_IMPORT_ERR}")

    class BadStage:
        id = "bad"
        kind = None
        depends_on = []

        def run(self, ctx):
            return {"status": "success"}

    result = Engine(stages=[BadStage()], ctx=dummy_ctx).run()
    assert result.stages["bad"].status == StageStatus.FAILED
    assert result.stages["bad"].payload["error"]["type"] == "ENGINE_CONFIGURATION_ERROR"
