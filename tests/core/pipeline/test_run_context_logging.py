# tests/core/pipeline/test_run_context_logging.py
"""
Testes do log estruturado e da coleta de warnings do RunContext.
"""
import logging


def test_structured_log_event(dummy_ctx):
    """Todo evento carrega run_id, stage_id, nível, mensagem e extras."""
    dummy_ctx.log(stage_id="prune", level="info", message="artifacts pruned", stripped=12)

    assert len(dummy_ctx.events) == 1
    ev = dummy_ctx.events[0]
    assert ev["run_id"] == "test-run"
    assert ev["stage_id"] == "prune"
    assert ev["level"] == "info"
    assert ev["message"] == "artifacts pruned"
    assert ev["stripped"] == 12
    assert "timestamp" in ev


def test_warning_collection(dummy_ctx):
    dummy_ctx.add_warning(stage_id="dhcp4-full", message="libdhcp_mysql_cb.so skipped")
    dummy_ctx.add_warning(stage_id="dhcp4-full", message="libdhcp_pgsql_cb.so skipped")
    dummy_ctx.add_warning(stage_id="runtime", message="no installer")

    assert dummy_ctx.warnings == {
        "dhcp4-full": ["libdhcp_mysql_cb.so skipped", "libdhcp_pgsql_cb.so skipped"],
        "runtime": ["no installer"],
    }


def test_config_accessors(dummy_ctx):
    dummy_ctx.config["stages"] = {"hooks": {"enabled": False}}
    dummy_ctx.config["images"] = {"repository": "kea"}

    assert dummy_ctx.stage_config("hooks") == {"enabled": False}
    assert dummy_ctx.stage_config("runtime") == {}
    assert dummy_ctx.section("images") == {"repository": "kea"}
    assert dummy_ctx.section("missing") == {}
    assert dummy_ctx.meta_value("output_dir", "dist") == "dist"


def test_log_events_reach_python_logging(dummy_ctx, caplog):
    """Eventos e warnings também saem pelo logger `kea_images.run`."""
    caplog.set_level(logging.DEBUG, logger="kea_images.run")

    dummy_ctx.log(stage_id="compile", level="error", message="stage failed", error_type="COMPILATION_FAILED")
    dummy_ctx.log(stage_id="base", level="debug", message="base layer materialized")
    dummy_ctx.add_warning(stage_id="dhcp4-full", message="libdhcp_mysql_cb.so skipped")

    records = [r for r in caplog.records if r.name == "kea_images.run"]
    assert [r.levelno for r in records] == [logging.ERROR, logging.DEBUG, logging.WARNING]
    assert records[0].getMessage() == "compile: stage failed (error_type=COMPILATION_FAILED)"
    assert records[1].getMessage() == "base: base layer materialized"
    assert records[2].getMessage() == "dhcp4-full: libdhcp_mysql_cb.so skipped"
    assert all(r.run_id == "test-run" for r in records)
    assert records[0].stage_id == "compile"
