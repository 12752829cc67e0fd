# tests/core/config/test_merge.py
"""
Testes do deep-merge de configuração.

Política validada:
    - dict → merge recursivo
    - list → sobrescrita total (allow-lists nunca são concatenadas)
    - None → sobrescrita direta
    - conflito de tipo → ConfigTypeConflictError
"""

import pytest

try:
    from kea_images.core.config.merge import deep_merge
    from kea_images.core.config.errors import ConfigTypeConflictError
except Exception as e:  # noqa: BLE001
    deep_merge = None
    ConfigTypeConflictError = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require():
    if deep_merge is None:
        pytest.fail(f"Missing deep_merge. Import error: {_IMPORT_ERR}")


def test_merge_simple_override():
    _require()
    assert deep_merge({"a": 1, "b": 2}, {"b": 3}) == {"a": 1, "b": 3}


def test_merge_nested_dict():
    _require()
    base = {"engine": {"fail_fast": False, "max_workers": 1}}
    out = deep_merge(base, {"engine": {"fail_fast": True}})
    assert out == {"engine": {"fail_fast": True, "max_workers": 1}}


def test_merge_list_override_total():
    _require()
    base = {"plugins": {"allow_lists": {"dhcp4": ["libdhcp_ha.so", "libdhcp_bootp.so"]}}}
    out = deep_merge(base, {"plugins": {"allow_lists": {"dhcp4": ["libdhcp_lease_cmds.so"]}}})
    assert out["plugins"]["allow_lists"]["dhcp4"] == ["libdhcp_lease_cmds.so"]


def test_merge_null_default_accepts_any_type():
    _require()
    out = deep_merge({"source": {"mirror_dir": None, "sha256": None}}, {"source": {"mirror_dir": "/m"}})
    assert out["source"] == {"mirror_dir": "/m", "sha256": None}


def test_merge_does_not_mutate_inputs():
    _require()
    base = {"engine": {"fail_fast": False}}
    override = {"engine": {"fail_fast": True}}
    deep_merge(base, override)
    assert base == {"engine": {"fail_fast": False}}
    assert override == {"engine": {"fail_fast": True}}


def test_merge_type_conflict_raises():
    _require()
    with pytest.raises(ConfigTypeConflictError):
        deep_merge({"engine": {"fail_fast": False}}, {"engine": "DEBUG"})


def test_merge_conflict_names_the_full_key():
    _require()
    with pytest.raises(ConfigTypeConflictError) as exc:
        deep_merge({"runtime": {"packages": ["libpq"]}}, {"runtime": {"packages": "libpq"}})
    assert "runtime.packages" in str(exc.value)
