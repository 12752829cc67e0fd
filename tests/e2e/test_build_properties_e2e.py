# tests/e2e/test_build_properties_e2e.py
"""
Propriedades end-to-end do build.

- Reprodutibilidade: duas runs independentes com a mesma versão e a
  mesma config produzem tarballs byte-idênticos.
- Inspeção: a imagem de hooks é superconjunto de toda variante full.
- Verificação: assinatura corrompida ⇒ nenhuma imagem, compile nunca roda.
- Isolamento: módulo allow-listed ausente falha apenas a variante full
  que o exige; as demais imagens são exportadas.
- Desligar uma variante por config não é falha do build.
"""
import hashlib

import pytest

from tests.e2e._helpers import build, hooks_in, tar_names
from tests.fixtures.fake_toolchain import FakeRunner, make_release


def test_builds_are_reproducible(tmp_path, release_mirror):
    first = build(tmp_path, release_mirror, name="first")
    second = build(tmp_path, release_mirror, name="second")

    assert first.ok and second.ok
    for image, info in first.images.items():
        assert second.images[image]["tar_sha256"] == info["tar_sha256"], image
        assert second.images[image]["config_sha256"] == info["config_sha256"], image


def test_rebuild_in_same_work_dir_is_identical(tmp_path, release_mirror):
    first = build(tmp_path, release_mirror, name="same")
    digests = {k: v["tar_sha256"] for k, v in first.images.items()}
    second = build(tmp_path, release_mirror, name="same")

    assert {k: v["tar_sha256"] for k, v in second.images.items()} == digests


def test_inspection_image_is_superset(tmp_path, release_mirror):
    outcome = build(tmp_path, release_mirror)
    images_dir = outcome.manifest_path.parent
    inspection = {
        n.rsplit("/", 1)[-1] for n in tar_names(images_dir / "hooks.tar") if n.startswith("hooks/")
    }

    for image in ("dhcp4-full", "dhcp6-full"):
        assert set(hooks_in(images_dir / f"{image}.tar")) <= inspection
    assert "libddns_gss_tsig.so" in inspection


def test_corrupt_signature_produces_no_images(tmp_path):
    mirror = make_release(tmp_path / "mirror", "2.4.1", corrupt_signature=True)
    runner = FakeRunner()
    outcome = build(tmp_path, mirror, runner=runner)

    assert not outcome.ok
    assert outcome.images == {}
    assert outcome.run.failed() == ["source"]
    assert outcome.run.stages["source"].payload["error"]["type"] == "SOURCE_VERIFICATION_FAILED"
    assert outcome.run.stages["compile"].status.value == "skipped"
    assert runner.commands("configure") == []
    assert runner.commands("make") == []

    images_dir = outcome.manifest_path.parent
    assert sorted(p.name for p in images_dir.iterdir()) == ["build-manifest.json"]


def test_missing_module_fails_only_its_variant(tmp_path, release_mirror):
    outcome = build(tmp_path, release_mirror, runner=FakeRunner(omit_hooks={"libdhcp_bootp.so"}))

    assert not outcome.ok
    assert outcome.run.failed() == ["dhcp4-full"]
    error = outcome.run.stages["dhcp4-full"].payload["error"]
    assert error["type"] == "MISSING_ARTIFACT"
    assert "libdhcp_bootp.so" in error["message"]
    assert sorted(outcome.images) == [
        "ctrl-agent",
        "dhcp-ddns",
        "dhcp4-slim",
        "dhcp6-full",
        "dhcp6-slim",
        "hooks",
    ]
    assert not (outcome.manifest_path.parent / "dhcp4-full.tar").exists()


def test_stale_outputs_from_previous_run_are_removed(tmp_path, release_mirror):
    ok = build(tmp_path, release_mirror, name="shared")
    assert (ok.manifest_path.parent / "dhcp4-full.tar").exists()

    failed = build(tmp_path, release_mirror, name="shared", runner=FakeRunner(omit_hooks={"libdhcp_ha.so"}))
    assert "dhcp4-full" not in failed.images
    assert not (failed.manifest_path.parent / "dhcp4-full.tar").exists()
    # libdhcp_ha.so só está na allow-list do dhcp4
    assert failed.run.failed() == ["dhcp4-full"]
    rebuilt = failed.manifest_path.parent / "dhcp6-full.tar"
    assert rebuilt.exists()
    assert hashlib.sha256(rebuilt.read_bytes()).hexdigest() == failed.images["dhcp6-full"]["tar_sha256"]


def test_variant_disabled_by_config_is_not_a_failure(tmp_path, release_mirror):
    outcome = build(tmp_path, release_mirror, overrides={"stages": {"dhcp6-slim": {"enabled": False}}})

    assert outcome.ok
    assert "dhcp6-slim" not in outcome.expected_images
    assert "dhcp6-full" not in outcome.expected_images
    assert "dhcp6-full" not in outcome.images
    assert outcome.run.stages["dhcp6-full"].status.value == "skipped"


@pytest.mark.parametrize("workers", [1, 4])
def test_fail_fast_stops_after_first_failure(tmp_path, release_mirror, workers):
    outcome = build(
        tmp_path,
        release_mirror,
        runner=FakeRunner(fail={"make"}),
        overrides={"engine": {"fail_fast": True, "max_workers": workers}},
    )

    assert outcome.run.failed() == ["compile"]
    assert "install" not in outcome.run.stages
    assert outcome.images == {}
