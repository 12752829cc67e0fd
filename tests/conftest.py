# tests/conftest.py
"""
Fixtures compartilhados para testes do kea-images.

Este módulo define fixtures reutilizáveis que fornecem:
- configurações mínimas e determinísticas
- contexto de execução controlado (RunContext)
- Stages dummy para testes estruturais do Engine
- toolchain simulado (FakeRunner) e espelho local de release

Decisões arquiteturais:
    - Testes do core (config, pipeline, engine, traceability) não
      dependem de filesystem nem de ferramentas externas
    - Testes de Stages e end-to-end usam `tmp_path` + FakeRunner;
      nenhum teste abre conexões de rede ou chama gpg/make reais
    - Imports do core são realizados de forma lazy para
      melhorar a clareza de erros durante falhas

Invariantes:
    - Nenhuma fixture executa o grafo completo
    - Dados retornados são determinísticos e isolados por teste
"""

import pytest
from datetime import datetime, timezone


VERSION = "2.4.1"


# =====================================================
# Config fixtures
# =====================================================

@pytest.fixture
def project_like_defaults_yaml() -> str:
    """
    YAML de defaults semelhante ao empacotado, em forma reduzida.

    Usado por:
        - Testes do loader de config
        - Testes de deep-merge (defaults + local)
    """
    return """
engine:
  fail_fast: false
  max_workers: 1
compile:
  extra_configure_flags: ["--enable-debug"]
  jobs: null
images:
  repository: kea
stages: {}
"""


@pytest.fixture
def project_like_local_yaml() -> str:
    """YAML local com overrides parciais (dict aninhado, lista e null)."""
    return """
engine:
  fail_fast: true
compile:
  extra_configure_flags: ["--with-site-patch"]
  jobs: 4
"""


@pytest.fixture
def dummy_config():
    """Config mínima para testes do Engine (sem catálogo)."""
    return {
        "engine": {"fail_fast": False, "max_workers": 1},
        "stages": {},
    }


@pytest.fixture
def kea_config():
    """
    Config efetiva empacotada (defaults.yaml), independente por teste.

    O sha256 da base é fixado no minirootfs simulado do espelho local.
    """
    from kea_images.core.config.loader import load_config
    from tests.fixtures.fake_toolchain import base_rootfs_sha256

    config = load_config()
    config["base"]["sha256"] = base_rootfs_sha256()
    return config


# =====================================================
# Pipeline / Engine fixtures
# =====================================================

@pytest.fixture
def dummy_ctx(dummy_config):
    """RunContext sem snapshots nem runner, para testes estruturais."""
    from kea_images.core.pipeline.context import RunContext

    return RunContext(
        run_id="test-run",
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        config=dummy_config,
        version=VERSION,
        meta={},
    )


@pytest.fixture
def DummyStage():
    """
    Fábrica de Stages dummy (duck typing, sem herança).

    O Stage registra a própria execução em `ctx.meta["executed"]` e
    retorna SUCCESS, ou levanta a exceção informada em `raises`.
    """
    from kea_images.core.pipeline.types import StageKind, StageResult, StageStatus

    class _DummyStage:
        def __init__(self, stage_id, depends_on=None, kind=StageKind.BASE, raises=None):
            self.id = stage_id
            self.kind = kind
            self.depends_on = list(depends_on or [])
            self.raises = raises

        def run(self, ctx):
            ctx.meta.setdefault("executed", []).append(self.id)
            if self.raises is not None:
                raise self.raises
            return StageResult(
                stage_id=self.id,
                kind=self.kind,
                status=StageStatus.SUCCESS,
                summary="ok",
            )

    return _DummyStage


# =====================================================
# Toolchain simulado + contexto de build
# =====================================================

@pytest.fixture
def fake_runner():
    from tests.fixtures.fake_toolchain import FakeRunner

    return FakeRunner()


@pytest.fixture
def release_mirror(tmp_path):
    """Espelho local com archive, assinatura válida e chave do publicador."""
    from tests.fixtures.fake_toolchain import make_release

    return make_release(tmp_path / "mirror", VERSION)


@pytest.fixture
def build_ctx(tmp_path, kea_config, fake_runner, release_mirror):
    """
    RunContext completo para testes de Stages individuais.

    Snapshots em `tmp_path/work`, imagens em `tmp_path/out`, fontes lidas
    do espelho local e toolchain simulado.
    """
    from kea_images.catalog.build_catalog import BuildCatalog
    from kea_images.core.pipeline.context import RunContext
    from kea_images.fs.snapshot import SnapshotStore

    return RunContext(
        run_id="stage-test",
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        config=kea_config,
        version=VERSION,
        catalog=BuildCatalog.from_config(kea_config),
        snapshots=SnapshotStore(tmp_path / "work"),
        runner=fake_runner,
        meta={
            "output_dir": str(tmp_path / "out"),
            "mirror_dir": str(release_mirror),
        },
    )
