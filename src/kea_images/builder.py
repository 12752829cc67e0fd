# src/kea_images/builder.py
"""
Orquestração de um build completo de imagens.

`run_build` é o ponto de entrada programático (usado pela CLI e pelos
testes end-to-end):

    1. valida a versão e monta o BuildCatalog a partir da config
    2. remove imagens de runs anteriores do diretório de saída
    3. cria Manifest, RunContext e SnapshotStore
    4. executa o grafo com o Engine
    5. registra as imagens exportadas no Manifest e remove restos de
       Stages terminais que não tiveram sucesso
    6. opcionalmente importa as imagens no daemon local (`--load`)
    7. persiste `build-manifest.json` no diretório de saída
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from kea_images import __version__
from kea_images.catalog.build_catalog import BuildCatalog
from kea_images.core.config.hashing import compute_config_hash
from kea_images.core.engine.engine import Engine, RunResult
from kea_images.core.engine.planner import downstream_of
from kea_images.core.exceptions import EngineConfigurationError
from kea_images.core.pipeline.context import RunContext
from kea_images.core.pipeline.types import StageStatus
from kea_images.core.traceability import manifest as build_manifest
from kea_images.fs.export import ExportedImage, load_command
from kea_images.fs.snapshot import SnapshotStore
from kea_images.graph import build_registry, terminal_images
from kea_images.toolchain.runner import CommandRunner


logger = logging.getLogger(__name__)

MANIFEST_NAME = "build-manifest.json"
_VERSION_RE = re.compile(r"^[0-9A-Za-z][0-9A-Za-z._+-]*$")


@dataclass(frozen=True)
class BuildOutcome:
    run: RunResult
    images: Dict[str, Dict[str, Any]]
    manifest_path: Path
    expected_images: List[str] = field(default_factory=list)
    load_failures: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True quando toda imagem terminal habilitada foi exportada (e carregada, se pedido)."""
        return set(self.expected_images) <= set(self.images) and not self.load_failures


def validate_version(version: str) -> str:
    if not isinstance(version, str) or not _VERSION_RE.match(version or ""):
        raise EngineConfigurationError(
            message=f"invalid source version: {version!r}",
            details={"version": version},
            hint="Use a versão do release, ex.: 2.4.1",
        )
    return version


def _clear_outputs(output_dir: Path, images: List[str]) -> None:
    for image in images:
        for suffix in (".tar", ".json"):
            path = output_dir / f"{image}{suffix}"
            if path.exists():
                path.unlink()


def _disabled_stages(ctx: RunContext, stages: List[Any]) -> Set[str]:
    """Stages desligados por config e tudo que depende deles."""
    out: Set[str] = set()
    for s in stages:
        if not ctx.stage_config(s.id).get("enabled", True):
            out.add(s.id)
            out |= downstream_of(stages, s.id)
    return out


def _load_images(ctx: RunContext, exported: List[Dict[str, Any]]) -> List[str]:
    base = list(ctx.section("images").get("load_command") or ["docker", "import"])
    failures: List[str] = []
    for info in exported:
        config = json.loads(Path(info["config_path"]).read_text(encoding="utf-8"))
        image = ExportedImage(
            name=info["name"],
            stage_id=info["stage_id"],
            tar_path=Path(info["tar_path"]),
            config_path=Path(info["config_path"]),
            tar_sha256=info["tar_sha256"],
            config_sha256=info["config_sha256"],
            config=config,
        )
        result = ctx.runner.run(load_command(base, image))
        now = datetime.now(timezone.utc)
        if result.ok:
            build_manifest.add_event(ctx.manifest, event_type="image_loaded", ts=now, payload={"image": image.name, "tag": config["tag"]})
            logger.info("loaded %s as %s", image.name, config["tag"])
        else:
            failures.append(image.name)
            build_manifest.add_event(
                ctx.manifest,
                event_type="image_load_failed",
                ts=now,
                payload={"image": image.name, "returncode": result.returncode, "stderr_tail": result.tail()},
            )
            logger.error("failed to load %s: %s", image.name, result.tail())
    return failures


def run_build(
    *,
    version: str,
    config: Dict[str, Any],
    work_dir: Optional[Path] = None,
    output_dir: Optional[Path] = None,
    runner: Optional[CommandRunner] = None,
    fetcher: Any = None,
    mirror_dir: Optional[Path] = None,
    load: bool = False,
    run_id: Optional[str] = None,
) -> BuildOutcome:
    """
    Executa o grafo completo para `version` e exporta as imagens terminais.

    Args:
        version: Versão do release de origem (único input externo).
        config: Configuração efetiva (defaults + overrides).
        work_dir: Diretório dos snapshots (default `build.work_dir`).
        output_dir: Diretório das imagens (default `build.output_dir`).
        runner: CommandRunner (default: subprocess real).
        fetcher: SourceFetcher alternativo (ex.: testes).
        mirror_dir: Espelho local de archive/assinatura/chave.
        load: Importa as imagens exportadas no daemon local.
        run_id: Identificador da run (default: uuid4).

    Raises:
        EngineConfigurationError: Versão inválida.
        CatalogError: Catálogo inconsistente na configuração.
    """
    validate_version(version)
    catalog = BuildCatalog.from_config(config)
    build_cfg = config.get("build") or {}
    work_dir = Path(work_dir or build_cfg.get("work_dir") or ".kea-build")
    output_dir = Path(output_dir or build_cfg.get("output_dir") or "dist/images")

    registry = build_registry(catalog, config)
    stages = registry.list()
    terminals = terminal_images(stages)

    output_dir.mkdir(parents=True, exist_ok=True)
    _clear_outputs(output_dir, list(terminals.values()))

    started = datetime.now(timezone.utc)
    run_id = run_id or uuid.uuid4().hex
    manifest = build_manifest.create_manifest(
        run_id=run_id,
        started_at=started,
        tool_version=__version__,
        version=version,
        config_hash=compute_config_hash(config),
    )
    build_manifest.add_event(manifest, event_type="run_started", ts=started, payload={"stages": [s.id for s in stages]})

    ctx = RunContext(
        run_id=run_id,
        created_at=started,
        config=config,
        version=version,
        catalog=catalog,
        snapshots=SnapshotStore(work_dir),
        runner=runner or CommandRunner(),
        manifest=manifest,
        meta={
            "work_dir": str(work_dir),
            "output_dir": str(output_dir),
            "mirror_dir": str(mirror_dir) if mirror_dir else None,
            "fetcher": fetcher,
        },
    )

    logger.info("building kea %s (%d stages, run %s)", version, len(stages), run_id)
    result = Engine(stages=stages, ctx=ctx).run()

    disabled = _disabled_stages(ctx, stages)
    images: Dict[str, Dict[str, Any]] = {}
    expected: List[str] = []
    for stage_id, image in terminals.items():
        if stage_id in disabled:
            continue
        expected.append(image)
        r = result.stages.get(stage_id)
        if r is not None and r.status == StageStatus.SUCCESS and "image" in r.artifacts:
            info = r.artifacts["image"]
            images[image] = info
            build_manifest.image_exported(
                manifest,
                image=image,
                stage_id=stage_id,
                ts=datetime.now(timezone.utc),
                tar_sha256=info["tar_sha256"],
                config_sha256=info["config_sha256"],
                files={"tar": Path(info["tar_path"]).name, "config": Path(info["config_path"]).name},
            )
        else:
            _clear_outputs(output_dir, [image])

    for stage_id, r in result.stages.items():
        if r.status == StageStatus.FAILED:
            logger.error("%s failed: %s", stage_id, r.summary)
        else:
            logger.info("%s %s: %s", stage_id, r.status.value, r.summary)

    load_failures: List[str] = []
    if load and images:
        load_failures = _load_images(ctx, [images[name] for name in sorted(images)])

    finished = datetime.now(timezone.utc)
    build_manifest.add_event(
        manifest,
        event_type="run_finished",
        ts=finished,
        payload={
            "succeeded": len(result.succeeded()),
            "failed": result.failed(),
            "images": sorted(images),
        },
    )
    manifest_path = output_dir / MANIFEST_NAME
    build_manifest.save_manifest(manifest, manifest_path)

    return BuildOutcome(
        run=result,
        images=images,
        manifest_path=manifest_path,
        expected_images=expected,
        load_failures=load_failures,
    )
