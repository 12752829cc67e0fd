# src/kea_images/stages/_shared.py
"""
Base comum dos Stages do kea-images.

Todo Stage concreto segue o mesmo ciclo:

    1. obtém o snapshot selado da sua base (se houver)
    2. cria o próprio snapshot como cópia integral da base
    3. executa `build(ctx, snap)` (ações específicas do Stage)
    4. sela o snapshot
    5. Stages terminais exportam a imagem a partir do snapshot selado

Falhas são exceções tipadas (`kea_images.core.exceptions`); o Engine as
converte em StageResult FAILED. Nenhum Stage captura e rebaixa erros.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from kea_images.core.exceptions import CompilationError
from kea_images.core.pipeline.context import RunContext
from kea_images.core.pipeline.types import StageKind, StageResult, StageStatus
from kea_images.fs.export import ExportedImage, export_image
from kea_images.fs.snapshot import Snapshot
from kea_images.toolchain.fetch import SourceFetcher
from kea_images.toolchain.runner import CommandResult, render_command, tool_env


@dataclass
class StageOutcome:
    """O que `build` devolve para compor o StageResult."""

    summary: str
    metrics: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    artifacts: Dict[str, Any] = field(default_factory=dict)
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SnapshotStage:
    """
    Stage que produz um snapshot a partir de uma base e de leituras upstream.

    Campos:
        - id: identificador do Stage (para terminais, o nome da imagem)
        - kind: tipo semântico
        - base: Stage cujo snapshot é o ponto de partida (None = raiz vazia)
        - reads: Stages dos quais copia artefatos
        - image: nome da imagem exportada (apenas Stages terminais)

    `depends_on` é derivado de `base` + `reads`.
    """

    id: str
    kind: StageKind
    base: Optional[str] = None
    reads: List[str] = field(default_factory=list)
    image: Optional[str] = None
    depends_on: List[str] = field(default_factory=list, init=False)

    def __post_init__(self) -> None:
        deps = ([self.base] if self.base else []) + list(self.reads or [])
        self.depends_on = list(dict.fromkeys(deps))

    def build(self, ctx: RunContext, snap: Snapshot) -> StageOutcome:
        raise NotImplementedError

    def run(self, ctx: RunContext) -> StageResult:
        base = ctx.snapshots.get(self.base) if self.base else None
        snap = ctx.snapshots.create(self.id, base=base)

        outcome = self.build(ctx, snap)
        for message in outcome.warnings:
            ctx.add_warning(stage_id=self.id, message=message)

        digest = snap.seal()
        artifacts: Dict[str, Any] = {"snapshot": str(snap.root), "digest": digest}
        artifacts.update(outcome.artifacts)

        if self.image:
            exported = export_terminal(ctx, snap, self.image)
            artifacts["image"] = exported.to_dict()
            ctx.log(
                stage_id=self.id,
                level="info",
                message="image exported",
                image=self.image,
                tar_sha256=exported.tar_sha256,
            )

        return StageResult(
            stage_id=self.id,
            kind=self.kind,
            status=StageStatus.SUCCESS,
            summary=outcome.summary,
            metrics=dict(outcome.metrics),
            warnings=list(outcome.warnings),
            artifacts=artifacts,
            payload=dict(outcome.payload),
        )


def release_fetcher(ctx: RunContext) -> SourceFetcher:
    """Fetcher do run: injetado via meta ou montado a partir de `source`."""
    fetcher = ctx.meta_value("fetcher")
    if fetcher is not None:
        return fetcher
    cfg = ctx.section("source")
    mirror = ctx.meta_value("mirror_dir") or cfg.get("mirror_dir")
    return SourceFetcher(
        mirror_dir=Path(mirror) if mirror else None,
        timeout=float(cfg.get("timeout_seconds") or 60),
    )


def export_terminal(ctx: RunContext, snap: Snapshot, image: str) -> ExportedImage:
    build_cfg = ctx.section("build")
    images_cfg = ctx.section("images")
    output_dir = ctx.meta_value("output_dir") or build_cfg.get("output_dir") or "dist/images"
    return export_image(
        snap,
        image=image,
        output_dir=Path(output_dir),
        version=ctx.version,
        repository=str(images_cfg.get("repository") or "kea"),
        source_date_epoch=int(build_cfg.get("source_date_epoch") or 0),
    )


def run_tool(
    ctx: RunContext,
    stage_id: str,
    args: List[str],
    *,
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
) -> CommandResult:
    """Executa uma ferramenta do toolchain; código não-zero vira CompilationError."""
    merged = tool_env(SOURCE_DATE_EPOCH=str(int(ctx.section("build").get("source_date_epoch") or 0)))
    merged.update(env or {})
    ctx.log(stage_id=stage_id, level="info", message="running tool", command=list(args))
    result = ctx.runner.run(args, cwd=cwd, env=merged)
    if not result.ok:
        raise CompilationError(
            message=f"{args[0]} exited with status {result.returncode}",
            details={
                "stage": stage_id,
                "command": list(args),
                "returncode": result.returncode,
                "stderr_tail": result.tail(),
            },
            hint="Inspecione a saída do toolchain; stages dependentes não serão construídos.",
        )
    return result


def refresh_linker_cache(ctx: RunContext, stage_id: str, snap: Snapshot) -> str:
    """Regenera o cache do linker no snapshot e registra o fingerprint das libs."""
    runtime_cfg = ctx.section("runtime")
    template = runtime_cfg.get("ldconfig_command") or ["ldconfig", "-r", "{root}"]
    run_tool(ctx, stage_id, render_command(template, root=str(snap.rootfs)))
    return snap.record_ldcache(runtime_cfg.get("library_dirs") or [])
