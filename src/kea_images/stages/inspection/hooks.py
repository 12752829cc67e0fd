# src/kea_images/stages/inspection/hooks.py
"""Stage canônico: imagem auxiliar de inspeção dos hooks.

Parte da camada base e copia **todo** o local de espera do Stage `prune`,
inclusive módulos fora de qualquer allow-list. Comando padrão lista o
diretório; não há entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from kea_images.core.pipeline.context import RunContext
from kea_images.core.pipeline.types import StageKind
from kea_images.fs.snapshot import Snapshot
from kea_images.stages._shared import SnapshotStage, StageOutcome


@dataclass
class HooksInspectionStage(SnapshotStage):
    id: str = "hooks"
    kind: StageKind = StageKind.INSPECTION
    base: Optional[str] = "base"
    reads: List[str] = field(default_factory=lambda: ["prune"])

    def build(self, ctx: RunContext, snap: Snapshot) -> StageOutcome:
        holding = ctx.catalog.layout.holding_dir
        prune = ctx.snapshots.get("prune")

        ctx.snapshots.copy(prune, holding, snap, holding)
        snap.set_config(entrypoint=None, cmd=["ls", holding])

        modules = snap.listdir(holding)
        return StageOutcome(
            summary=f"{len(modules)} hook modules available for inspection",
            metrics={"hooks": len(modules)},
            payload={"inspection": {"hooks": modules}},
        )
