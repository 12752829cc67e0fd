# src/kea_images/stages/build/install.py
"""Stage canônico: install.

Executa `make install DESTDIR=<staging root>` sobre a árvore compilada.
O staging root (por padrão `/staging`) é a única fonte de artefatos para
os Stages de runtime e variantes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from kea_images.core.exceptions import MissingArtifactError
from kea_images.core.pipeline.context import RunContext
from kea_images.core.pipeline.types import StageKind
from kea_images.fs.snapshot import Snapshot
from kea_images.stages._shared import SnapshotStage, StageOutcome, run_tool
from kea_images.stages.build.compile import require_source


@dataclass
class InstallStage(SnapshotStage):
    id: str = "install"
    kind: StageKind = StageKind.INSTALL
    base: Optional[str] = "compile"

    def build(self, ctx: RunContext, snap: Snapshot) -> StageOutcome:
        layout = ctx.catalog.layout
        make = list(ctx.section("compile").get("make_command") or ["make"])
        src = snap.resolve(require_source(snap, ctx.version, self.id))
        destdir = snap.resolve(layout.staging_root)

        run_tool(ctx, self.id, make + ["install", f"DESTDIR={destdir}"], cwd=src)

        staged_prefix = layout.staged(layout.prefix)
        if not snap.is_dir(staged_prefix):
            raise MissingArtifactError(
                message=f"install produced no {staged_prefix}",
                details={"stage": self.id, "path": staged_prefix},
            )

        files = sum(1 for p in snap.walk(layout.staging_root) if snap.resolve(p).is_file())
        return StageOutcome(
            summary=f"installed into {layout.staging_root}",
            metrics={"files": files},
            artifacts={"staging_root": layout.staging_root},
        )
