# src/kea_images/stages/variants/slim.py
"""Stage canônico: variante slim de um serviço.

Parte do runtime comum, copia do Stage `prune` exatamente os executáveis
do serviço e fixa a variável de despacho. O diretório de hooks permanece
vazio.

Garantia de despacho: o caminho que o entrypoint executa
(`<sbin>/kea-$KEA_EXECUTABLE`) existe no snapshot exportado.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import List, Optional

from kea_images.catalog.build_catalog import DISPATCH_PREFIX
from kea_images.core.exceptions import EngineConfigurationError, MissingArtifactError
from kea_images.core.pipeline.context import RunContext
from kea_images.core.pipeline.types import StageKind
from kea_images.fs.snapshot import Snapshot
from kea_images.stages._shared import SnapshotStage, StageOutcome


SERVICE_LABEL = "org.kea-images.service"
VARIANT_LABEL = "org.kea-images.variant"


def check_dispatch(snap: Snapshot, sbin_dir: str, dispatch_value: str, stage_id: str) -> str:
    target = posixpath.join(sbin_dir, DISPATCH_PREFIX + dispatch_value)
    if not snap.exists(target):
        raise MissingArtifactError(
            message=f"dispatch target missing: {target}",
            details={"stage": stage_id, "path": target},
            hint="O executável nomeado pela variável de despacho precisa existir na imagem.",
        )
    return target


@dataclass
class SlimVariantStage(SnapshotStage):
    service: str = ""
    kind: StageKind = StageKind.VARIANT
    base: Optional[str] = "runtime"
    reads: List[str] = field(default_factory=lambda: ["prune"])

    def build(self, ctx: RunContext, snap: Snapshot) -> StageOutcome:
        catalog = ctx.catalog
        layout = catalog.layout
        spec = catalog.service(self.service)
        prune = ctx.snapshots.get("prune")

        copied: List[str] = []
        for exe in spec.executables:
            dest = posixpath.join(layout.sbin_dir, exe)
            ctx.snapshots.copy(prune, layout.staged(dest), snap, dest)
            copied.append(dest)

        if snap.listdir(layout.hooks_dir):
            raise EngineConfigurationError(
                message=f"hooks directory is not empty in slim variant {self.id}",
                details={"stage": self.id, "path": layout.hooks_dir},
            )

        dispatch_env = str(ctx.section("runtime").get("dispatch_env") or "KEA_EXECUTABLE")
        snap.set_config(
            env={dispatch_env: spec.dispatch_value},
            labels={SERVICE_LABEL: spec.name, VARIANT_LABEL: "slim"},
        )
        target = check_dispatch(snap, layout.sbin_dir, spec.dispatch_value, self.id)

        return StageOutcome(
            summary=f"{self.id}: {len(copied)} executables",
            metrics={"executables": len(copied)},
            payload={"variant": {"service": spec.name, "executables": copied, "dispatch": target}},
        )
