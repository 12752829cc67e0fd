# src/kea_images/stages/variants/full.py
"""Stage canônico: variante full de um serviço com ecossistema de hooks.

Parte da variante slim do mesmo serviço e acrescenta o conjunto resolvido
de hooks:

    allow-list da família − módulos que dependem de companheiro excluído

Regras:
- Todo módulo resolvido precisa existir no local de espera do Stage
  `prune`; ausência é MissingArtifactError nomeando o módulo.
- Módulos fora de qualquer allow-list nunca entram em uma variante.
- Módulos compartilhados entre famílias são copiados de forma
  independente para cada variante.
- O cache do linker é regenerado depois da cópia.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import List, Optional

from kea_images.core.exceptions import MissingArtifactError
from kea_images.core.pipeline.context import RunContext
from kea_images.core.pipeline.types import StageKind
from kea_images.fs.snapshot import Snapshot
from kea_images.stages._shared import SnapshotStage, StageOutcome, refresh_linker_cache
from kea_images.stages.variants.slim import VARIANT_LABEL


@dataclass
class FullVariantStage(SnapshotStage):
    service: str = ""
    kind: StageKind = StageKind.VARIANT
    base: Optional[str] = None
    reads: List[str] = field(default_factory=lambda: ["prune"])

    def build(self, ctx: RunContext, snap: Snapshot) -> StageOutcome:
        catalog = ctx.catalog
        layout = catalog.layout
        prune = ctx.snapshots.get("prune")
        selection = catalog.resolve_plugins(self.service)

        warnings = [
            f"{m} skipped: depends on excluded companion module" for m in selection.excluded
        ]

        missing = [m for m in selection.selected if not prune.exists(posixpath.join(layout.holding_dir, m))]
        if missing:
            raise MissingArtifactError(
                message=f"allow-listed hook module not built: {missing[0]}",
                details={
                    "stage": "prune",
                    "path": posixpath.join(layout.holding_dir, missing[0]),
                    "required_by": self.id,
                    "modules": missing,
                },
                hint="Remova o módulo da allow-list ou corrija a compilação dos hooks.",
            )

        copied: List[str] = []
        for module in selection.selected:
            dest = posixpath.join(layout.hooks_dir, module)
            ctx.snapshots.copy(prune, posixpath.join(layout.holding_dir, module), snap, dest)
            copied.append(module)

        fingerprint = refresh_linker_cache(ctx, self.id, snap)
        snap.set_config(labels={VARIANT_LABEL: "full"})

        return StageOutcome(
            summary=f"{self.id}: {len(copied)} hook modules",
            metrics={"hooks": len(copied), "hooks_excluded": len(selection.excluded)},
            warnings=warnings,
            artifacts={"ldcache_fingerprint": fingerprint},
            payload={
                "variant": {
                    "service": self.service,
                    "hooks": copied,
                    "excluded": list(selection.excluded),
                }
            },
        )
