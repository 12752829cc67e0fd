# src/kea_images/graph.py
"""
Definição declarativa do grafo de build de imagens.

    base ─┬─ source ─ compile ─ install ─ prune ─┐
          ├─ runtime ◄───────────────────────────┤
          │     └─ <svc>-slim ─ <svc>-full ◄─────┤ (apenas serviços com hooks)
          └─ hooks ◄─────────────────────────────┘

Stages terminais têm como id o nome da imagem exportada. Serviços sem
ecossistema de hooks exportam uma única imagem com o nome do serviço.
"""

from __future__ import annotations

from typing import Any, Dict, List

from kea_images.catalog.build_catalog import BuildCatalog
from kea_images.core.pipeline.registry import StageRegistry
from kea_images.core.pipeline.stage import Stage
from kea_images.stages._shared import SnapshotStage
from kea_images.stages.base import BaseLayerStage
from kea_images.stages.build.compile import CompileStage
from kea_images.stages.build.install import InstallStage
from kea_images.stages.build.prune import PruneStage
from kea_images.stages.inspection.hooks import HooksInspectionStage
from kea_images.stages.runtime.assemble import RuntimeStage
from kea_images.stages.source.acquire import SourceStage
from kea_images.stages.variants.full import FullVariantStage
from kea_images.stages.variants.slim import SlimVariantStage


def build_stages(catalog: BuildCatalog, config: Dict[str, Any]) -> List[Stage]:
    inspection = str(((config or {}).get("images") or {}).get("inspection") or "hooks")

    stages: List[Stage] = [
        BaseLayerStage(),
        SourceStage(),
        CompileStage(),
        InstallStage(),
        PruneStage(),
        RuntimeStage(),
    ]
    for spec in catalog.services:
        stages.append(SlimVariantStage(id=spec.slim_image, service=spec.name, image=spec.slim_image))
        if spec.full_image:
            stages.append(
                FullVariantStage(
                    id=spec.full_image,
                    service=spec.name,
                    base=spec.slim_image,
                    image=spec.full_image,
                )
            )
    stages.append(HooksInspectionStage(id=inspection, image=inspection))
    return stages


def build_registry(catalog: BuildCatalog, config: Dict[str, Any]) -> StageRegistry:
    """Registry validado (ids únicos) na ordem de declaração."""
    registry = StageRegistry()
    for stage in build_stages(catalog, config):
        registry.add(stage)
    return registry


def terminal_images(stages: List[Stage]) -> Dict[str, str]:
    """stage_id → nome da imagem, para os Stages que exportam imagem."""
    return {
        s.id: s.image
        for s in stages
        if isinstance(s, SnapshotStage) and s.image
    }
