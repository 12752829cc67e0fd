# src/kea_images/core/pipeline/registry.py
"""
Registro estrutural de Stages do grafo de build.

O `StageRegistry` registra Stages e valida a integridade estrutural do
grafo antes de qualquer planejamento ou execução:
    - cada Stage possui um identificador válido
    - não existem identificadores duplicados
    - a ordem de declaração é preservada explicitamente

Limites explícitos:
    - Não planeja execução (não é o planner)
    - Não resolve dependências
    - Não executa Stages
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from .stage import Stage


class DuplicateStageIdError(ValueError):
    """Dois Stages registrados com o mesmo `id` (erro fatal de definição do grafo)."""


@dataclass
class StageRegistry:
    """Registro canônico de Stages para validação estrutural pré-execução."""

    _stages: Dict[str, Stage] = field(default_factory=dict, init=False, repr=False)
    _order: List[str] = field(default_factory=list, init=False, repr=False)

    def add(self, stage: Stage) -> None:
        stage_id = getattr(stage, "id", None)
        if not isinstance(stage_id, str) or not stage_id.strip():
            raise ValueError("stage.id must be a non-empty string")

        if stage_id in self._stages:
            raise DuplicateStageIdError(f"Duplicate stage id: {stage_id}")

        self._stages[stage_id] = stage
        self._order.append(stage_id)

    def get(self, stage_id: str) -> Stage:
        return self._stages[stage_id]

    def __contains__(self, stage_id: object) -> bool:
        return stage_id in self._stages

    def list(self) -> List[Stage]:
        return [self._stages[sid] for sid in self._order]
