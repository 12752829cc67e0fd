# src/kea_images/core/pipeline/stage.py
"""
Contrato canônico de Stage do kea-images.

Um Stage é um nó imutável do grafo de build: parte de uma base (outro
Stage ou a camada base), copia artefatos declarados de Stages upstream,
executa uma sequência de ações e produz um snapshot de filesystem.

Princípios fundamentais:
    - Stages não conhecem o Engine nem o planner
    - Stages não controlam ordem de execução
    - Stages leem outros Stages apenas via snapshots selados
    - Conformidade é garantida por duck typing (@runtime_checkable)

Invariantes:
    - Cada Stage possui um `id` único
    - Todo Stage lido por um Stage aparece em `depends_on`
    - O método `run` é chamado no máximo uma vez por execução
"""

from __future__ import annotations

from typing import List, Protocol, runtime_checkable

from .context import RunContext
from .types import StageKind, StageResult


@runtime_checkable
class Stage(Protocol):
    """
    Contrato canônico de um Stage do grafo de build.

    Atributos obrigatórios:
        - id: identificador único e estável do Stage
        - kind: classificação semântica do Stage (`StageKind`)
        - depends_on: ids dos Stages dos quais lê artefatos (inclui a base)

    Decisões arquiteturais:
        - O protocolo não impõe herança, apenas conformidade estrutural
        - Falhas são sinalizadas por exceções tipadas; o Engine as converte
          em `StageResult` FAILED com payload estruturado
    """
    id: str
    kind: StageKind
    depends_on: List[str]

    def run(self, ctx: RunContext) -> StageResult:
        """Executa o Stage uma única vez usando exclusivamente o RunContext."""
        ...
