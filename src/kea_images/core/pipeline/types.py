# src/kea_images/core/pipeline/types.py
"""
Tipos canônicos do grafo de build do kea-images.

Este módulo define as estruturas e enums fundamentais que padronizam
a comunicação entre Stages, Engine e camadas de rastreabilidade.

Os tipos aqui definidos representam:
    - estados finais de execução de Stages
    - classificação semântica de Stages
    - resultado imutável produzido por um Stage

Componentes principais:
    - StageStatus → enum de estados finais (SUCCESS, SKIPPED, FAILED)
    - StageKind   → enum de classificação semântica de Stages
    - StageResult → estrutura imutável de resultado de execução

Princípios fundamentais:
    - Tipos são estáveis e serializáveis
    - Valores são projetados para persistência no Manifest de build
    - Nenhuma lógica de execução vive neste módulo

Invariantes:
    - Enums possuem valores textuais canônicos
    - StageResult é imutável e seguro contra mutação acidental
    - Tipos não dependem de engine, snapshots ou toolchain

Limites explícitos:
    - Não executa Stages
    - Não planeja o grafo
    - Não decide políticas de execução
    - Não toca o filesystem

Este módulo existe para garantir consistência,
interoperabilidade e clareza semântica no grafo de build.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class StageKind(str, Enum):
    """
    Tipos semânticos de Stages no grafo de build.

    Os valores são strings para facilitar serialização em JSON,
    persistência no Manifest e inspeção via CLI.

    Tipos definidos:
        - BASE: camada base compartilhada (sem lógica)
        - SOURCE: aquisição e verificação criptográfica do código-fonte
        - COMPILE: configure + make (caro, isolado)
        - INSTALL: instalação no staging root (barato, iterável)
        - PRUNE: remoção de artefatos de build, strip e relocação de hooks
        - RUNTIME: montagem do ambiente de runtime comum
        - VARIANT: imagem terminal de serviço (slim ou full)
        - INSPECTION: imagem terminal de inspeção dos hooks

    Decisões arquiteturais:
        - O tipo é puramente informativo e semântico
        - O Engine não utiliza `StageKind` para decidir execução

    Este enum existe para enriquecer a rastreabilidade
    e a leitura do plano de build.
    """
    BASE = "base"
    SOURCE = "source"
    COMPILE = "compile"
    INSTALL = "install"
    PRUNE = "prune"
    RUNTIME = "runtime"
    VARIANT = "variant"
    INSPECTION = "inspection"


class StageStatus(str, Enum):
    """
    Estados finais possíveis da execução de um Stage.

    Estados definidos:
        - SUCCESS: snapshot produzido e selado
        - SKIPPED: não executado (config ou dependência sem sucesso)
        - FAILED: execução interrompida por erro

    Invariantes:
        - O status final de um Stage é exatamente um dos valores definidos
        - Estados intermediários (ex.: running) não pertencem a este enum
    """
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class StageResult:
    """
    Resultado imutável da execução de um Stage.

    Campos:
        - stage_id: identificador único do Stage
        - kind: tipo semântico do Stage
        - status: estado final da execução
        - summary: resumo textual da execução
        - metrics: métricas numéricas (ex.: bytes removidos pelo strip)
        - warnings: avisos não fatais gerados durante a execução
        - artifacts: referências a artefatos produzidos (snapshot, imagem)
        - payload: dados adicionais livres (ex.: erro estruturado)

    Invariantes:
        - Uma instância nunca é alterada após criada
        - `stage_id`, `kind` e `status` estão sempre presentes
    """
    stage_id: str
    kind: StageKind
    status: StageStatus
    summary: str
    metrics: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    artifacts: Dict[str, Any] = field(default_factory=dict)
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == StageStatus.SUCCESS
