# src/kea_images/core/engine/planner.py
"""
Planejador de execução do grafo de build (DAG).

Este módulo valida a estrutura do grafo de Stages e produz uma ordem de
execução topológica determinística.

O planner opera exclusivamente em nível estrutural, analisando:
    - identificadores de Stages
    - dependências declaradas
    - formação de ciclos

Decisões arquiteturais:
    - Utiliza ordenação topológica determinística (Kahn modificado)
    - Empates são resolvidos por ordem lexicográfica de `stage.id`
    - Erros estruturais são tratados como falhas fatais

Invariantes:
    - Nenhum Stage aparece antes de suas dependências
    - Todos os Stages aparecem exatamente uma vez
    - A mesma definição de grafo produz sempre a mesma ordem

Limites explícitos:
    - Não executa Stages
    - Não interage com RunContext
    - Não decide políticas de execução
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Set

from kea_images.core.pipeline.stage import Stage


class UnknownDependencyError(ValueError):
    """
    Exceção levantada quando um Stage referencia uma dependência inexistente.

    Invariantes:
        - Um Stage não pode ler de um Stage inexistente
        - O grafo é considerado inválido nesta condição
    """


class CycleDetectedError(ValueError):
    """
    Exceção levantada quando o grafo de dependências contém um ciclo.

    Invariantes:
        - A existência de um ciclo invalida o planejamento do grafo
        - Nenhuma execução parcial é permitida em presença de ciclos
    """


def plan_execution(stages: Iterable[Stage]) -> List[Stage]:
    """
    Valida e produz uma ordem de execução topológica determinística de Stages.

    Sempre que múltiplos Stages estiverem prontos, a escolha é feita por
    ordem lexicográfica do `stage.id`.

    Args:
        stages (Iterable[Stage]): Coleção de Stages do grafo.

    Returns:
        List[Stage]: Stages em ordem topológica determinística.

    Raises:
        ValueError: Se algum Stage possuir `id` inválido ou duplicado.
        UnknownDependencyError: Se um Stage declarar dependência inexistente.
        CycleDetectedError: Se houver ciclo no grafo de dependências.
    """
    stage_list = list(stages)
    by_id: Dict[str, Stage] = {}
    for s in stage_list:
        sid = getattr(s, "id", None)
        if not isinstance(sid, str) or not sid.strip():
            raise ValueError("stage.id must be a non-empty string")
        if sid in by_id:
            raise ValueError(f"Duplicate stage id: {sid}")
        by_id[sid] = s

    deps: Dict[str, List[str]] = {}
    for sid, s in by_id.items():
        d = list(dict.fromkeys(getattr(s, "depends_on", []) or []))
        for dep in d:
            if dep not in by_id:
                raise UnknownDependencyError(f"Stage '{sid}' depends on unknown stage '{dep}'")
        deps[sid] = d

    # Kahn's algorithm (deterministic)
    incoming_count: Dict[str, int] = {sid: 0 for sid in by_id}
    outgoing: Dict[str, Set[str]] = {sid: set() for sid in by_id}

    for sid, dlist in deps.items():
        incoming_count[sid] = len(dlist)
        for dep in dlist:
            outgoing[dep].add(sid)

    ready: List[str] = sorted([sid for sid, c in incoming_count.items() if c == 0])
    order_ids: List[str] = []

    while ready:
        sid = ready.pop(0)  # smallest lexicographic
        order_ids.append(sid)
        for child in sorted(outgoing[sid]):
            incoming_count[child] -= 1
            if incoming_count[child] == 0:
                ready.append(child)
                ready.sort()

    if len(order_ids) != len(by_id):
        raise CycleDetectedError("Cycle detected in stage dependency graph")

    return [by_id[sid] for sid in order_ids]


def downstream_of(stages: Iterable[Stage], stage_id: str) -> Set[str]:
    """Ids de todos os Stages alcançáveis a partir de `stage_id` (exclusive)."""
    children: Dict[str, Set[str]] = {}
    for s in stages:
        for dep in getattr(s, "depends_on", []) or []:
            children.setdefault(dep, set()).add(s.id)

    seen: Set[str] = set()
    frontier = [stage_id]
    while frontier:
        current = frontier.pop()
        for child in children.get(current, ()):
            if child not in seen:
                seen.add(child)
                frontier.append(child)
    return seen
